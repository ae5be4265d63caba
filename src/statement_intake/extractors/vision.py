"""
Google Cloud Vision document OCR provider.

Calls the images:annotate REST endpoint with DOCUMENT_TEXT_DETECTION, one
request per page. PDFs and multi-frame TIFFs are rendered to pages first;
pages are sent concurrently and the text is joined in page order.
"""

import base64
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import requests
from pdf2image.exceptions import PDFPopplerTimeoutError, PopplerNotInstalledError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import VisionConfig
from .base import (
    IMAGE_MIME_TYPES,
    PDF_MIME_TYPE,
    ProviderConfigurationError,
    ProviderError,
    ProviderResult,
    ProviderTimeout,
    ProviderUnavailable,
    TextProvider,
)
from .images import image_to_png_bytes, render_pages

logger = logging.getLogger(__name__)

ANNOTATE_PATH = "/v1/images:annotate"
FEATURE_TYPE = "DOCUMENT_TEXT_DETECTION"

# Images sent as-is; everything else is rendered page by page
_PASSTHROUGH_MIME_TYPES = frozenset({"image/jpeg", "image/png"})


class GoogleVisionProvider(TextProvider):
    """
    Cloud document OCR through the Vision REST API.

    Features:
    - Page-level confidence, averaged over pages
    - Automatic retry with backoff on 429/5xx
    - Per-request timeout (a timeout is a provider failure)
    """

    def __init__(self, config: VisionConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.endpoint = config.endpoint.rstrip("/")

        if session is None:
            session = requests.Session()
            retry_strategy = Retry(
                total=config.max_retries,
                backoff_factor=0.5,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=["POST"],
                # Hand the last 429/5xx response back so it maps to ProviderUnavailable
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

    @property
    def name(self) -> str:
        return "google_vision"

    def supports(self, mime_type: str) -> bool:
        return mime_type == PDF_MIME_TYPE or mime_type in IMAGE_MIME_TYPES

    def extract(self, data: bytes, mime_type: str) -> ProviderResult:
        if not self.config.is_configured:
            raise ProviderConfigurationError(self.name, "GOOGLE_VISION_API_KEY is not set")

        pages = self._page_payloads(data, mime_type)
        if not pages:
            raise ProviderError(self.name, "Document has no pages")

        workers = max(1, min(self.config.page_workers, len(pages)))
        if workers == 1:
            results = [self._annotate(page) for page in pages]
        else:
            # map() yields in submission order, so page order is preserved
            with ThreadPoolExecutor(max_workers=workers) as pool:
                results = list(pool.map(self._annotate, pages))

        texts = [text for text, _ in results if text.strip()]
        if not texts:
            raise ProviderError(self.name, "No text detected")

        confidences = [conf for _, conf in results if conf is not None]
        confidence = sum(confidences) / len(confidences) if confidences else None

        text = "\n".join(texts).strip()
        logger.info(
            f"Vision OCR: {len(pages)} pages, {len(text)} chars, confidence={confidence}"
        )
        return ProviderResult(
            text=text,
            provider=self.name,
            confidence=confidence,
            page_count=len(pages),
        )

    def _page_payloads(self, data: bytes, mime_type: str) -> list[bytes]:
        if mime_type in _PASSTHROUGH_MIME_TYPES:
            return [data]
        try:
            images = render_pages(
                data, mime_type, dpi=self.config.dpi, max_pages=self.config.max_pages
            )
        except PopplerNotInstalledError as e:
            raise ProviderConfigurationError(self.name, f"poppler is not installed: {e}") from e
        except PDFPopplerTimeoutError as e:
            raise ProviderTimeout(self.name, f"Page rendering timed out: {e}") from e
        except Exception as e:
            raise ProviderError(self.name, f"Failed to render pages: {e}") from e
        return [image_to_png_bytes(image) for image in images]

    def _annotate(self, content: bytes) -> tuple[str, Optional[float]]:
        """OCR one page. Returns (text, mean page confidence)."""
        body = {
            "requests": [
                {
                    "image": {"content": base64.b64encode(content).decode("ascii")},
                    "features": [{"type": FEATURE_TYPE}],
                }
            ]
        }
        url = f"{self.endpoint}{ANNOTATE_PATH}"

        try:
            response = self.session.post(
                url,
                params={"key": self.config.api_key},
                json=body,
                timeout=self.config.timeout_seconds,
            )
        except requests.exceptions.Timeout as e:
            raise ProviderTimeout(
                self.name, f"Request timed out after {self.config.timeout_seconds}s"
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise ProviderUnavailable(self.name, f"Failed to connect to {self.endpoint}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise ProviderError(self.name, f"Request failed: {e}") from e

        if response.status_code in (401, 403):
            raise ProviderConfigurationError(
                self.name, f"Authentication rejected ({response.status_code})"
            )
        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderUnavailable(
                self.name, f"Service unavailable ({response.status_code} {response.reason})"
            )
        if not response.ok:
            raise ProviderError(self.name, f"API error {response.status_code}: {response.reason}")

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(self.name, f"Invalid JSON response: {e}") from e

        annotations = payload.get("responses") or [{}]
        annotation = annotations[0]
        if annotation.get("error"):
            message = annotation["error"].get("message", "unknown error")
            raise ProviderError(self.name, f"Annotation failed: {message}")

        full_text = annotation.get("fullTextAnnotation") or {}
        page_confidences = [
            page["confidence"]
            for page in full_text.get("pages", [])
            if page.get("confidence") is not None
        ]
        confidence = (
            sum(page_confidences) / len(page_confidences) if page_confidences else None
        )
        return full_text.get("text", ""), confidence
