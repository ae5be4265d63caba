"""
Offline OCR provider using Tesseract.

Used when cloud OCR is unavailable or mis-configured. Works on word-level
data so that the line layout of the statement survives; the parser relies
on one transaction per line.
"""

import logging
from typing import Optional

import pytesseract
from PIL import Image
from pdf2image.exceptions import PDFPopplerTimeoutError, PopplerNotInstalledError
from pytesseract import Output

from ..config import TesseractConfig
from .base import (
    IMAGE_MIME_TYPES,
    PDF_MIME_TYPE,
    ProviderConfigurationError,
    ProviderError,
    ProviderResult,
    ProviderTimeout,
    TextProvider,
)
from .images import render_pages

logger = logging.getLogger(__name__)


class TesseractProvider(TextProvider):
    """Local OCR through the tesseract binary (pytesseract)."""

    def __init__(self, config: TesseractConfig):
        self.config = config
        if config.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = config.tesseract_cmd

    @property
    def name(self) -> str:
        return "tesseract"

    def supports(self, mime_type: str) -> bool:
        return mime_type == PDF_MIME_TYPE or mime_type in IMAGE_MIME_TYPES

    def extract(self, data: bytes, mime_type: str) -> ProviderResult:
        if not self.config.enabled:
            raise ProviderConfigurationError(self.name, "Tesseract is disabled")

        try:
            pages = render_pages(
                data, mime_type, dpi=self.config.dpi, max_pages=self.config.max_pages
            )
        except PopplerNotInstalledError as e:
            raise ProviderConfigurationError(self.name, f"poppler is not installed: {e}") from e
        except PDFPopplerTimeoutError as e:
            raise ProviderTimeout(self.name, f"Page rendering timed out: {e}") from e
        except Exception as e:
            raise ProviderError(self.name, f"Failed to render pages: {e}") from e

        page_texts: list[str] = []
        confidences: list[float] = []
        for image in pages:
            text, confidence = self._ocr_page(image)
            page_texts.append(text)
            if confidence is not None:
                confidences.append(confidence)

        text = "\n".join(t for t in page_texts if t).strip()
        if not text:
            raise ProviderError(self.name, "No text detected")

        confidence = sum(confidences) / len(confidences) if confidences else None
        logger.info(f"Tesseract OCR: {len(pages)} pages, {len(text)} chars")

        return ProviderResult(
            text=text,
            provider=self.name,
            confidence=confidence,
            page_count=len(pages),
        )

    def _ocr_page(self, image: Image.Image) -> tuple[str, Optional[float]]:
        """OCR one page image. Returns (text, mean word confidence 0..1)."""
        try:
            data = pytesseract.image_to_data(
                image,
                lang=self.config.lang,
                output_type=Output.DICT,
                timeout=self.config.timeout_seconds,
            )
        except pytesseract.TesseractNotFoundError as e:
            raise ProviderConfigurationError(self.name, "tesseract binary not found") from e
        except RuntimeError as e:
            # pytesseract signals a killed process with RuntimeError
            if "timeout" in str(e).lower():
                raise ProviderTimeout(
                    self.name, f"OCR timed out after {self.config.timeout_seconds}s"
                ) from e
            raise ProviderError(self.name, f"OCR failed: {e}") from e

        lines: dict[tuple[int, int, int, int], list[str]] = {}
        word_confidences: list[float] = []

        for i, word in enumerate(data.get("text", [])):
            word = (word or "").strip()
            if not word:
                continue
            key = (
                data["page_num"][i],
                data["block_num"][i],
                data["par_num"][i],
                data["line_num"][i],
            )
            lines.setdefault(key, []).append(word)
            conf = float(data["conf"][i])
            if conf >= 0:
                word_confidences.append(conf)

        text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
        confidence = (
            sum(word_confidences) / len(word_confidences) / 100.0 if word_confidences else None
        )
        return text, confidence
