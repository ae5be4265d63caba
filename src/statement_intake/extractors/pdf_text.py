"""
PDF text layer provider.

Reads the embedded text of born-digital PDFs with pdfplumber. Scanned PDFs
have no (or almost no) text layer; the chain detects that by length and
falls through to OCR.
"""

import io
import logging

import pdfplumber

from .base import PDF_MIME_TYPE, ProviderError, ProviderResult, TextProvider

logger = logging.getLogger(__name__)


class PdfTextLayerProvider(TextProvider):
    """Extract the text layer of a PDF, page by page."""

    def __init__(self, max_pages: int = 50):
        self.max_pages = max_pages

    @property
    def name(self) -> str:
        return "pdf_text"

    def supports(self, mime_type: str) -> bool:
        return mime_type == PDF_MIME_TYPE

    def extract(self, data: bytes, mime_type: str) -> ProviderResult:
        """Concatenate page text in page order."""
        page_texts: list[str] = []

        try:
            with pdfplumber.open(io.BytesIO(data)) as pdf:
                pages = pdf.pages[: self.max_pages]
                for page in pages:
                    page_texts.append(page.extract_text() or "")
                page_count = len(pages)
        except Exception as e:
            # pdfminer raises a variety of syntax/stream errors for broken files
            raise ProviderError(self.name, f"PDF text extraction failed: {e}") from e

        text = "\n".join(page_texts).strip()
        logger.debug(f"PDF text layer: {page_count} pages, {len(text)} chars")

        return ProviderResult(text=text, provider=self.name, page_count=page_count)
