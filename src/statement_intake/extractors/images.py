"""
Page rendering helpers shared by the OCR providers.

Turns a PDF or (possibly multi-frame) image into an ordered list of
PIL images, one per page.
"""

import io

from PIL import Image, ImageSequence
from pdf2image import convert_from_bytes

from .base import PDF_MIME_TYPE


def render_pages(data: bytes, mime_type: str, dpi: int = 300, max_pages: int = 20) -> list[Image.Image]:
    """
    Render document bytes to page images in page order.

    PDFs are rasterized with pdf2image (poppler); TIFFs may carry several
    frames, each frame is one page.
    """
    if mime_type == PDF_MIME_TYPE:
        return convert_from_bytes(data, dpi=dpi, first_page=1, last_page=max_pages)

    image = Image.open(io.BytesIO(data))
    pages = []
    for frame in ImageSequence.Iterator(image):
        pages.append(frame.convert("RGB"))
        if len(pages) >= max_pages:
            break
    return pages


def image_to_png_bytes(image: Image.Image) -> bytes:
    """Encode a page image as PNG."""
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()
