"""
Text extraction providers and the provider chain.
"""

from .base import (
    IMAGE_MIME_TYPES,
    PDF_MIME_TYPE,
    ExtractionError,
    ProviderConfigurationError,
    ProviderError,
    ProviderResult,
    ProviderTimeout,
    ProviderUnavailable,
    TextProvider,
)
from .chain import (
    ExtractionChain,
    ExtractionExhausted,
    ExtractionOutcome,
    LowContentExtraction,
    ProviderAttempt,
    build_default_chain,
)
from .pdf_text import PdfTextLayerProvider
from .tesseract import TesseractProvider
from .vision import GoogleVisionProvider

__all__ = [
    "PDF_MIME_TYPE",
    "IMAGE_MIME_TYPES",
    "TextProvider",
    "ProviderResult",
    "ExtractionError",
    "ProviderError",
    "ProviderConfigurationError",
    "ProviderUnavailable",
    "ProviderTimeout",
    "ExtractionChain",
    "ExtractionOutcome",
    "LowContentExtraction",
    "ExtractionExhausted",
    "ProviderAttempt",
    "build_default_chain",
    "PdfTextLayerProvider",
    "GoogleVisionProvider",
    "TesseractProvider",
]
