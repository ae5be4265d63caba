"""
Base text provider interface and common types.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

PDF_MIME_TYPE = "application/pdf"
IMAGE_MIME_TYPES = frozenset({"image/jpeg", "image/png", "image/tiff"})


class ExtractionError(Exception):
    """Base exception for text extraction errors."""

    pass


class ProviderError(ExtractionError):
    """A provider failed to produce text."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(f"{provider}: {message}")


class ProviderConfigurationError(ProviderError):
    """Provider is not configured (credentials, library or binary missing)."""

    pass


class ProviderUnavailable(ProviderError):
    """Provider could not be reached."""

    pass


class ProviderTimeout(ProviderError):
    """Provider call exceeded its timeout."""

    pass


@dataclass
class ProviderResult:
    """Text produced by one provider."""

    text: str
    provider: str
    confidence: Optional[float] = None  # 0.0 - 1.0, None if not reported
    page_count: int = 0

    @property
    def content_length(self) -> int:
        """Length of the trimmed text."""
        return len(self.text.strip())


class TextProvider(ABC):
    """
    Base class for all text providers.

    Each provider implements one way of turning document bytes into text:
    - PDF text layer
    - Cloud document OCR
    - Local OCR engine
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for logging and provenance."""
        pass

    @abstractmethod
    def supports(self, mime_type: str) -> bool:
        """
        Check if this provider can handle the given MIME type.

        Args:
            mime_type: Declared MIME type of the document

        Returns:
            True if this provider should be attempted
        """
        pass

    @abstractmethod
    def extract(self, data: bytes, mime_type: str) -> ProviderResult:
        """
        Extract text from document bytes.

        Args:
            data: Raw document bytes
            mime_type: Declared MIME type

        Returns:
            ProviderResult with text and optional confidence

        Raises:
            ProviderError: If the provider could not produce text
        """
        pass
