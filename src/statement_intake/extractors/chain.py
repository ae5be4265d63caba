"""
Extraction chain - tries text providers in order until one yields usable text.

Order for PDFs: text layer, cloud OCR, offline OCR.
Order for images: cloud OCR, offline OCR.

A result whose trimmed text is shorter than min_text_length is not accepted
and the chain falls through; if no provider produces acceptable text but at
least one produced short text, the outcome is low content (manual review).
If no provider produced anything, ExtractionExhausted is raised.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..config import (
    FALLBACK_ANY_ERROR,
    FALLBACK_AVAILABILITY,
    FALLBACK_POLICIES,
    Config,
)
from .base import (
    ExtractionError,
    ProviderConfigurationError,
    ProviderError,
    ProviderResult,
    ProviderTimeout,
    ProviderUnavailable,
    TextProvider,
)
from .pdf_text import PdfTextLayerProvider
from .tesseract import TesseractProvider
from .vision import GoogleVisionProvider

logger = logging.getLogger(__name__)

# Errors the availability policy falls through on
AVAILABILITY_ERRORS = (ProviderConfigurationError, ProviderUnavailable, ProviderTimeout)


@dataclass
class ProviderAttempt:
    """One provider call, successful or not."""

    provider: str
    success: bool
    char_count: int = 0
    confidence: Optional[float] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "success": self.success,
            "char_count": self.char_count,
            "confidence": self.confidence,
            "error": self.error,
            "error_type": self.error_type,
        }

    def describe(self) -> str:
        """Human-readable line for processing errors."""
        if self.success:
            return f"{self.provider}: returned {self.char_count} characters"
        return f"{self.provider}: {self.error_type}: {self.error}"


@dataclass
class ExtractionOutcome:
    """Text accepted from the chain, with provenance."""

    text: str
    provider_used: str
    confidence: Optional[float] = None
    attempts: list[ProviderAttempt] = field(default_factory=list)
    low_content: bool = False

    @property
    def content_length(self) -> int:
        return len(self.text.strip())


@dataclass
class LowContentExtraction(ExtractionOutcome):
    """
    Best short result when no provider reached the minimum content length.

    Not an error: the document is routed to manual review.
    """

    low_content: bool = True
    min_text_length: int = 0


class ExtractionExhausted(ExtractionError):
    """Every applicable provider failed."""

    def __init__(self, attempts: list[ProviderAttempt], message: str = "All extraction providers failed"):
        self.attempts = attempts
        super().__init__(message)


class ExtractionChain:
    """
    Ordered provider chain (strategy pattern).

    Providers are injected at construction so tests can substitute them.
    """

    def __init__(
        self,
        providers: list[TextProvider],
        min_text_length: int = 50,
        fallback_policy: str = FALLBACK_ANY_ERROR,
    ):
        if fallback_policy not in FALLBACK_POLICIES:
            raise ValueError(f"Unknown fallback policy: {fallback_policy}")
        self.providers = list(providers)
        self.min_text_length = min_text_length
        self.fallback_policy = fallback_policy

    def providers_for(self, mime_type: str) -> list[TextProvider]:
        """Providers that handle mime_type, in chain order."""
        return [p for p in self.providers if p.supports(mime_type)]

    def extract(self, data: bytes, mime_type: str) -> ExtractionOutcome:
        """
        Run the chain over document bytes.

        Returns:
            ExtractionOutcome, or LowContentExtraction when only short text
            was produced

        Raises:
            ExtractionExhausted: If no provider produced any text
        """
        applicable = self.providers_for(mime_type)
        if not applicable:
            raise ExtractionExhausted([], f"No extraction provider supports {mime_type}")

        attempts: list[ProviderAttempt] = []
        best_short: Optional[ProviderResult] = None

        for provider in applicable:
            try:
                result = provider.extract(data, mime_type)
            except ProviderError as e:
                attempts.append(
                    ProviderAttempt(
                        provider=provider.name,
                        success=False,
                        error=e.message,
                        error_type=type(e).__name__,
                    )
                )
                logger.warning(f"Provider {provider.name} failed: {e}")

                if self.fallback_policy == FALLBACK_AVAILABILITY and not isinstance(
                    e, AVAILABILITY_ERRORS
                ):
                    logger.warning(f"Stopping chain after fatal error from {provider.name}")
                    break
                continue

            attempts.append(
                ProviderAttempt(
                    provider=provider.name,
                    success=True,
                    char_count=result.content_length,
                    confidence=result.confidence,
                )
            )

            if result.content_length >= self.min_text_length:
                logger.info(
                    f"Extracted {result.content_length} chars with {provider.name}"
                )
                return ExtractionOutcome(
                    text=result.text,
                    provider_used=provider.name,
                    confidence=result.confidence,
                    attempts=attempts,
                )

            logger.info(
                f"Provider {provider.name} returned {result.content_length} chars "
                f"(< {self.min_text_length}), falling through"
            )
            if best_short is None or result.content_length > best_short.content_length:
                best_short = result

        if best_short is not None:
            return LowContentExtraction(
                text=best_short.text,
                provider_used=best_short.provider,
                confidence=best_short.confidence,
                attempts=attempts,
                min_text_length=self.min_text_length,
            )

        raise ExtractionExhausted(attempts)


def build_default_chain(config: Config) -> ExtractionChain:
    """Build the provider chain from configuration."""
    providers: list[TextProvider] = [
        PdfTextLayerProvider(max_pages=config.extraction.max_pdf_pages),
        GoogleVisionProvider(config.vision),
    ]
    if config.tesseract.enabled:
        providers.append(TesseractProvider(config.tesseract))

    return ExtractionChain(
        providers,
        min_text_length=config.extraction.min_text_length,
        fallback_policy=config.extraction.fallback_policy,
    )
