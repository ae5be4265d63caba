"""Tests for the extraction provider chain."""

import pytest

from statement_intake.config import FALLBACK_AVAILABILITY, Config
from statement_intake.extractors import (
    PDF_MIME_TYPE,
    ExtractionChain,
    ExtractionExhausted,
    GoogleVisionProvider,
    LowContentExtraction,
    PdfTextLayerProvider,
    ProviderConfigurationError,
    ProviderError,
    ProviderTimeout,
    ProviderUnavailable,
    TesseractProvider,
    build_default_chain,
)

LONG_TEXT = "01/05/2024 COFFEE SHOP 4.50 -\n" * 5


class TestChainOrder:
    """Fallthrough behaviour."""

    def test_first_acceptable_result_wins(self, fake_provider):
        first = fake_provider("first", text=LONG_TEXT)
        second = fake_provider("second", text=LONG_TEXT)
        chain = ExtractionChain([first, second])

        outcome = chain.extract(b"data", PDF_MIME_TYPE)

        assert outcome.provider_used == "first"
        assert outcome.text == LONG_TEXT
        assert not outcome.low_content
        assert second.calls == 0
        assert len(outcome.attempts) == 1

    def test_falls_through_on_error(self, fake_provider):
        chain = ExtractionChain(
            [
                fake_provider("pdf_text", error=ProviderError("pdf_text", "not a pdf")),
                fake_provider("ocr", text=LONG_TEXT, confidence=0.9),
            ]
        )

        outcome = chain.extract(b"data", PDF_MIME_TYPE)

        assert outcome.provider_used == "ocr"
        assert outcome.confidence == 0.9
        assert [a.success for a in outcome.attempts] == [False, True]
        assert outcome.attempts[0].error == "not a pdf"
        assert outcome.attempts[0].error_type == "ProviderError"

    def test_falls_through_on_short_text(self, fake_provider):
        """Image-only PDF: empty text layer is not accepted."""
        chain = ExtractionChain(
            [fake_provider("pdf_text", text=""), fake_provider("ocr", text=LONG_TEXT)]
        )

        outcome = chain.extract(b"data", PDF_MIME_TYPE)

        assert outcome.provider_used == "ocr"
        assert outcome.attempts[0].success
        assert outcome.attempts[0].char_count == 0

    def test_threshold_boundary(self, fake_provider):
        """49 trimmed characters fall through, 50 are accepted."""
        short = "  " + "a" * 49 + "  "
        exact = "a" * 50

        chain = ExtractionChain([fake_provider("p", text=short)], min_text_length=50)
        assert isinstance(chain.extract(b"", PDF_MIME_TYPE), LowContentExtraction)

        chain = ExtractionChain([fake_provider("p", text=exact)], min_text_length=50)
        outcome = chain.extract(b"", PDF_MIME_TYPE)
        assert not isinstance(outcome, LowContentExtraction)
        assert outcome.content_length == 50

    def test_threshold_is_configurable(self, fake_provider):
        chain = ExtractionChain([fake_provider("p", text="short text")], min_text_length=5)

        assert not chain.extract(b"", PDF_MIME_TYPE).low_content


class TestChainOutcomes:
    """Low content and exhaustion."""

    def test_low_content_keeps_longest_short_text(self, fake_provider):
        chain = ExtractionChain(
            [
                fake_provider("a", text="tiny"),
                fake_provider("b", text="a bit longer"),
                fake_provider("c", error=ProviderUnavailable("c", "down")),
            ]
        )

        outcome = chain.extract(b"", PDF_MIME_TYPE)

        assert isinstance(outcome, LowContentExtraction)
        assert outcome.low_content
        assert outcome.provider_used == "b"
        assert outcome.text == "a bit longer"
        assert outcome.min_text_length == 50
        assert len(outcome.attempts) == 3

    def test_equal_short_results_keep_the_first(self, fake_provider):
        chain = ExtractionChain([fake_provider("a", text="same"), fake_provider("b", text="size")])

        assert chain.extract(b"", PDF_MIME_TYPE).provider_used == "a"

    def test_all_fail_raises_exhausted(self, fake_provider):
        chain = ExtractionChain(
            [
                fake_provider("a", error=ProviderConfigurationError("a", "no api key")),
                fake_provider("b", error=ProviderTimeout("b", "timed out")),
            ]
        )

        with pytest.raises(ExtractionExhausted) as exc_info:
            chain.extract(b"", PDF_MIME_TYPE)

        attempts = exc_info.value.attempts
        assert [a.provider for a in attempts] == ["a", "b"]
        assert [a.error_type for a in attempts] == ["ProviderConfigurationError", "ProviderTimeout"]
        assert attempts[1].describe() == "b: ProviderTimeout: timed out"

    def test_no_provider_for_mime_type(self, fake_provider):
        chain = ExtractionChain([fake_provider("pdf_only", text=LONG_TEXT, mime_types=(PDF_MIME_TYPE,))])

        with pytest.raises(ExtractionExhausted) as exc_info:
            chain.extract(b"", "image/png")

        assert exc_info.value.attempts == []
        assert "image/png" in str(exc_info.value)

    def test_mime_filtering_skips_text_layer_for_images(self, fake_provider):
        pdf_only = fake_provider("pdf_text", text=LONG_TEXT, mime_types=(PDF_MIME_TYPE,))
        ocr = fake_provider("ocr", text=LONG_TEXT)
        chain = ExtractionChain([pdf_only, ocr])

        outcome = chain.extract(b"", "image/jpeg")

        assert outcome.provider_used == "ocr"
        assert pdf_only.calls == 0

    def test_non_provider_errors_propagate(self, fake_provider):
        chain = ExtractionChain([fake_provider("a", error=RuntimeError("bug"))])

        with pytest.raises(RuntimeError):
            chain.extract(b"", PDF_MIME_TYPE)


class TestFallbackPolicy:
    """any_error vs availability."""

    def test_any_error_falls_through_on_content_error(self, fake_provider):
        chain = ExtractionChain(
            [
                fake_provider("a", error=ProviderError("a", "bad image")),
                fake_provider("b", text=LONG_TEXT),
            ]
        )

        assert chain.extract(b"", PDF_MIME_TYPE).provider_used == "b"

    def test_availability_stops_on_content_error(self, fake_provider):
        second = fake_provider("b", text=LONG_TEXT)
        chain = ExtractionChain(
            [fake_provider("a", error=ProviderError("a", "bad image")), second],
            fallback_policy=FALLBACK_AVAILABILITY,
        )

        with pytest.raises(ExtractionExhausted):
            chain.extract(b"", PDF_MIME_TYPE)
        assert second.calls == 0

    @pytest.mark.parametrize(
        "error",
        [
            ProviderConfigurationError("a", "no key"),
            ProviderUnavailable("a", "503"),
            ProviderTimeout("a", "timed out"),
        ],
    )
    def test_availability_falls_through_on_availability_errors(self, fake_provider, error):
        chain = ExtractionChain(
            [fake_provider("a", error=error), fake_provider("b", text=LONG_TEXT)],
            fallback_policy=FALLBACK_AVAILABILITY,
        )

        assert chain.extract(b"", PDF_MIME_TYPE).provider_used == "b"

    def test_availability_still_falls_through_on_short_text(self, fake_provider):
        chain = ExtractionChain(
            [fake_provider("a", text=""), fake_provider("b", text=LONG_TEXT)],
            fallback_policy=FALLBACK_AVAILABILITY,
        )

        assert chain.extract(b"", PDF_MIME_TYPE).provider_used == "b"

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValueError):
            ExtractionChain([], fallback_policy="sometimes")


class TestDefaultChain:
    """Chain built from configuration."""

    def test_provider_order(self):
        chain = build_default_chain(Config())

        assert [type(p) for p in chain.providers] == [
            PdfTextLayerProvider,
            GoogleVisionProvider,
            TesseractProvider,
        ]
        assert chain.min_text_length == 50

    def test_image_order_skips_text_layer(self):
        chain = build_default_chain(Config())

        assert [p.name for p in chain.providers_for("image/png")] == ["google_vision", "tesseract"]
        assert [p.name for p in chain.providers_for(PDF_MIME_TYPE)] == [
            "pdf_text",
            "google_vision",
            "tesseract",
        ]

    def test_tesseract_disabled(self):
        config = Config()
        config.tesseract.enabled = False
        config.extraction.min_text_length = 10

        chain = build_default_chain(config)

        assert [p.name for p in chain.providers] == ["pdf_text", "google_vision"]
        assert chain.min_text_length == 10
