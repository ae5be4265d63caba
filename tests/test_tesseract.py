"""Tests for the Tesseract OCR provider (engine mocked)."""

import pytesseract
import pytest
from pdf2image.exceptions import PDFInfoNotInstalledError

from statement_intake.config import TesseractConfig
from statement_intake.extractors import (
    ProviderConfigurationError,
    ProviderError,
    ProviderTimeout,
    TesseractProvider,
)


def ocr_data(words):
    """Build image_to_data DICT output from (page, block, par, line, text, conf) rows."""
    data = {"page_num": [], "block_num": [], "par_num": [], "line_num": [], "text": [], "conf": []}
    for page, block, par, line, text, conf in words:
        data["page_num"].append(page)
        data["block_num"].append(block)
        data["par_num"].append(par)
        data["line_num"].append(line)
        data["text"].append(text)
        data["conf"].append(conf)
    return data


@pytest.fixture
def pages(monkeypatch):
    """Replace page rendering with fake page objects."""
    rendered = ["page-1"]
    monkeypatch.setattr(
        "statement_intake.extractors.tesseract.render_pages",
        lambda data, mime_type, dpi, max_pages: rendered,
    )
    return rendered


class TestTesseractProvider:
    """Word data to text lines."""

    def test_words_grouped_into_lines(self, monkeypatch, pages):
        words = [
            (1, 1, 1, 2, "01/05", 90),
            (1, 1, 1, 2, "COFFEE", 80),
            (1, 1, 1, 2, "4.50", 70),
            (1, 1, 1, 1, "CHASE", 96),
            (1, 1, 1, 1, "", -1),
            (1, 1, 1, 1, "BANK", 94),
        ]
        monkeypatch.setattr(pytesseract, "image_to_data", lambda *a, **kw: ocr_data(words))

        result = TesseractProvider(TesseractConfig()).extract(b"img", "image/png")

        assert result.text == "CHASE BANK\n01/05 COFFEE 4.50"
        assert result.confidence == pytest.approx(0.86)
        assert result.provider == "tesseract"
        assert result.page_count == 1

    def test_pages_joined(self, monkeypatch, pages):
        pages.append("page-2")
        outputs = iter(
            [
                ocr_data([(1, 1, 1, 1, "first", 90)]),
                ocr_data([(1, 1, 1, 1, "second", 90)]),
            ]
        )
        monkeypatch.setattr(pytesseract, "image_to_data", lambda *a, **kw: next(outputs))

        result = TesseractProvider(TesseractConfig()).extract(b"%PDF", "application/pdf")

        assert result.text == "first\nsecond"
        assert result.page_count == 2

    def test_config_passed_to_engine(self, monkeypatch, pages):
        seen = {}

        def fake_image_to_data(image, **kwargs):
            seen.update(kwargs)
            return ocr_data([(1, 1, 1, 1, "text", 90)])

        monkeypatch.setattr(pytesseract, "image_to_data", fake_image_to_data)

        TesseractProvider(TesseractConfig(lang="deu", timeout_seconds=7)).extract(b"img", "image/png")

        assert seen["lang"] == "deu"
        assert seen["timeout"] == 7

    def test_disabled(self):
        with pytest.raises(ProviderConfigurationError):
            TesseractProvider(TesseractConfig(enabled=False)).extract(b"img", "image/png")

    def test_binary_missing(self, monkeypatch, pages):
        def missing(*args, **kwargs):
            raise pytesseract.TesseractNotFoundError()

        monkeypatch.setattr(pytesseract, "image_to_data", missing)

        with pytest.raises(ProviderConfigurationError):
            TesseractProvider(TesseractConfig()).extract(b"img", "image/png")

    def test_timeout(self, monkeypatch, pages):
        def slow(*args, **kwargs):
            raise RuntimeError("Tesseract process timeout")

        monkeypatch.setattr(pytesseract, "image_to_data", slow)

        with pytest.raises(ProviderTimeout):
            TesseractProvider(TesseractConfig()).extract(b"img", "image/png")

    def test_engine_error(self, monkeypatch, pages):
        def broken(*args, **kwargs):
            raise RuntimeError("engine crashed")

        monkeypatch.setattr(pytesseract, "image_to_data", broken)

        with pytest.raises(ProviderError) as exc_info:
            TesseractProvider(TesseractConfig()).extract(b"img", "image/png")
        assert not isinstance(exc_info.value, ProviderTimeout)

    def test_blank_page_is_an_error(self, monkeypatch, pages):
        monkeypatch.setattr(
            pytesseract, "image_to_data", lambda *a, **kw: ocr_data([(1, 1, 1, 1, " ", -1)])
        )

        with pytest.raises(ProviderError) as exc_info:
            TesseractProvider(TesseractConfig()).extract(b"img", "image/png")
        assert exc_info.value.message == "No text detected"

    def test_unreadable_image(self):
        with pytest.raises(ProviderError):
            TesseractProvider(TesseractConfig()).extract(b"not an image", "image/png")

    def test_missing_poppler_is_configuration_error(self, monkeypatch):
        def no_poppler(*args, **kwargs):
            raise PDFInfoNotInstalledError("Unable to get page count. Is poppler installed and in PATH?")

        monkeypatch.setattr("statement_intake.extractors.tesseract.render_pages", no_poppler)

        with pytest.raises(ProviderConfigurationError):
            TesseractProvider(TesseractConfig()).extract(b"%PDF", "application/pdf")
