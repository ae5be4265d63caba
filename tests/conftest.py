"""Test fixtures and utilities."""

import io
from pathlib import Path
from typing import Optional

import pytest

from statement_intake.extractors import (
    IMAGE_MIME_TYPES,
    PDF_MIME_TYPE,
    ExtractionChain,
    ProviderError,
    ProviderResult,
    TextProvider,
)
from statement_intake.state_store import StateStore
from statement_intake.storage import LocalObjectStorage

# Sample statement text as a text layer or OCR engine would return it
SAMPLE_STATEMENT_TEXT = """
CHASE BANK
Account Number: ****1234
Statement Period: 01/01/2024 - 01/31/2024

Beginning Balance $5,000.00

01/01/2024 GROCERY STORE PURCHASE 125.50 -
01/02/2024 DIRECT DEPOSIT PAYROLL 3,500.00 +
01/03/2024 CHECK 1234 500.00 7,874.50
01/05/2024 RESTAURANT PURCHASE 65.25
01/10/2024 COFFEE SHOP $N/A
ATM WITHDRAWAL 200.00 - 01/15/2024
01/20/2024 ONLINE TRANSFER $1,000.00

Total Deposits 3,500.00
Ending Balance $7,609.25
Page 1 of 1
"""

# Credit card style statement, short dates resolved against a reference year
SAMPLE_CARD_STATEMENT_TEXT = """
Wells Fargo
Card ending in 9876
For the month of March 2023
Previous Balance 250.00
03/02 AMAZON MARKETPLACE PURCHASE 42.17
03/09 PAYMENT RECEIVED THANK YOU 250.00
03/15 ANNUAL FEE 95.00
New Balance $137.17
"""

ALL_MIME_TYPES = (PDF_MIME_TYPE, *sorted(IMAGE_MIME_TYPES))


class FakeProvider(TextProvider):
    """Scripted provider: returns fixed text or raises a fixed error."""

    def __init__(
        self,
        name: str,
        text: Optional[str] = None,
        error: Optional[Exception] = None,
        confidence: Optional[float] = None,
        mime_types: tuple[str, ...] = ALL_MIME_TYPES,
    ):
        self._name = name
        self.text = text
        self.error = error
        self.confidence = confidence
        self.mime_types = mime_types
        self.calls = 0

    @property
    def name(self) -> str:
        return self._name

    def supports(self, mime_type: str) -> bool:
        return mime_type in self.mime_types

    def extract(self, data: bytes, mime_type: str) -> ProviderResult:
        self.calls += 1
        if self.error is not None:
            raise self.error
        if self.text is None:
            raise ProviderError(self._name, "No text detected")
        return ProviderResult(text=self.text, provider=self._name, confidence=self.confidence)


@pytest.fixture
def sample_statement_text() -> str:
    """Checking account statement text."""
    return SAMPLE_STATEMENT_TEXT


@pytest.fixture
def sample_card_statement_text() -> str:
    """Credit card statement text with M/D dates."""
    return SAMPLE_CARD_STATEMENT_TEXT


@pytest.fixture
def fake_provider():
    """Factory for scripted providers."""
    return FakeProvider


@pytest.fixture
def text_chain():
    """Factory: chain with one provider that returns the given text."""

    def _make(text: Optional[str], confidence: Optional[float] = None, min_text_length: int = 50):
        return ExtractionChain(
            [FakeProvider("fake_text", text=text, confidence=confidence)],
            min_text_length=min_text_length,
        )

    return _make


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store."""
    return StateStore(temp_db)


@pytest.fixture
def storage(tmp_path) -> LocalObjectStorage:
    """Local object storage in a temp directory."""
    return LocalObjectStorage(tmp_path / "storage")


@pytest.fixture
def make_statement(store):
    """Factory: create a statement row in status uploaded."""
    counter = {"n": 0}

    def _make(run_id: str = "run-1", mime_type: str = PDF_MIME_TYPE, **overrides):
        counter["n"] += 1
        fields = {
            "storage_path": f"statements/2024/1/{counter['n']}_statement.pdf",
            "account_name": "Operating Account",
            "bank_name": "Unknown Bank",
            "month": 1,
            "year": 2024,
            "currency": "USD",
            "original_filename": "statement.pdf",
            "mime_type": mime_type,
            "file_size": 1024,
            "source_hash": f"{counter['n']:064d}",
        }
        fields.update(overrides)
        return store.create_statement(run_id=run_id, **fields)

    return _make


def build_text_pdf(lines: list[str]) -> bytes:
    """Render lines of text into a one-page PDF with a real text layer."""
    from reportlab.lib.pagesizes import letter
    from reportlab.pdfgen import canvas

    buf = io.BytesIO()
    pdf = canvas.Canvas(buf, pagesize=letter)
    pdf.setFont("Helvetica", 12)
    y = 740
    for line in lines:
        pdf.drawString(50, y, line)
        y -= 18
    pdf.showPage()
    pdf.save()
    return buf.getvalue()


def build_blank_pdf() -> bytes:
    """One-page PDF without any text (like a scan without OCR)."""
    from reportlab.lib.pagesizes import letter
    from reportlab.pdfgen import canvas

    buf = io.BytesIO()
    pdf = canvas.Canvas(buf, pagesize=letter)
    pdf.rect(100, 100, 200, 200)
    pdf.showPage()
    pdf.save()
    return buf.getvalue()


@pytest.fixture
def statement_pdf(sample_statement_text) -> bytes:
    """Born-digital statement PDF."""
    return build_text_pdf([line for line in sample_statement_text.splitlines() if line.strip()])


@pytest.fixture
def text_pdf():
    """Factory: PDF with the given lines in its text layer."""
    return build_text_pdf


@pytest.fixture
def blank_pdf() -> bytes:
    """PDF without a text layer."""
    return build_blank_pdf()
