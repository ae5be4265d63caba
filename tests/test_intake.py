"""Tests for upload intake, retry and delete."""

import re

import pytest

from statement_intake.config import IntakeConfig
from statement_intake.schemas import StatementStatus, compute_file_hash
from statement_intake.services import (
    IntakeValidationError,
    RetryNotAllowedError,
    StatementIntake,
    sanitize_filename,
)
from statement_intake.state_store import StatementNotFoundError


class RecordingSupervisor:
    """Captures scheduled runs instead of executing them."""

    def __init__(self):
        self.submitted = []

    def submit(self, statement_id, run_id, trigger="upload"):
        self.submitted.append((statement_id, run_id, trigger))


@pytest.fixture
def supervisor():
    return RecordingSupervisor()


@pytest.fixture
def intake(store, storage, supervisor):
    return StatementIntake(store, storage, IntakeConfig(max_file_size=1024), supervisor)


def upload(intake, data=b"%PDF-1.4 statement", **overrides):
    fields = {
        "filename": "january.pdf",
        "mime_type": "application/pdf",
        "account_name": "Operating Account",
        "month": 1,
        "year": 2024,
    }
    fields.update(overrides)
    return intake.submit(data, **fields)


class TestValidation:
    """Rejected uploads store nothing."""

    @pytest.mark.parametrize(
        "data, overrides, message",
        [
            (b"", {}, "file is empty"),
            (b"x" * 2048, {}, "maximum size"),
            (b"x", {"mime_type": "text/csv"}, "unsupported file type"),
            (b"x", {"account_name": "  "}, "account_name is required"),
            (b"x", {"filename": ""}, "filename is required"),
            (b"x", {"month": 13}, "month must be between 1 and 12"),
            (b"x", {"month": 0}, "month must be between 1 and 12"),
            (b"x", {"year": 24}, "four-digit year"),
        ],
    )
    def test_rejected(self, intake, store, storage, supervisor, data, overrides, message):
        with pytest.raises(IntakeValidationError) as exc_info:
            upload(intake, data, **overrides)

        assert any(message in error for error in exc_info.value.errors)
        assert store.list_statements() == []
        assert supervisor.submitted == []
        assert list(storage.root.rglob("*.pdf")) == []

    def test_all_errors_reported(self, intake):
        errors = intake.validate(b"", "", "text/csv", "", 0, 0)

        assert len(errors) == 6


class TestSubmit:
    """Accepted uploads."""

    def test_statement_created_and_scheduled(self, intake, store, storage, supervisor):
        statement = upload(intake)

        assert statement.status == StatementStatus.UPLOADED
        assert statement.account_name == "Operating Account"
        assert statement.original_filename == "january.pdf"
        assert statement.file_size == len(b"%PDF-1.4 statement")
        assert statement.source_hash == compute_file_hash(b"%PDF-1.4 statement")
        assert supervisor.submitted == [(statement.id, statement.current_run_id, "upload")]
        assert storage.get(statement.storage_path) == b"%PDF-1.4 statement"

    def test_storage_key_format(self, intake):
        statement = upload(intake, filename="../My Statement (Jan).pdf", month=3, year=2023)

        assert re.fullmatch(r"statements/2023/3/\d+_My_Statement_Jan_\.pdf", statement.storage_path)

    def test_defaults(self, intake):
        statement = upload(intake)

        assert statement.bank_name == "Unknown Bank"
        assert statement.currency == "USD"

    def test_declared_fields_kept(self, intake):
        statement = upload(intake, bank_name="Chase", currency="eur")

        assert statement.bank_name == "Chase"
        assert statement.currency == "EUR"

    def test_duplicate_upload_is_accepted(self, intake, store):
        first = upload(intake)
        second = upload(intake)

        assert first.id != second.id
        assert len(store.find_statements_by_hash(first.source_hash)) == 2

    def test_no_supervisor_leaves_statement_uploaded(self, store, storage):
        statement = upload(StatementIntake(store, storage))

        assert store.get_statement(statement.id).status == StatementStatus.UPLOADED

    def test_store_failure_removes_file(self, intake, store, storage, monkeypatch):
        def broken(**kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(store, "create_statement", broken)

        with pytest.raises(RuntimeError):
            upload(intake)
        assert [p for p in storage.root.rglob("*") if p.is_file()] == []


class TestRetry:
    """Explicit retry."""

    def test_retry_failed_statement(self, intake, store, supervisor):
        statement = upload(intake)
        store.mark_failed(statement.id, statement.current_run_id, ["boom"])

        retried = intake.retry(statement.id)

        assert retried.status == StatementStatus.UPLOADED
        assert retried.current_run_id != statement.current_run_id
        assert retried.processing_errors[0] == "boom"
        assert retried.processing_errors[1].startswith("Retry requested at ")
        assert supervisor.submitted[-1] == (statement.id, retried.current_run_id, "retry")

    def test_retry_in_flight_rejected(self, intake, supervisor):
        statement = upload(intake)

        with pytest.raises(RetryNotAllowedError) as exc_info:
            intake.retry(statement.id)

        assert exc_info.value.status == "uploaded"
        assert "completed" in str(exc_info.value)
        assert len(supervisor.submitted) == 1

    def test_retry_missing(self, intake):
        with pytest.raises(StatementNotFoundError):
            intake.retry(404)


class TestDelete:
    def test_delete_removes_file_and_rows(self, intake, store, storage):
        statement = upload(intake)

        intake.delete(statement.id)

        assert store.get_statement(statement.id) is None
        assert not storage.exists(statement.storage_path)

    def test_delete_missing(self, intake):
        with pytest.raises(StatementNotFoundError):
            intake.delete(404)


class TestSanitizeFilename:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("statement.pdf", "statement.pdf"),
            ("C:\\Users\\me\\scan 01.png", "scan_01.png"),
            ("../../etc/passwd", "passwd"),
            ("...", "statement"),
        ],
    )
    def test_sanitize(self, raw, expected):
        assert sanitize_filename(raw) == expected
