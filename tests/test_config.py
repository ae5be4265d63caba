"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest

from statement_intake.config import (
    FALLBACK_AVAILABILITY,
    Config,
    ConfigValidationError,
    create_default_config,
    load_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "GOOGLE_VISION_API_KEY",
        "GOOGLE_VISION_ENDPOINT",
        "OCR_TIMEOUT",
        "TESSERACT_CMD",
        "STATEMENT_MIN_TEXT_LENGTH",
        "STATEMENT_FALLBACK_POLICY",
        "STATEMENT_STORAGE_ROOT",
        "STATEMENT_STATE_DB",
        "STATEMENT_WORKERS",
    ):
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")

        assert config.extraction.min_text_length == 50
        assert config.extraction.fallback_policy == "any_error"
        assert config.vision.api_key == ""
        assert config.tesseract.enabled
        assert config.intake.default_bank_name == "Unknown Bank"
        assert config.state_db_path == Path("data/state.db")

    def test_default_file_round_trips(self, tmp_path):
        path = tmp_path / "nested" / "config.yaml"
        create_default_config(path)

        assert load_config(path) == Config()

    def test_yaml_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "vision:\n"
            "  api_key: abc\n"
            "  page_workers: 2\n"
            "extraction:\n"
            "  min_text_length: 80\n"
            "  fallback_policy: availability\n"
            "intake:\n"
            "  allowed_mime_types: [application/pdf]\n"
            "processing:\n"
            "  reference_year: 2023\n"
        )

        config = load_config(path)

        assert config.vision.api_key == "abc"
        assert config.vision.is_configured
        assert config.vision.page_workers == 2
        assert config.extraction.min_text_length == 80
        assert config.extraction.fallback_policy == FALLBACK_AVAILABILITY
        assert config.intake.allowed_mime_types == ("application/pdf",)
        assert config.processing.reference_year == 2023

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("vision:\n  api_key: from-file\n")
        monkeypatch.setenv("GOOGLE_VISION_API_KEY", "from-env")
        monkeypatch.setenv("OCR_TIMEOUT", "5")
        monkeypatch.setenv("STATEMENT_MIN_TEXT_LENGTH", "10")
        monkeypatch.setenv("STATEMENT_FALLBACK_POLICY", "AVAILABILITY")
        monkeypatch.setenv("STATEMENT_STATE_DB", str(tmp_path / "env.db"))

        config = load_config(path)

        assert config.vision.api_key == "from-env"
        assert config.vision.timeout_seconds == 5
        assert config.tesseract.timeout_seconds == 5
        assert config.extraction.min_text_length == 10
        assert config.extraction.fallback_policy == "availability"
        assert config.state_db_path == tmp_path / "env.db"

    def test_unknown_fallback_policy_rejected(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STATEMENT_FALLBACK_POLICY", "sometimes")

        with pytest.raises(ConfigValidationError):
            load_config(tmp_path / "absent.yaml")

    def test_bad_env_int_keeps_value(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STATEMENT_WORKERS", "many")

        assert load_config(tmp_path / "absent.yaml").processing.workers == 4


class TestValidate:
    def test_defaults_valid(self):
        assert Config().validate() == []

    def test_errors_collected(self):
        config = Config()
        config.extraction.min_text_length = -1
        config.extraction.fallback_policy = "never"
        config.processing.workers = 0
        config.tesseract.enabled = False

        errors = config.validate()

        assert any("min_text_length" in e for e in errors)
        assert any("fallback_policy" in e for e in errors)
        assert any("workers" in e for e in errors)
        assert any("no OCR provider" in e for e in errors)
