"""
Configuration management (SSOT).

This module defines ALL configuration for the statement intake pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- OCR credentials live in VisionConfig / TesseractConfig and are injected into
  the extraction chain at construction, never read from the environment later
- The minimum-content threshold and the OCR fallback policy are tunable
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

# Fallback policies for the extraction chain
FALLBACK_ANY_ERROR = "any_error"
FALLBACK_AVAILABILITY = "availability"
FALLBACK_POLICIES = (FALLBACK_ANY_ERROR, FALLBACK_AVAILABILITY)

DEFAULT_ALLOWED_MIME_TYPES = (
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/tiff",
)


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class VisionConfig:
    """Google Cloud Vision (document OCR) configuration.

    The provider is skipped as mis-configured when api_key is empty.
    """

    api_key: str = ""
    endpoint: str = "https://vision.googleapis.com"
    # Per-request timeout (seconds); a timeout is a provider failure
    timeout_seconds: int = 30
    max_retries: int = 2
    # PDF rasterization for OCR
    dpi: int = 300
    max_pages: int = 20
    # Pages OCR'd concurrently for one document
    page_workers: int = 4

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)


@dataclass
class TesseractConfig:
    """Offline Tesseract OCR configuration."""

    enabled: bool = True
    # Path to the tesseract binary (None = use PATH)
    tesseract_cmd: str | None = None
    lang: str = "eng"
    timeout_seconds: int = 120
    dpi: int = 300
    max_pages: int = 20


@dataclass
class ExtractionConfig:
    """Extraction chain settings."""

    # Trimmed text shorter than this is treated as image-only / low content
    min_text_length: int = 50
    # any_error: fall through on every provider error
    # availability: fall through only on configuration/availability/timeout errors
    fallback_policy: str = FALLBACK_ANY_ERROR
    # Maximum pages read from a PDF text layer
    max_pdf_pages: int = 50


@dataclass
class IntakeConfig:
    """Upload validation settings."""

    allowed_mime_types: tuple[str, ...] = DEFAULT_ALLOWED_MIME_TYPES
    max_file_size: int = 10 * 1024 * 1024
    default_currency: str = "USD"
    default_bank_name: str = "Unknown Bank"


@dataclass
class ProcessingConfig:
    """Pipeline run settings."""

    # Concurrent statement runs
    workers: int = 4
    # Base confidence for parsed transactions (scaled by OCR confidence)
    base_transaction_confidence: float = 0.8
    # Reference year for MM/DD dates (None = current year)
    reference_year: int | None = None


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    vision: VisionConfig = field(default_factory=VisionConfig)
    tesseract: TesseractConfig = field(default_factory=TesseractConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    intake: IntakeConfig = field(default_factory=IntakeConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    storage_root: Path = field(default_factory=lambda: Path("data/storage"))
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.extraction.min_text_length < 0:
            errors.append("extraction.min_text_length must be >= 0")
        if self.extraction.fallback_policy not in FALLBACK_POLICIES:
            errors.append(
                f"extraction.fallback_policy must be one of {', '.join(FALLBACK_POLICIES)}"
            )

        if self.vision.timeout_seconds <= 0:
            errors.append("vision.timeout_seconds must be > 0")
        if self.tesseract.timeout_seconds <= 0:
            errors.append("tesseract.timeout_seconds must be > 0")
        if self.vision.page_workers < 1:
            errors.append("vision.page_workers must be >= 1")

        # At least one OCR backend should be usable for images
        if not self.vision.is_configured and not self.tesseract.enabled:
            errors.append("no OCR provider configured (set vision.api_key or enable tesseract)")

        if self.intake.max_file_size <= 0:
            errors.append("intake.max_file_size must be > 0")
        if not self.intake.allowed_mime_types:
            errors.append("intake.allowed_mime_types must not be empty")

        if self.processing.workers < 1:
            errors.append("processing.workers must be >= 1")
        if not 0.0 <= self.processing.base_transaction_confidence <= 1.0:
            errors.append("processing.base_transaction_confidence must be within [0, 1]")

        return errors


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, "")
    if value:
        try:
            return int(value)
        except ValueError:
            pass  # Keep default
    return default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - GOOGLE_VISION_API_KEY
    - GOOGLE_VISION_ENDPOINT
    - OCR_TIMEOUT (seconds, applies to both OCR providers)
    - TESSERACT_CMD
    - STATEMENT_MIN_TEXT_LENGTH
    - STATEMENT_FALLBACK_POLICY (any_error/availability)
    - STATEMENT_STORAGE_ROOT
    - STATEMENT_STATE_DB
    - STATEMENT_WORKERS

    Raises:
        ConfigValidationError: If the fallback policy is unknown
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Vision config
    vision_data = data.get("vision", {})
    vision = VisionConfig(
        api_key=os.environ.get("GOOGLE_VISION_API_KEY", vision_data.get("api_key") or ""),
        endpoint=os.environ.get(
            "GOOGLE_VISION_ENDPOINT", vision_data.get("endpoint", "https://vision.googleapis.com")
        ),
        timeout_seconds=_env_int("OCR_TIMEOUT", vision_data.get("timeout_seconds", 30)),
        max_retries=vision_data.get("max_retries", 2),
        dpi=vision_data.get("dpi", 300),
        max_pages=vision_data.get("max_pages", 20),
        page_workers=vision_data.get("page_workers", 4),
    )

    # Tesseract config
    tesseract_data = data.get("tesseract", {})
    tesseract = TesseractConfig(
        enabled=tesseract_data.get("enabled", True),
        tesseract_cmd=os.environ.get("TESSERACT_CMD", tesseract_data.get("tesseract_cmd")),
        lang=tesseract_data.get("lang", "eng"),
        timeout_seconds=_env_int("OCR_TIMEOUT", tesseract_data.get("timeout_seconds", 120)),
        dpi=tesseract_data.get("dpi", 300),
        max_pages=tesseract_data.get("max_pages", 20),
    )

    # Extraction config
    extraction_data = data.get("extraction", {})
    extraction = ExtractionConfig(
        min_text_length=_env_int(
            "STATEMENT_MIN_TEXT_LENGTH", extraction_data.get("min_text_length", 50)
        ),
        fallback_policy=os.environ.get(
            "STATEMENT_FALLBACK_POLICY",
            extraction_data.get("fallback_policy", FALLBACK_ANY_ERROR),
        ).lower(),
        max_pdf_pages=extraction_data.get("max_pdf_pages", 50),
    )
    if extraction.fallback_policy not in FALLBACK_POLICIES:
        raise ConfigValidationError(
            f"Unknown fallback_policy {extraction.fallback_policy!r} "
            f"(expected one of: {', '.join(FALLBACK_POLICIES)})"
        )

    # Intake config
    intake_data = data.get("intake", {})
    intake = IntakeConfig(
        allowed_mime_types=tuple(
            intake_data.get("allowed_mime_types", DEFAULT_ALLOWED_MIME_TYPES)
        ),
        max_file_size=intake_data.get("max_file_size", 10 * 1024 * 1024),
        default_currency=intake_data.get("default_currency", "USD"),
        default_bank_name=intake_data.get("default_bank_name", "Unknown Bank"),
    )

    # Processing config
    processing_data = data.get("processing", {})
    processing = ProcessingConfig(
        workers=_env_int("STATEMENT_WORKERS", processing_data.get("workers", 4)),
        base_transaction_confidence=processing_data.get("base_transaction_confidence", 0.8),
        reference_year=processing_data.get("reference_year"),
    )

    storage_root = os.environ.get("STATEMENT_STORAGE_ROOT", data.get("storage_root", "data/storage"))
    state_db = os.environ.get("STATEMENT_STATE_DB", data.get("state_db_path", "data/state.db"))

    return Config(
        vision=vision,
        tesseract=tesseract,
        extraction=extraction,
        intake=intake,
        processing=processing,
        storage_root=Path(storage_root),
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Bank Statement Intake Configuration
#
# Text extraction runs a provider chain:
#   PDFs:   text layer -> Google Vision -> Tesseract
#   Images: Google Vision -> Tesseract

# Cloud document OCR (primary). Leave api_key empty to skip it.
vision:
  api_key: ""                              # Or set GOOGLE_VISION_API_KEY
  endpoint: "https://vision.googleapis.com"
  timeout_seconds: 30                      # Timeout counts as provider failure
  max_retries: 2
  dpi: 300                                 # PDF rasterization resolution
  max_pages: 20
  page_workers: 4                          # Pages OCR'd concurrently

# Offline OCR (fallback)
tesseract:
  enabled: true
  tesseract_cmd: null                      # Path to binary, null = use PATH
  lang: "eng"
  timeout_seconds: 120
  dpi: 300
  max_pages: 20

extraction:
  min_text_length: 50                      # Shorter text = low content / needs review
  fallback_policy: "any_error"             # any_error | availability
  max_pdf_pages: 50

intake:
  max_file_size: 10485760                  # 10 MB
  default_currency: "USD"
  default_bank_name: "Unknown Bank"

processing:
  workers: 4                               # Concurrent statement runs
  base_transaction_confidence: 0.8
  reference_year: null                     # Year for MM/DD dates, null = current year

storage_root: "data/storage"
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
