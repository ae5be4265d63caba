"""
Pipeline services: normalization, processing, scheduling and intake.
"""

from .intake import (
    IntakeError,
    IntakeValidationError,
    RetryNotAllowedError,
    StatementIntake,
    sanitize_filename,
)
from .normalizer import NormalizationResult, TransactionNormalizer, resolve_date
from .processor import ProcessingResult, StatementProcessor
from .supervisor import ProcessingSupervisor

__all__ = [
    "StatementIntake",
    "IntakeError",
    "IntakeValidationError",
    "RetryNotAllowedError",
    "sanitize_filename",
    "TransactionNormalizer",
    "NormalizationResult",
    "resolve_date",
    "StatementProcessor",
    "ProcessingResult",
    "ProcessingSupervisor",
]
