"""
Validation module for ecosystem map payloads.
"""

from ecomap.validation.map_validator import (
    MapValidator,
    check_map,
    validate_map,
    validate_persisted_map,
)
from ecomap.ir.validation import ValidationIssue, ValidationResult, ValidationSeverity


__all__ = [
    "MapValidator",
    "check_map",
    "validate_map",
    "validate_persisted_map",
    "ValidationIssue",
    "ValidationResult",
    "ValidationSeverity",
]
