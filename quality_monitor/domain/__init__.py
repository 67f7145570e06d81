"""Domain layer - Modelos y value objects."""

from .events import (
    CrossGroupEvent,
    DriftDecision,
    DriftEvent,
    QualityScore,
    Severity,
    StatTestResult,
)
from .reading import Location, Reading, parse_reading
from .results import RejectionReason, ValidationResult, ValidationStatus
from .schema import FieldSpec, FieldType, SchemaDescriptor

__all__ = [
    "CrossGroupEvent",
    "DriftDecision",
    "DriftEvent",
    "FieldSpec",
    "FieldType",
    "Location",
    "QualityScore",
    "Reading",
    "RejectionReason",
    "SchemaDescriptor",
    "Severity",
    "StatTestResult",
    "ValidationResult",
    "ValidationStatus",
    "parse_reading",
]
