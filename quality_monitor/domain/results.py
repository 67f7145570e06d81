"""Resultado de validación por lectura."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .reading import Reading


class ValidationStatus(str, Enum):
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"


class RejectionReason(str, Enum):
    """Códigos de rechazo (ValidationRejection). Nunca fatales."""
    SCHEMA_VIOLATION = "SchemaViolation"
    RANGE_VIOLATION = "RangeViolation"
    DUPLICATE = "Duplicate"
    STALE_TIMESTAMP = "StaleTimestamp"
    LOCATION_CONFLICT = "LocationConflict"


@dataclass(frozen=True)
class ValidationResult:
    """Resultado de validación. Se crea por lectura y no se muta.

    ``reading`` es None solo cuando el payload no pudo parsearse; en ese caso
    ``raw`` conserva el payload original.
    """
    reading: Optional[Reading]
    status: ValidationStatus
    reason: Optional[RejectionReason] = None
    detail: str = ""
    stream_id: Optional[str] = None
    raw: Any = None

    @property
    def accepted(self) -> bool:
        return self.status == ValidationStatus.ACCEPTED

    @classmethod
    def accept(cls, reading: Reading) -> "ValidationResult":
        return cls(reading=reading, status=ValidationStatus.ACCEPTED, stream_id=reading.stream_id)

    @classmethod
    def reject(
        cls,
        reason: RejectionReason,
        detail: str,
        reading: Optional[Reading] = None,
        raw: Any = None,
    ) -> "ValidationResult":
        stream_id = reading.stream_id if reading is not None else _guess_stream_id(raw)
        return cls(
            reading=reading,
            status=ValidationStatus.REJECTED,
            reason=reason,
            detail=detail,
            stream_id=stream_id,
            raw=raw,
        )

    def to_dict(self) -> dict:
        return {
            "event_type": "ValidationResult",
            "stream_id": self.stream_id,
            "status": self.status.value,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
            "reading": self.reading.to_dict() if self.reading else None,
        }


def _guess_stream_id(raw: Any) -> Optional[str]:
    """Intenta recuperar el stream de un payload que no se pudo parsear."""
    try:
        value = raw.get("stream_id") or raw.get("streamId")
    except (AttributeError, TypeError):
        return None
    return str(value) if isinstance(value, (str, int)) and not isinstance(value, bool) else None
