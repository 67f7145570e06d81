"""Estadísticas de procesamiento del motor."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from ..domain.results import ValidationResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ProcessingStats:
    """Contadores de lecturas, scores y eventos de drift."""

    received: int = 0
    accepted: int = 0
    rejected: int = 0
    rejected_by_reason: Counter = field(default_factory=Counter)
    scores_emitted: int = 0
    quality_alerts: int = 0
    drift_events: int = 0
    cross_group_events: int = 0
    last_reading_at: Optional[datetime] = None
    started_at: datetime = field(default_factory=_utcnow)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __str__(self) -> str:
        return f"Stats: received={self.received} accepted={self.accepted} rejected={self.rejected}"

    def record(self, result: ValidationResult) -> None:
        with self._lock:
            self.received += 1
            self.last_reading_at = _utcnow()
            if result.accepted:
                self.accepted += 1
            else:
                self.rejected += 1
                if result.reason is not None:
                    self.rejected_by_reason[result.reason.value] += 1

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + amount)

    def to_dict(self) -> dict:
        """Convierte a diccionario."""
        with self._lock:
            return {
                "received": self.received,
                "accepted": self.accepted,
                "rejected": self.rejected,
                "rejected_by_reason": dict(self.rejected_by_reason),
                "scores_emitted": self.scores_emitted,
                "quality_alerts": self.quality_alerts,
                "drift_events": self.drift_events,
                "cross_group_events": self.cross_group_events,
                "last_reading_at": self.last_reading_at.isoformat() if self.last_reading_at else None,
                "started_at": self.started_at.isoformat(),
                "acceptance_rate": self._acceptance_rate(),
            }

    def _acceptance_rate(self) -> float:
        """Calcula tasa de aceptación."""
        if self.received == 0:
            return 1.0
        return self.accepted / self.received

    def reset(self) -> None:
        """Reinicia estadísticas."""
        with self._lock:
            self.received = 0
            self.accepted = 0
            self.rejected = 0
            self.rejected_by_reason = Counter()
            self.scores_emitted = 0
            self.quality_alerts = 0
            self.drift_events = 0
            self.cross_group_events = 0
            self.last_reading_at = None
            self.started_at = _utcnow()
