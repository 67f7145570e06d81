"""Eventos emitidos hacia el Alert Dispatcher.

Todos son value objects inmutables: QualityScore, DriftEvent, CrossGroupEvent.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple


class DriftDecision(str, Enum):
    NO_DRIFT = "NoDrift"
    DRIFT = "Drift"


class Severity(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Nombres de los tests registrados en DriftEvent.test_results
MEAN_SHIFT_TEST = "mean_shift"
KS_TEST = "kolmogorov_smirnov"
WASSERSTEIN_TEST = "wasserstein"

CROSS_GROUP_EVENT_TYPE = "CrossGroupInconsistency"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _json_float(value: float) -> Optional[float]:
    """NaN / Infinity no son JSON estándar: se serializan como null."""
    if value is None or not math.isfinite(value):
        return None
    return value


@dataclass(frozen=True)
class StatTestResult:
    """Resultado de un test estadístico: (statistic, p_value_or_distance)."""
    statistic: float
    p_value_or_distance: float
    flagged: bool

    def as_tuple(self) -> Tuple[float, float]:
        return (self.statistic, self.p_value_or_distance)


@dataclass(frozen=True)
class QualityScore:
    """Score de calidad de un ciclo. Todos los componentes en [0, 1]."""
    stream_id: str
    timestamp: datetime
    completeness: float
    validity: float
    accuracy: float
    consistency: float
    composite: float
    counts: Mapping[str, int] = field(default_factory=dict, compare=False)
    breaches: Tuple[str, ...] = ()

    @property
    def needs_alert(self) -> bool:
        return bool(self.breaches)

    def to_dict(self) -> dict:
        return {
            "event_type": "QualityScore",
            "stream_id": self.stream_id,
            "timestamp": self.timestamp.isoformat(),
            "completeness": self.completeness,
            "validity": self.validity,
            "accuracy": self.accuracy,
            "consistency": self.consistency,
            "composite": self.composite,
            "counts": dict(self.counts),
            "breaches": list(self.breaches),
        }


@dataclass(frozen=True)
class DriftEvent:
    """Resultado de comparar la ventana actual contra el baseline.

    ``detected_at`` no participa en la igualdad: dos detecciones sobre los
    mismos snapshots producen eventos iguales.
    """
    stream_id: str
    field: str
    test_results: Mapping[str, StatTestResult]
    decision: DriftDecision
    severity: Severity
    drift_score: float = 0.0
    insufficient_data: bool = False
    sample_sizes: Tuple[int, int] = (0, 0)
    detected_at: datetime = field(default_factory=_utcnow, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "test_results", MappingProxyType(dict(self.test_results)))

    @property
    def is_drift(self) -> bool:
        return self.decision == DriftDecision.DRIFT

    @property
    def flagged_tests(self) -> Tuple[str, ...]:
        return tuple(name for name, result in self.test_results.items() if result.flagged)

    def results_as_tuples(self) -> Dict[str, Tuple[float, float]]:
        return {name: result.as_tuple() for name, result in self.test_results.items()}

    def to_dict(self) -> dict:
        return {
            "event_type": "DriftEvent",
            "stream_id": self.stream_id,
            "field": self.field,
            "decision": self.decision.value,
            "severity": self.severity.value,
            "drift_score": _json_float(self.drift_score),
            "insufficient_data": self.insufficient_data,
            "sample_sizes": list(self.sample_sizes),
            "test_results": {
                name: {
                    "statistic": _json_float(r.statistic),
                    "p_value_or_distance": _json_float(r.p_value_or_distance),
                    "flagged": r.flagged,
                }
                for name, r in self.test_results.items()
            },
            "detected_at": self.detected_at.isoformat(),
        }


@dataclass(frozen=True)
class CrossGroupEvent:
    """Inconsistencia entre grupos (ANOVA de una vía) para un mismo campo."""
    field: str
    groups: Tuple[str, ...]
    f_statistic: float
    p_value: float
    group_means: Mapping[str, float] = field(default_factory=dict, compare=False)
    event_type: str = CROSS_GROUP_EVENT_TYPE
    detected_at: datetime = field(default_factory=_utcnow, compare=False)
    stream_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "field": self.field,
            "groups": list(self.groups),
            "f_statistic": _json_float(self.f_statistic),
            "p_value": _json_float(self.p_value),
            "group_means": dict(self.group_means),
            "detected_at": self.detected_at.isoformat(),
        }
