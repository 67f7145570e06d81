"""Quality Scorer: agrega un ciclo de resultados en un QualityScore.

Componentes (todos en [0, 1]):
- completeness = accepted / expected   (expected = tasa nominal × tiempo), tope 1.0
- validity     = accepted / (accepted + rejected)
- accuracy     = 1 − min(1, distancia(valores, gold standard)); la distancia es
                 configurable (por defecto Wasserstein normalizada, como el drift)
- consistency  = 1 − drift_score del último DriftEvent del stream (0 si no hay)
- composite    = media ponderada con ScoringWeights

Un ciclo sin lecturas da completeness=0 y validity=0 (sin división por cero).
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from ..config import QualityThresholds, ScoringWeights
from ..domain.events import DriftEvent, QualityScore
from ..domain.results import ValidationResult
from ..drift.statistics import normalized_transport_distance
from ..numeric import clamp01, safe_float

logger = logging.getLogger(__name__)

DriftLookup = Callable[[str], Sequence[DriftEvent]]
DistanceFn = Callable[[Sequence[float], Sequence[float]], float]


class ScoringCycle:
    """Resultados de validación acumulados de un stream durante un ciclo.

    ``expected_count`` puede fijarse explícitamente; si no, se deriva de la
    tasa nominal y del tiempo transcurrido.
    """

    def __init__(
        self,
        stream_id: str,
        started_at: Optional[float] = None,
        expected_count: Optional[float] = None,
    ):
        self.stream_id = stream_id
        self.started_at = started_at if started_at is not None else time.time()
        self.ended_at: Optional[float] = None
        self._expected_override = expected_count
        self._results: List[ValidationResult] = []
        self._lock = threading.Lock()

    def add(self, result: ValidationResult) -> None:
        with self._lock:
            self._results.append(result)

    def extend(self, results: Sequence[ValidationResult]) -> None:
        with self._lock:
            self._results.extend(results)

    def close(self, ended_at: Optional[float] = None) -> "ScoringCycle":
        self.ended_at = ended_at if ended_at is not None else time.time()
        return self

    @property
    def results(self) -> List[ValidationResult]:
        with self._lock:
            return list(self._results)

    def elapsed(self, now: Optional[float] = None) -> float:
        end = self.ended_at if self.ended_at is not None else (now if now is not None else time.time())
        return max(0.0, end - self.started_at)

    def expected_count(self, nominal_rate_hz: float, now: Optional[float] = None) -> float:
        if self._expected_override is not None:
            return float(self._expected_override)
        return nominal_rate_hz * self.elapsed(now)

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)


class QualityScorer:
    """Calcula QualityScore por ciclo.

    Uso:
        scorer = QualityScorer(weights=ScoringWeights(), gold_standard={"temperature": ref})
        score = scorer.score(cycle.close())
    """

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        thresholds: Optional[QualityThresholds] = None,
        nominal_rate_hz: float = 1.0,
        gold_standard: Optional[Mapping[str, Sequence[float]]] = None,
        drift_lookup: Optional[DriftLookup] = None,
        distance: Optional[DistanceFn] = None,
    ):
        self._weights = weights or ScoringWeights()
        self._thresholds = thresholds or QualityThresholds()
        self._nominal_rate_hz = nominal_rate_hz
        self._gold = {name: tuple(values) for name, values in (gold_standard or {}).items()}
        self._drift_lookup = drift_lookup
        self._distance = distance or normalized_transport_distance

    @property
    def weights(self) -> ScoringWeights:
        return self._weights

    def score(
        self,
        window_of_results: ScoringCycle,
        weights: Optional[ScoringWeights] = None,
        now: Optional[float] = None,
    ) -> QualityScore:
        """Agrega un ciclo en un QualityScore.

        Args:
            window_of_results: ciclo con los ValidationResult del stream
            weights: pesos a usar (ya validados); por defecto los del scorer
            now: epoch de cierre si el ciclo no está cerrado

        Returns:
            QualityScore con componentes y composite en [0, 1]
        """
        weights = weights or self._weights
        results = window_of_results.results
        accepted = [r for r in results if r.accepted]
        rejected_reasons = Counter(r.reason.value for r in results if not r.accepted and r.reason)
        n_accepted = len(accepted)
        n_total = len(results)
        expected = window_of_results.expected_count(self._nominal_rate_hz, now)

        completeness = self._completeness(n_accepted, expected)
        validity = clamp01(n_accepted / n_total) if n_total else 0.0
        accuracy = self._accuracy(accepted)
        consistency = self._consistency(window_of_results.stream_id)

        composite = clamp01(
            weights.completeness * completeness
            + weights.validity * validity
            + weights.accuracy * accuracy
            + weights.consistency * consistency
        )

        breaches = []
        if completeness <= self._thresholds.min_completeness:
            breaches.append("completeness")
        if validity <= self._thresholds.min_validity:
            breaches.append("validity")
        if composite <= self._thresholds.min_composite:
            breaches.append("composite")

        counts: Dict[str, int] = {
            "accepted": n_accepted,
            "rejected": n_total - n_accepted,
            "total": n_total,
            "expected": int(round(expected)),
        }
        counts.update(rejected_reasons)

        score = QualityScore(
            stream_id=window_of_results.stream_id,
            timestamp=datetime.now(timezone.utc),
            completeness=completeness,
            validity=validity,
            accuracy=accuracy,
            consistency=consistency,
            composite=composite,
            counts=counts,
            breaches=tuple(breaches),
        )

        if breaches:
            logger.warning(
                "[QUALITY] %s below threshold (%s): completeness=%.3f validity=%.3f composite=%.3f",
                score.stream_id,
                ",".join(breaches),
                completeness,
                validity,
                composite,
            )
        return score

    @staticmethod
    def _completeness(accepted: int, expected: float) -> float:
        if expected <= 0:
            return 1.0 if accepted > 0 else 0.0
        return clamp01(accepted / expected)

    def _accuracy(self, accepted: Sequence[ValidationResult]) -> float:
        if not self._gold:
            return 1.0
        distances = []
        for field_name, reference in self._gold.items():
            values = [
                v for v in (safe_float(r.reading.values.get(field_name), None) for r in accepted)
                if v is not None
            ]
            if not values:
                continue
            distances.append(min(1.0, safe_float(self._distance(reference, values), 1.0)))
        if not distances:
            return 0.0
        return clamp01(1.0 - sum(distances) / len(distances))

    def _consistency(self, stream_id: str) -> float:
        if self._drift_lookup is None:
            return 1.0
        events = [e for e in self._drift_lookup(stream_id) if not e.insufficient_data]
        if not events:
            return 1.0
        score = sum(clamp01(e.drift_score) for e in events) / len(events)
        return clamp01(1.0 - score)
