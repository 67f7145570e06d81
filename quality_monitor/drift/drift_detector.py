"""Drift Detector: compara la ventana current contra el baseline.

Regla de combinación (OR lógico, prioriza sensibilidad):
    Drift si  p(KS) < alpha
          OR  wasserstein normalizado > distance_threshold
          OR  |Δmean| > k·std(B)

Severidad (determinista):
    sin drift                                   → NONE
    3 tests marcan  o distancia ≥ high_distance → HIGH
    2 tests marcan  o distancia ≥ medium_distance → MEDIUM
    resto                                       → LOW

Si baseline o current tienen menos de ``min_samples`` valores, la decisión
es NoDrift con ``insufficient_data=True`` (nunca un falso Drift).
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Sequence, Tuple

from ..config import DriftConfig
from ..domain.events import (
    KS_TEST,
    MEAN_SHIFT_TEST,
    WASSERSTEIN_TEST,
    DriftDecision,
    DriftEvent,
    Severity,
    StatTestResult,
)
from ..numeric import clamp01
from ..windows.baseline_store import BaselineStore
from .statistics import ks_test, mean_shift_test, wasserstein_test

logger = logging.getLogger(__name__)


class DriftDetector:
    """Detector de drift por (stream_id, campo) sobre snapshots del store.

    Uso:
        detector = DriftDetector(store, DriftConfig())
        event = detector.detect("reader-1", "temperature")
        if event.is_drift:
            dispatcher.dispatch(event)
    """

    def __init__(self, store: BaselineStore, config: Optional[DriftConfig] = None):
        self._store = store
        self._config = config or DriftConfig()
        self._latest: Dict[Tuple[str, str], DriftEvent] = {}
        self._lock = threading.Lock()

    @property
    def config(self) -> DriftConfig:
        return self._config

    def detect(self, stream_id: str, field_name: str) -> DriftEvent:
        """Ejecuta los tres tests sobre los snapshots actuales."""
        baseline = self._store.snapshot(stream_id, field_name)
        current = self._store.current_snapshot(stream_id, field_name)
        event = self.evaluate(stream_id, field_name, baseline, current)

        with self._lock:
            self._latest[(stream_id, field_name)] = event

        if event.is_drift:
            logger.warning(
                "[DRIFT] %s/%s severity=%s flagged=%s score=%.3f",
                stream_id,
                field_name,
                event.severity.value,
                ",".join(event.flagged_tests),
                event.drift_score,
            )
        elif event.insufficient_data:
            logger.debug(
                "[DRIFT] %s/%s insufficient data: baseline=%d current=%d (min %d)",
                stream_id,
                field_name,
                len(baseline),
                len(current),
                self._config.min_samples,
            )
        return event

    def evaluate(
        self,
        stream_id: str,
        field_name: str,
        baseline: Sequence[float],
        current: Sequence[float],
    ) -> DriftEvent:
        """Función pura: mismos snapshots → mismo DriftEvent."""
        sizes = (len(baseline), len(current))
        if min(sizes) < self._config.min_samples:
            return DriftEvent(
                stream_id=stream_id,
                field=field_name,
                test_results={},
                decision=DriftDecision.NO_DRIFT,
                severity=Severity.NONE,
                drift_score=0.0,
                insufficient_data=True,
                sample_sizes=sizes,
            )

        results: Dict[str, StatTestResult] = {
            MEAN_SHIFT_TEST: mean_shift_test(baseline, current, self._config.k),
            KS_TEST: ks_test(baseline, current, self._config.alpha),
            WASSERSTEIN_TEST: wasserstein_test(baseline, current, self._config.distance_threshold),
        }
        flagged = sum(1 for r in results.values() if r.flagged)
        distance = results[WASSERSTEIN_TEST].p_value_or_distance
        decision = DriftDecision.DRIFT if flagged else DriftDecision.NO_DRIFT

        return DriftEvent(
            stream_id=stream_id,
            field=field_name,
            test_results=results,
            decision=decision,
            severity=self.severity(flagged, distance),
            drift_score=clamp01(distance),
            insufficient_data=False,
            sample_sizes=sizes,
        )

    def severity(self, flagged_count: int, normalized_distance: float) -> Severity:
        if flagged_count == 0:
            return Severity.NONE
        if flagged_count >= 3 or normalized_distance >= self._config.high_distance:
            return Severity.HIGH
        if flagged_count == 2 or normalized_distance >= self._config.medium_distance:
            return Severity.MEDIUM
        return Severity.LOW

    def detect_all(self, fields: Optional[Sequence[str]] = None) -> List[DriftEvent]:
        """Detecta sobre todas las ventanas del store (opcionalmente filtradas por campo)."""
        events = []
        for stream_id, field_name in sorted(self._store.keys()):
            if fields is not None and field_name not in fields:
                continue
            events.append(self.detect(stream_id, field_name))
        return events

    def latest(self, stream_id: str, field_name: str) -> Optional[DriftEvent]:
        with self._lock:
            return self._latest.get((stream_id, field_name))

    def latest_for_stream(self, stream_id: str) -> List[DriftEvent]:
        with self._lock:
            return [e for (s, _), e in self._latest.items() if s == stream_id]
