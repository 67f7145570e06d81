"""Motor de calidad: orquesta validación, ventanas, scoring, drift y alertas.

Flujo por lectura:
    raw → RecordValidator → (Accepted) BaselineStore.current + ScoringCycle
                          → (Rejected) ScoringCycle + Alert Dispatcher

Ciclos (disparados por PeriodicRunner o por el caller):
- scoring: cierra el ciclo de cada stream y emite un QualityScore
- drift: detecta por (stream, campo), marca drift activo, refresca baselines
  y emite los DriftEvent con decisión Drift
- retry: reintenta la entrega de eventos pendientes

Las llamadas al repositorio de snapshots van por un executor propio y
quedan acotadas por ``snapshot_timeout_seconds``.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import Settings
from .dispatch.dispatcher import AlertDispatcher
from .dispatch.sink import AlertSink, NullSink
from .domain.events import CrossGroupEvent, DriftEvent, QualityScore
from .domain.results import ValidationResult
from .drift.cross_group import GroupSpec, detect_cross_group
from .drift.drift_detector import DriftDetector
from .drift.statistics import DISTANCE_METRICS
from .errors import SnapshotUnavailable
from .monitoring.stats import ProcessingStats
from .persistence.snapshot_repository import SnapshotRepository
from .scoring.quality_scorer import QualityScorer, ScoringCycle
from .validation.recent_cache import RecentReadCache
from .validation.record_validator import RecordValidator
from .windows.baseline_store import BaselineStore, RefreshOutcome

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QualityEngine:
    """Punto de entrada del motor.

    Uso:
        engine = QualityEngine(get_settings(), sink=StdoutSink())
        for payload in readings:
            engine.ingest(payload)
        engine.run_scoring_cycle()
        engine.run_drift_cycle()
    """

    def __init__(
        self,
        settings: Settings,
        sink: Optional[AlertSink] = None,
        clock: Optional[Clock] = None,
        repository: Optional[SnapshotRepository] = None,
    ):
        self._settings = settings
        self._clock = clock or _utcnow
        self._repository = repository

        self.recent_cache = RecentReadCache(
            dedup_window_seconds=settings.validator.dedup_window_seconds,
            location_ttl_seconds=settings.validator.location_ttl_seconds,
            max_tags_per_stream=settings.validator.recent_cache_max_tags,
        )
        self.validator = RecordValidator(settings.validator, clock=self._clock)
        self.store = BaselineStore(settings.windows, min_samples=settings.drift.min_samples)
        self.detector = DriftDetector(self.store, settings.drift)
        self.scorer = QualityScorer(
            weights=settings.scoring.weights,
            thresholds=settings.scoring.thresholds,
            nominal_rate_hz=settings.scoring.nominal_rate_hz,
            gold_standard=settings.gold_standard,
            drift_lookup=self.detector.latest_for_stream,
            distance=DISTANCE_METRICS[settings.scoring.accuracy_metric],
        )
        self.dispatcher = AlertDispatcher(sink or NullSink(), settings.dispatch)
        self.stats = ProcessingStats()

        self._cycles: Dict[str, ScoringCycle] = {}
        self._cycles_lock = threading.Lock()
        self._stream_locks: Dict[str, threading.Lock] = {}
        self._snapshot_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="snapshot-io")

    @property
    def settings(self) -> Settings:
        return self._settings

    def now(self) -> float:
        """Epoch actual según el reloj del motor."""
        return self._clock().timestamp()

    def _stream_lock(self, stream_id: str) -> threading.Lock:
        with self._cycles_lock:
            lock = self._stream_locks.get(stream_id)
            if lock is None:
                lock = self._stream_locks[stream_id] = threading.Lock()
            return lock

    def _cycle_add(self, stream_id: str, result: ValidationResult) -> Tuple[ScoringCycle, int]:
        """Añade al ciclo abierto del stream; lookup y add bajo el mismo lock."""
        with self._cycles_lock:
            cycle = self._cycles.get(stream_id)
            if cycle is None:
                cycle = self._cycles[stream_id] = ScoringCycle(stream_id, started_at=self.now())
            cycle.add(result)
            return cycle, len(cycle)

    # =========================================================================
    # Ingesta
    # =========================================================================

    def ingest(self, raw: Any) -> ValidationResult:
        """Valida una lectura y la enruta. Nunca lanza por datos inválidos."""
        result = self.validator.validate(raw, self._settings.schema, self.recent_cache)
        self.stats.record(result)
        stream_id = result.stream_id

        if result.accepted:
            # Un único escritor por stream sobre la ventana current
            with self._stream_lock(stream_id):
                self.store.append_reading(result.reading, self._settings.drift_fields)
        else:
            logger.debug(
                "[VALIDATOR] Rejected stream=%s reason=%s: %s",
                stream_id,
                result.reason.value if result.reason else None,
                result.detail,
            )
            self.dispatcher.dispatch(result)

        if stream_id is None:
            return result

        cycle, size = self._cycle_add(stream_id, result)
        if size >= self._settings.scoring.cycle_readings:
            self._close_cycle(stream_id, expected=cycle)
        return result

    def process(self, readings: Iterable[Any]) -> List[ValidationResult]:
        return [self.ingest(raw) for raw in readings]

    # =========================================================================
    # Ciclos
    # =========================================================================

    def _close_cycle(
        self,
        stream_id: str,
        now: Optional[float] = None,
        expected: Optional[ScoringCycle] = None,
    ) -> Optional[QualityScore]:
        now = now if now is not None else self.now()
        with self._cycles_lock:
            cycle = self._cycles.get(stream_id)
            # Otro hilo ya cerró el ciclo observado
            if cycle is None or (expected is not None and cycle is not expected):
                return None
            self._cycles[stream_id] = ScoringCycle(stream_id, started_at=now)

        score = self.scorer.score(cycle.close(now))
        self.stats.increment("scores_emitted")
        if score.needs_alert:
            self.stats.increment("quality_alerts")
        self.dispatcher.dispatch(score)
        return score

    def _cycle_due(self, cycle: ScoringCycle, now: float, force: bool) -> bool:
        # Ciclo vacío recién abierto: no hay nada que puntuar todavía
        scoring = self._settings.scoring
        if len(cycle) == 0 and cycle.expected_count(scoring.nominal_rate_hz, now) < 1:
            return False
        return force or cycle.elapsed(now) >= scoring.cycle_seconds

    def run_scoring_cycle(self, now: Optional[float] = None, force: bool = True) -> List[QualityScore]:
        """Cierra los ciclos de scoring y emite un QualityScore por stream.

        Args:
            now: epoch de cierre (por defecto el reloj del motor)
            force: si es False solo cierra ciclos con ``cycle_seconds`` cumplidos

        Un ciclo sin lecturas solo se puntúa cuando ya se esperaba al menos una
        (stream en silencio); si acaba de abrirse se omite.
        """
        now = now if now is not None else self.now()
        with self._cycles_lock:
            candidates = [
                (stream_id, cycle) for stream_id, cycle in self._cycles.items()
                if self._cycle_due(cycle, now, force)
            ]
        scores = []
        for stream_id, cycle in sorted(candidates, key=lambda item: item[0]):
            score = self._close_cycle(stream_id, now, expected=cycle)
            if score is not None:
                scores.append(score)
        return scores

    def run_drift_cycle(self, now: Optional[float] = None) -> List[DriftEvent]:
        """Detecta drift en todas las ventanas monitorizadas.

        Returns:
            Todos los DriftEvent evaluados (solo los Drift se emiten)
        """
        now = now if now is not None else self.now()
        fields = set(self._settings.drift_fields)
        events = []
        for stream_id, field_name in sorted(self.store.keys()):
            if field_name not in fields:
                continue
            event = self.detector.detect(stream_id, field_name)
            self.store.set_drift_active(stream_id, field_name, event.is_drift)
            outcome = self.store.maybe_refresh(stream_id, field_name, now)
            if outcome == RefreshOutcome.REFRESHED:
                logger.debug("[ENGINE] Baseline refreshed: %s/%s", stream_id, field_name)
            if event.is_drift:
                self.stats.increment("drift_events")
                self.dispatcher.dispatch(event)
            events.append(event)
        return events

    def run_cross_group(
        self,
        field_name: str,
        groups: GroupSpec,
        alpha: Optional[float] = None,
    ) -> Optional[CrossGroupEvent]:
        event = detect_cross_group(
            self.store,
            field_name,
            groups,
            alpha=alpha if alpha is not None else self._settings.drift.alpha,
        )
        if event is not None:
            self.stats.increment("cross_group_events")
            self.dispatcher.dispatch(event)
        return event

    def retry_pending(self) -> int:
        return self.dispatcher.retry_pending()

    # =========================================================================
    # Snapshots
    # =========================================================================

    def _require_repository(self, repository: Optional[SnapshotRepository]) -> SnapshotRepository:
        repo = repository or self._repository
        if repo is None:
            repo = self._repository = SnapshotRepository.from_url(self._settings.snapshot_db_url)
        return repo

    def _bounded(self, operation: str, call: Callable[[], Any], timeout: Optional[float]) -> Any:
        """Ejecuta una llamada al repositorio acotada por timeout.

        Raises:
            SnapshotUnavailable: timeout o error del repositorio (reintentable)
        """
        timeout = timeout if timeout is not None else self._settings.snapshot_timeout_seconds
        future = self._snapshot_executor.submit(call)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            logger.error("[SNAPSHOT] %s timed out after %.1fs", operation, timeout)
            raise SnapshotUnavailable(operation, f"timeout after {timeout:.1f}s")
        except Exception as e:
            logger.error("[SNAPSHOT] %s failed: %s", operation, e)
            raise SnapshotUnavailable(operation, f"{type(e).__name__}: {e}") from e

    def save_state(self, repository: Optional[SnapshotRepository] = None, timeout: Optional[float] = None) -> None:
        """Persiste baselines y cache reciente.

        Raises:
            SnapshotUnavailable: el repositorio no respondió dentro de ``timeout``
        """
        repo = self._require_repository(repository)
        self._bounded("save", lambda: repo.save(self.store, self.recent_cache), timeout)

    def load_state(self, repository: Optional[SnapshotRepository] = None, timeout: Optional[float] = None) -> None:
        """Restaura baselines y cache reciente.

        La lectura va acotada; el estado en memoria solo se toca cuando la
        lectura completa llegó a tiempo.

        Raises:
            SnapshotUnavailable: el repositorio no respondió dentro de ``timeout``
        """
        repo = self._require_repository(repository)
        baselines, recent = self._bounded(
            "load", lambda: (repo.load_baselines(), repo.load_recent_cache()), timeout
        )
        if baselines:
            self.store.load_state(baselines)
        if recent:
            self.recent_cache.load_state(recent)
        logger.info("[SNAPSHOT] Restored: windows=%d streams=%d", len(baselines), len(recent))

    # =========================================================================
    # Salud
    # =========================================================================

    def health(self) -> dict:
        return {
            "processing": self.stats.to_dict(),
            "dispatch": self.dispatcher.stats,
            "recent_cache": self.recent_cache.stats,
            "windows": len(self.store.keys()),
            "open_cycles": {s: len(c) for s, c in self._snapshot_cycles().items()},
        }

    def _snapshot_cycles(self) -> Mapping[str, ScoringCycle]:
        with self._cycles_lock:
            return dict(self._cycles)

    def close(self) -> None:
        self.dispatcher.close()
        self._snapshot_executor.shutdown(wait=False, cancel_futures=True)


class PeriodicRunner:
    """Ejecuta los ciclos del motor en un hilo de fondo.

    Uso:
        runner = PeriodicRunner(engine)
        runner.start()
        ...
        runner.stop()
    """

    def __init__(self, engine: QualityEngine, tick_seconds: float = 1.0):
        self._engine = engine
        self._tick = tick_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_run: Dict[str, float] = {}

        settings = engine.settings
        self._intervals: Sequence = (
            ("scoring", settings.scoring.cycle_seconds, lambda: engine.run_scoring_cycle(force=False)),
            ("drift", settings.drift.cycle_seconds, engine.run_drift_cycle),
            ("retry", settings.dispatch.retry_interval_seconds, engine.retry_pending),
        )
        logger.info(
            "PeriodicRunner initialized: scoring=%.1fs drift=%.1fs retry=%.1fs",
            settings.scoring.cycle_seconds,
            settings.drift.cycle_seconds,
            settings.dispatch.retry_interval_seconds,
        )

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Inicia el runner en background."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name="quality-cycles", daemon=True)
        self._thread.start()
        logger.info("PeriodicRunner started")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Detiene el runner."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        logger.info("PeriodicRunner stopped")

    def run_due(self, now: float) -> List[str]:
        """Ejecuta los ciclos vencidos. Devuelve sus nombres."""
        ran = []
        for name, interval, job in self._intervals:
            last = self._last_run.get(name)
            if last is not None and now - last < interval:
                continue
            self._last_run[name] = now
            try:
                job()
            except Exception as e:
                logger.exception("PeriodicRunner %s cycle error: %s", name, e)
            ran.append(name)
        return ran

    def _run_loop(self) -> None:
        """Loop principal del runner."""
        while not self._stop.is_set():
            self.run_due(self._engine.now())
            self._stop.wait(self._tick)
