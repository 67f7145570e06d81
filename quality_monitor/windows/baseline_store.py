"""Baseline Store: ventanas baseline y current por (stream_id, campo).

Política de refresh:
- Un baseline vacío se siembra desde la ventana current en cuanto ésta
  alcanza ``min_samples``.
- Después se re-siembra cada ``baseline_refresh_seconds`` DESDE la ventana
  current, salvo que haya drift activo: en ese caso el refresh queda
  pendiente hasta que el drift se limpie (evita envenenar el baseline con la
  anomalía que debe detectar).

Concurrencia: un único escritor por stream para la ventana current. El swap
del baseline es el único punto con lock por (stream, campo) y solo dura el
intercambio de referencias.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from ..config import WindowConfig
from ..domain.reading import Reading
from ..numeric import safe_float
from .sliding_window import SlidingWindow

logger = logging.getLogger(__name__)

StreamField = Tuple[str, str]


class RefreshOutcome(str, Enum):
    REFRESHED = "refreshed"
    DEFERRED = "deferred"
    NOT_DUE = "not_due"
    EMPTY = "empty"


@dataclass
class _FieldWindows:
    baseline: SlidingWindow
    current: SlidingWindow
    swap_lock: threading.Lock = field(default_factory=threading.Lock)
    last_refresh: Optional[float] = None
    drift_active: bool = False
    refresh_pending: bool = False


class BaselineStore:
    """Mantiene baseline + current por (stream_id, campo).

    Uso:
        store = BaselineStore(WindowConfig(), min_samples=30)
        store.append("reader-1", "temperature", ts, 23.4)
        baseline = store.snapshot("reader-1", "temperature")
    """

    def __init__(self, config: Optional[WindowConfig] = None, min_samples: int = 30):
        self._config = config or WindowConfig()
        self._min_samples = min_samples
        self._windows: Dict[StreamField, _FieldWindows] = {}
        self._registry_lock = threading.Lock()

    @property
    def config(self) -> WindowConfig:
        return self._config

    def _new_baseline(self) -> SlidingWindow:
        return SlidingWindow(self._config.baseline_span_seconds, self._config.baseline_max_size)

    def _new_current(self) -> SlidingWindow:
        return SlidingWindow(self._config.current_span_seconds, self._config.current_max_size)

    def _entry(self, stream_id: str, field_name: str) -> _FieldWindows:
        key = (stream_id, field_name)
        entry = self._windows.get(key)
        if entry is None:
            with self._registry_lock:
                entry = self._windows.get(key)
                if entry is None:
                    entry = _FieldWindows(baseline=self._new_baseline(), current=self._new_current())
                    self._windows[key] = entry
        return entry

    def keys(self) -> List[StreamField]:
        with self._registry_lock:
            return list(self._windows.keys())

    def streams(self) -> List[str]:
        return sorted({stream_id for stream_id, _ in self.keys()})

    # ------------------------------------------------------------------
    # Escritura (solo el path de ingesta del stream)
    # ------------------------------------------------------------------

    def append(self, stream_id: str, field_name: str, timestamp: float, value: float) -> None:
        """Añade un valor Accepted a la ventana current."""
        self._entry(stream_id, field_name).current.append(timestamp, value)

    def append_reading(self, reading: Reading, fields: Iterable[str]) -> int:
        """Añade los campos numéricos de una lectura Accepted. Devuelve cuántos."""
        ts = reading.epoch
        count = 0
        for name in fields:
            value = safe_float(reading.values.get(name), None)
            if value is None:
                continue
            self.append(reading.stream_id, name, ts, value)
            count += 1
        return count

    def seed_baseline(self, stream_id: str, field_name: str, items: Iterable[Tuple[float, float]],
                      refreshed_at: Optional[float] = None) -> None:
        """Siembra el baseline con datos históricos (p. ej. al arrancar)."""
        window = self._new_baseline()
        window.extend(items)
        entry = self._entry(stream_id, field_name)
        with entry.swap_lock:
            entry.baseline = window
            entry.last_refresh = refreshed_at if refreshed_at is not None else window.newest_timestamp()

    # ------------------------------------------------------------------
    # Lectura (segura para consumidores concurrentes)
    # ------------------------------------------------------------------

    def snapshot(self, stream_id: str, field_name: str) -> Tuple[float, ...]:
        """Valores del baseline en orden temporal."""
        entry = self._windows.get((stream_id, field_name))
        if entry is None:
            return ()
        return entry.baseline.values()

    def current_snapshot(self, stream_id: str, field_name: str) -> Tuple[float, ...]:
        """Valores de la ventana current en orden temporal."""
        entry = self._windows.get((stream_id, field_name))
        if entry is None:
            return ()
        return entry.current.values()

    def window_sizes(self, stream_id: str, field_name: str) -> Tuple[int, int]:
        entry = self._windows.get((stream_id, field_name))
        if entry is None:
            return (0, 0)
        return (len(entry.baseline), len(entry.current))

    # ------------------------------------------------------------------
    # Refresh del baseline
    # ------------------------------------------------------------------

    def set_drift_active(self, stream_id: str, field_name: str, active: bool) -> None:
        entry = self._entry(stream_id, field_name)
        if entry.drift_active and not active and entry.refresh_pending:
            logger.info("[BASELINE] Drift cleared, pending refresh will run: %s/%s", stream_id, field_name)
        entry.drift_active = active

    def is_drift_active(self, stream_id: str, field_name: str) -> bool:
        entry = self._windows.get((stream_id, field_name))
        return bool(entry and entry.drift_active)

    def is_refresh_pending(self, stream_id: str, field_name: str) -> bool:
        entry = self._windows.get((stream_id, field_name))
        return bool(entry and entry.refresh_pending)

    def refresh(self, stream_id: str, field_name: str, now: float) -> RefreshOutcome:
        """Re-siembra el baseline desde la ventana current (swap atómico).

        Si hay drift activo, el refresh se difiere y queda pendiente.
        """
        entry = self._entry(stream_id, field_name)
        if entry.drift_active:
            if not entry.refresh_pending:
                logger.warning(
                    "[BASELINE] Refresh deferred (drift active): %s/%s", stream_id, field_name
                )
            entry.refresh_pending = True
            return RefreshOutcome.DEFERRED

        items = entry.current.items()
        if not items:
            return RefreshOutcome.EMPTY

        window = self._new_baseline()
        window.extend(items)
        with entry.swap_lock:
            entry.baseline = window
            entry.last_refresh = now
            entry.refresh_pending = False

        logger.info(
            "[BASELINE] Refreshed %s/%s: samples=%d", stream_id, field_name, len(window)
        )
        return RefreshOutcome.REFRESHED

    def refresh_due(self, stream_id: str, field_name: str, now: float) -> bool:
        entry = self._windows.get((stream_id, field_name))
        if entry is None:
            return False
        if entry.refresh_pending:
            return True
        if len(entry.baseline) == 0:
            return len(entry.current) >= self._min_samples
        if entry.last_refresh is None:
            return True
        return now - entry.last_refresh >= self._config.baseline_refresh_seconds

    def maybe_refresh(self, stream_id: str, field_name: str, now: float) -> RefreshOutcome:
        """Ejecuta el refresh solo si toca por cadencia, bootstrap o pendiente."""
        if not self.refresh_due(stream_id, field_name, now):
            return RefreshOutcome.NOT_DUE
        return self.refresh(stream_id, field_name, now)

    # ------------------------------------------------------------------
    # Persistencia (primitivas load/save)
    # ------------------------------------------------------------------

    def export_state(self) -> List[dict]:
        """Snapshot serializable (JSON) de todas las ventanas."""
        state = []
        for stream_id, field_name in self.keys():
            entry = self._windows[(stream_id, field_name)]
            state.append({
                "stream_id": stream_id,
                "field": field_name,
                "baseline": [list(item) for item in entry.baseline.items()],
                "current": [list(item) for item in entry.current.items()],
                "last_refresh": entry.last_refresh,
                "drift_active": entry.drift_active,
                "refresh_pending": entry.refresh_pending,
            })
        return state

    def load_state(self, state: List[dict]) -> None:
        """Restaura ventanas desde ``export_state``."""
        for item in state:
            baseline = self._new_baseline()
            baseline.extend((float(ts), float(v)) for ts, v in item.get("baseline", []))
            current = self._new_current()
            current.extend((float(ts), float(v)) for ts, v in item.get("current", []))
            entry = _FieldWindows(
                baseline=baseline,
                current=current,
                last_refresh=item.get("last_refresh"),
                drift_active=bool(item.get("drift_active", False)),
                refresh_pending=bool(item.get("refresh_pending", False)),
            )
            with self._registry_lock:
                self._windows[(item["stream_id"], item["field"])] = entry
        logger.info("[BASELINE] Loaded state: windows=%d", len(state))
