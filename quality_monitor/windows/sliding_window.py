"""Ventana deslizante acotada por tiempo y tamaño.

Entradas (timestamp, valor) ordenadas por timestamp de la lectura. Al
insertar se expulsa primero por antigüedad (span) y luego por tamaño.
Las lecturas (snapshot) copian bajo un lock corto: no bloquean appends
más allá de la copia.
"""

from __future__ import annotations

import bisect
import threading
from typing import Iterable, List, Optional, Tuple

import numpy as np


class SlidingWindow:
    """Ventana ordenada para un par (stream_id, campo)."""

    def __init__(self, max_span_seconds: float, max_size: int):
        self._span = float(max_span_seconds)
        self._max_size = int(max_size)
        self._timestamps: List[float] = []
        self._values: List[float] = []
        self._lock = threading.Lock()
        self._version = 0

    @property
    def max_span_seconds(self) -> float:
        return self._span

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def version(self) -> int:
        """Contador de modificaciones (útil para detectar snapshots sin cambios)."""
        return self._version

    def append(self, timestamp: float, value: float) -> None:
        """Inserta manteniendo el orden y aplica la expulsión."""
        with self._lock:
            if self._timestamps and timestamp >= self._timestamps[-1]:
                self._timestamps.append(timestamp)
                self._values.append(value)
            else:
                idx = bisect.bisect_right(self._timestamps, timestamp)
                self._timestamps.insert(idx, timestamp)
                self._values.insert(idx, value)
            self._evict()
            self._version += 1

    def extend(self, items: Iterable[Tuple[float, float]]) -> None:
        for ts, value in items:
            self.append(ts, value)

    def _evict(self) -> None:
        cutoff = self._timestamps[-1] - self._span
        drop = bisect.bisect_left(self._timestamps, cutoff)
        overflow = len(self._timestamps) - drop - self._max_size
        if overflow > 0:
            drop += overflow
        if drop:
            del self._timestamps[:drop]
            del self._values[:drop]

    def values(self) -> Tuple[float, ...]:
        """Snapshot de valores en orden temporal (copia)."""
        with self._lock:
            return tuple(self._values)

    def items(self) -> Tuple[Tuple[float, float], ...]:
        """Snapshot de (timestamp, valor) en orden temporal (copia)."""
        with self._lock:
            return tuple(zip(self._timestamps, self._values))

    def as_array(self) -> np.ndarray:
        return np.asarray(self.values(), dtype=float)

    def newest_timestamp(self) -> Optional[float]:
        with self._lock:
            return self._timestamps[-1] if self._timestamps else None

    def clear(self) -> None:
        with self._lock:
            self._timestamps.clear()
            self._values.clear()
            self._version += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)
