"""Cola acotada con backpressure para la cola de reintentos del dispatcher.

Cuando se llena descarta el evento MÁS ANTIGUO (shedding) y lo devuelve al
caller para que lo contabilice.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BackpressureStats:
    """Estadísticas de backpressure."""
    enqueued: int = 0
    dequeued: int = 0
    dropped: int = 0
    current_size: int = 0
    max_size: int = 0


class BackpressureQueue(Generic[T]):
    """Cola thread-safe con límite de tamaño y drop-oldest.

    Uso:
        queue = BackpressureQueue[PendingEvent](max_size=1000)

        # Productor
        shed = queue.put(item)

        # Consumidor
        items = queue.get_batch(100)
    """

    def __init__(self, max_size: int = 1000):
        self._max_size = max_size
        self._queue: deque[T] = deque()
        self._lock = threading.Lock()
        self._stats = BackpressureStats(max_size=max_size)

    def put(self, item: T) -> Optional[T]:
        """Agrega un item.

        Returns:
            El item más antiguo descartado si la cola estaba llena, o None
        """
        dropped = None
        with self._lock:
            if len(self._queue) >= self._max_size:
                dropped = self._queue.popleft()
                self._stats.dropped += 1
                logger.debug("Backpressure: dropped oldest item")
            self._queue.append(item)
            self._stats.enqueued += 1
            self._stats.current_size = len(self._queue)
        return dropped

    def get_nowait(self) -> Optional[T]:
        """Obtiene un item sin esperar."""
        with self._lock:
            if not self._queue:
                return None
            item = self._queue.popleft()
            self._stats.dequeued += 1
            self._stats.current_size = len(self._queue)
            return item

    def get_batch(self, max_items: int) -> List[T]:
        """Obtiene hasta ``max_items`` items (puede estar vacía)."""
        with self._lock:
            items = []
            while self._queue and len(items) < max_items:
                items.append(self._queue.popleft())
                self._stats.dequeued += 1
            self._stats.current_size = len(self._queue)
            return items

    def clear(self) -> int:
        """Limpia la cola. Devuelve el número de items eliminados."""
        with self._lock:
            count = len(self._queue)
            self._queue.clear()
            self._stats.current_size = 0
            return count

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def is_full(self) -> bool:
        with self._lock:
            return len(self._queue) >= self._max_size

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "enqueued": self._stats.enqueued,
                "dequeued": self._stats.dequeued,
                "dropped": self._stats.dropped,
                "current_size": len(self._queue),
                "max_size": self._max_size,
                "utilization_pct": (len(self._queue) / self._max_size * 100)
                    if self._max_size > 0 else 0,
            }
