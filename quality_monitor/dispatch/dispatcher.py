"""Alert Dispatcher: entrega de eventos al sink con timeout y reintentos.

GARANTÍAS:
- Ninguna llamada al sink bloquea más de ``timeout_seconds``
- Nack / timeout / error → SinkUnavailable → evento a la cola de reintentos
  (entrega at-least-once)
- Cola llena → se descarta el evento más antiguo (shedding)
- Tras ``max_attempts`` intentos fallidos el evento se descarta
- Seguro para append concurrente desde varios streams
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Optional

from ..config import DispatchConfig
from ..errors import SinkUnavailable
from .backpressure import BackpressureQueue
from .sink import Ack, AlertSink, Event

logger = logging.getLogger(__name__)


@dataclass
class PendingEvent:
    """Evento a la espera de reintento."""
    event: Event
    attempts: int = 0
    last_error: str = ""
    first_failed_at: float = field(default_factory=time.time)


@dataclass
class DispatchStats:
    delivered: int = 0
    failed_attempts: int = 0
    retried: int = 0
    shed_backpressure: int = 0
    shed_max_attempts: int = 0


class AlertDispatcher:
    """Dispatcher con cola de reintentos acotada.

    Uso:
        dispatcher = AlertDispatcher(sink, DispatchConfig(timeout_seconds=1))
        dispatcher.dispatch(event)      # False si quedó encolado
        dispatcher.retry_pending()      # periódicamente
    """

    def __init__(self, sink: AlertSink, config: Optional[DispatchConfig] = None, max_workers: int = 4):
        self._sink = sink
        self._config = config or DispatchConfig()
        self._queue: BackpressureQueue[PendingEvent] = BackpressureQueue(self._config.retry_queue_size)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="alert-sink")
        self._stats = DispatchStats()
        self._stats_lock = threading.Lock()

        logger.info(
            "AlertDispatcher initialized: timeout=%.1fs, retry_queue=%d, max_attempts=%d",
            self._config.timeout_seconds,
            self._config.retry_queue_size,
            self._config.max_attempts,
        )

    def _emit(self, event: Event, attempt: int = 1) -> None:
        """Llama al sink acotado por timeout.

        Raises:
            SinkUnavailable: Nack, timeout o error del sink
        """
        future = self._executor.submit(self._sink.emit, event)
        try:
            status = future.result(timeout=self._config.timeout_seconds)
        except FutureTimeout:
            future.cancel()
            raise SinkUnavailable(f"timeout after {self._config.timeout_seconds:.1f}s", attempt)
        except Exception as e:
            raise SinkUnavailable(f"{type(e).__name__}: {e}", attempt)
        if status != Ack.ACK:
            raise SinkUnavailable("nack", attempt)

    def _count(self, name: str, amount: int = 1) -> None:
        with self._stats_lock:
            setattr(self._stats, name, getattr(self._stats, name) + amount)

    def dispatch(self, event: Event) -> bool:
        """Intenta entregar un evento; si falla lo encola para reintento.

        Returns:
            True si el sink lo aceptó (Ack), False si quedó pendiente
        """
        try:
            self._emit(event)
        except SinkUnavailable as e:
            self._count("failed_attempts")
            logger.warning("[DISPATCH] Delivery failed, queued for retry: %s", e.reason)
            self._enqueue(PendingEvent(event=event, attempts=1, last_error=e.reason))
            return False
        self._count("delivered")
        return True

    def _enqueue(self, pending: PendingEvent) -> None:
        dropped = self._queue.put(pending)
        if dropped is not None:
            self._count("shed_backpressure")
            logger.error(
                "[DISPATCH] Retry queue full (%d), shed oldest event: %s",
                self._config.retry_queue_size,
                type(dropped.event).__name__,
            )

    def retry_pending(self, max_items: Optional[int] = None) -> int:
        """Reintenta los eventos pendientes.

        Returns:
            Número de eventos entregados en esta pasada
        """
        batch = self._queue.get_batch(max_items or self._config.retry_queue_size)
        delivered = 0
        for pending in batch:
            self._count("retried")
            try:
                self._emit(pending.event, pending.attempts + 1)
            except SinkUnavailable as e:
                self._count("failed_attempts")
                pending.attempts += 1
                pending.last_error = e.reason
                if pending.attempts >= self._config.max_attempts:
                    self._count("shed_max_attempts")
                    logger.error(
                        "[DISPATCH] Giving up after %d attempts (%s): %s",
                        pending.attempts,
                        e.reason,
                        type(pending.event).__name__,
                    )
                else:
                    self._enqueue(pending)
                continue
            delivered += 1
            self._count("delivered")
        if batch:
            logger.info(
                "[DISPATCH] Retry pass: attempted=%d delivered=%d pending=%d",
                len(batch),
                delivered,
                self._queue.size,
            )
        return delivered

    @property
    def pending(self) -> int:
        return self._queue.size

    @property
    def stats(self) -> dict:
        with self._stats_lock:
            data = {
                "delivered": self._stats.delivered,
                "failed_attempts": self._stats.failed_attempts,
                "retried": self._stats.retried,
                "shed_backpressure": self._stats.shed_backpressure,
                "shed_max_attempts": self._stats.shed_max_attempts,
            }
        data["retry_queue"] = self._queue.get_stats()
        return data

    def close(self) -> None:
        """Libera el pool de hilos sin esperar a sinks colgados."""
        self._executor.shutdown(wait=False, cancel_futures=True)
