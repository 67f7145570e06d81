"""Interfaz del Alert Dispatcher (colaborador externo).

El core solo conoce ``emit(event) → Ack | Nack``. Cualquier sink (bus de
mensajes, webhook, fichero) implementa esta interfaz.
"""

from __future__ import annotations

import json
import sys
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import IO, List, Optional, Union

from ..domain.events import CrossGroupEvent, DriftEvent, QualityScore
from ..domain.results import ValidationResult

Event = Union[QualityScore, DriftEvent, CrossGroupEvent, ValidationResult]


class Ack(str, Enum):
    """Respuesta del sink. NACK se trata como reintentable."""
    ACK = "ack"
    NACK = "nack"


class AlertSink(ABC):
    """Interfaz abstracta del sink de alertas.

    Implementations:
    - InMemorySink: acumula eventos (tests / integración)
    - StdoutSink: JSON lines a un stream de texto
    - NullSink: no-op
    """

    @abstractmethod
    def emit(self, event: Event) -> Ack:
        """Entrega un evento.

        Returns:
            Ack.ACK si se aceptó, Ack.NACK si debe reintentarse
        """
        pass


class NullSink(AlertSink):
    """No-op sink cuando no hay alerting configurado."""

    def emit(self, event: Event) -> Ack:
        return Ack.ACK


class InMemorySink(AlertSink):
    """Sink thread-safe que guarda los eventos en memoria."""

    def __init__(self):
        self._events: List[Event] = []
        self._lock = threading.Lock()

    def emit(self, event: Event) -> Ack:
        with self._lock:
            self._events.append(event)
        return Ack.ACK

    @property
    def events(self) -> List[Event]:
        with self._lock:
            return list(self._events)

    def of_type(self, kind: type) -> List[Event]:
        return [e for e in self.events if isinstance(e, kind)]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class StdoutSink(AlertSink):
    """Escribe cada evento como una línea JSON."""

    def __init__(self, stream: Optional[IO[str]] = None):
        self._stream = stream or sys.stdout
        self._lock = threading.Lock()

    def emit(self, event: Event) -> Ack:
        line = json.dumps(event.to_dict(), default=str, allow_nan=False)
        with self._lock:
            self._stream.write(line + "\n")
            self._stream.flush()
        return Ack.ACK
