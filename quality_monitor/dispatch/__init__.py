"""Dispatch layer - interfaz del sink de alertas y entrega con reintentos."""

from .backpressure import BackpressureQueue
from .dispatcher import AlertDispatcher, PendingEvent
from .sink import Ack, AlertSink, Event, InMemorySink, NullSink, StdoutSink

__all__ = [
    "Ack",
    "AlertDispatcher",
    "AlertSink",
    "BackpressureQueue",
    "Event",
    "InMemorySink",
    "NullSink",
    "PendingEvent",
    "StdoutSink",
]
