"""Motor de calidad de datos y detección de drift para telemetría IoT / RFID."""

from .config import Settings, get_settings
from .engine import PeriodicRunner, QualityEngine
from .errors import ConfigurationError, SinkUnavailable, SnapshotUnavailable, WeightConfigInvalid

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "PeriodicRunner",
    "QualityEngine",
    "Settings",
    "SinkUnavailable",
    "SnapshotUnavailable",
    "WeightConfigInvalid",
    "get_settings",
]
