"""Taxonomía de errores del motor de calidad.

- ConfigurationError: fatal al arrancar (pesos, rangos, schema inválido).
- SinkUnavailable: reintentable, el dispatcher lo encola.
- SnapshotUnavailable: reintentable, el repositorio de snapshots no respondió
  dentro del timeout o falló.

Los rechazos por lectura (ValidationRejection) y la falta de datos para drift
(InsufficientDataForDrift) NO son excepciones: viajan como valores en
ValidationResult / DriftEvent.
"""

from __future__ import annotations

from typing import Optional


class ConfigurationError(Exception):
    """Configuración inválida detectada al arrancar."""

    def __init__(self, message: str, option: Optional[str] = None):
        self.option = option
        if option:
            message = f"Invalid configuration for '{option}': {message}"
        super().__init__(message)


class WeightConfigInvalid(ConfigurationError):
    """Los pesos del scoring no suman 1.0 o son negativos."""

    def __init__(self, weights: dict, total: float):
        self.weights = dict(weights)
        self.total = total
        super().__init__(
            f"scoring weights must be >= 0 and sum to 1.0, got sum={total:.6f} ({self.weights})",
            option="scoring_weights",
        )


class SinkUnavailable(Exception):
    """El sink de alertas no respondió (Nack, timeout o error)."""

    def __init__(self, reason: str, attempts: int = 0):
        self.reason = reason
        self.attempts = attempts
        super().__init__(f"Alert sink unavailable after {attempts} attempt(s): {reason}")


class SnapshotUnavailable(Exception):
    """El repositorio de snapshots no respondió a tiempo o falló."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Snapshot {operation} failed: {reason}")
