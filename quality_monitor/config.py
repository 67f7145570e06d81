"""Configuración del motor de calidad y drift.

Cada bloque es un dataclass con ``from_env()`` (variables QM_*). ``get_settings``
carga un ``.env`` opcional sin pisar variables reales del entorno, y lee el
schema y el gold standard desde ficheros JSON.

Cualquier valor inválido es ``ConfigurationError`` al arrancar.
"""

from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple

from dotenv import load_dotenv

from .domain.schema import FieldSpec, FieldType, SchemaDescriptor
from .errors import ConfigurationError, WeightConfigInvalid


def _require_positive(name: str, value: float) -> None:
    if not math.isfinite(value) or value <= 0:
        raise ConfigurationError(f"must be a positive number, got {value}", option=name)


def _require_non_negative(name: str, value: float) -> None:
    if not math.isfinite(value) or value < 0:
        raise ConfigurationError(f"must be >= 0, got {value}", option=name)


# Nombres válidos de QM_ACCURACY_METRIC (ver drift.statistics.DISTANCE_METRICS)
ACCURACY_METRICS = ("wasserstein", "ks")

# Los pesos se validan al construirse (tiempo de configuración), nunca por ciclo
WEIGHT_TOLERANCE = 1e-6


@dataclass(frozen=True)
class ScoringWeights:
    """Pesos del composite. Deben ser >= 0 y sumar 1.0."""
    completeness: float = 0.25
    validity: float = 0.25
    accuracy: float = 0.25
    consistency: float = 0.25

    def __post_init__(self):
        weights = self.as_dict()
        if any(not math.isfinite(w) or w < 0 for w in weights.values()):
            raise WeightConfigInvalid(weights, sum(w for w in weights.values() if math.isfinite(w)))
        total = sum(weights.values())
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise WeightConfigInvalid(weights, total)

    def as_dict(self) -> dict:
        return {
            "completeness": self.completeness,
            "validity": self.validity,
            "accuracy": self.accuracy,
            "consistency": self.consistency,
        }

    @classmethod
    def from_env(cls) -> "ScoringWeights":
        return cls(
            completeness=float(os.getenv("QM_WEIGHT_COMPLETENESS", "0.25")),
            validity=float(os.getenv("QM_WEIGHT_VALIDITY", "0.25")),
            accuracy=float(os.getenv("QM_WEIGHT_ACCURACY", "0.25")),
            consistency=float(os.getenv("QM_WEIGHT_CONSISTENCY", "0.25")),
        )


@dataclass(frozen=True)
class QualityThresholds:
    """Umbrales de alerta: un componente en o por debajo del umbral dispara la alerta."""
    min_completeness: float = 0.95
    min_validity: float = 0.95
    min_composite: float = 0.95

    def __post_init__(self):
        for name in ("min_completeness", "min_validity", "min_composite"):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                raise ConfigurationError(f"must be within [0, 1], got {value}", option=name)

    @classmethod
    def from_env(cls) -> "QualityThresholds":
        return cls(
            min_completeness=float(os.getenv("QM_MIN_COMPLETENESS", "0.95")),
            min_validity=float(os.getenv("QM_MIN_VALIDITY", "0.95")),
            min_composite=float(os.getenv("QM_MIN_COMPOSITE", "0.95")),
        )


@dataclass(frozen=True)
class ValidatorConfig:
    """Configuración del Record Validator."""
    dedup_window_seconds: float = 5.0
    max_age_seconds: float = 300.0
    max_future_skew_seconds: float = 300.0
    max_speed_kmh: float = 200.0
    # Cambio de zona con nombre más rápido que esto = conflicto; 0 lo desactiva.
    # Debe superar dedup_window_seconds: por debajo, la lectura ya es Duplicate.
    min_relocation_seconds: float = 30.0
    location_ttl_seconds: float = 3600.0
    recent_cache_max_tags: int = 50000
    # Zonas con nombre → (lat, lon) para resolver distancias entre lectores
    known_locations: Mapping[str, Tuple[float, float]] = field(default_factory=dict)

    def __post_init__(self):
        _require_non_negative("dedup_window_seconds", self.dedup_window_seconds)
        _require_positive("max_age_seconds", self.max_age_seconds)
        _require_non_negative("max_future_skew_seconds", self.max_future_skew_seconds)
        _require_positive("max_speed_kmh", self.max_speed_kmh)
        _require_non_negative("min_relocation_seconds", self.min_relocation_seconds)
        if 0 < self.min_relocation_seconds <= self.dedup_window_seconds:
            raise ConfigurationError(
                f"must be 0 or greater than dedup_window_seconds ({self.dedup_window_seconds}), "
                f"got {self.min_relocation_seconds}",
                option="min_relocation_seconds",
            )
        _require_positive("location_ttl_seconds", self.location_ttl_seconds)
        _require_positive("recent_cache_max_tags", self.recent_cache_max_tags)
        for name, coords in self.known_locations.items():
            if len(coords) != 2 or not (-90 <= coords[0] <= 90) or not (-180 <= coords[1] <= 180):
                raise ConfigurationError(f"invalid coordinates {coords!r}", option=f"known_locations.{name}")

    @classmethod
    def from_env(cls) -> "ValidatorConfig":
        return cls(
            dedup_window_seconds=float(os.getenv("QM_DEDUP_WINDOW_SEC", "5")),
            max_age_seconds=float(os.getenv("QM_MAX_AGE_SEC", "300")),
            max_future_skew_seconds=float(os.getenv("QM_MAX_FUTURE_SKEW_SEC", "300")),
            max_speed_kmh=float(os.getenv("QM_MAX_SPEED_KMH", "200")),
            min_relocation_seconds=float(os.getenv("QM_MIN_RELOCATION_SEC", "30")),
            location_ttl_seconds=float(os.getenv("QM_LOCATION_TTL_SEC", "3600")),
            recent_cache_max_tags=int(os.getenv("QM_RECENT_CACHE_MAX_TAGS", "50000")),
        )


@dataclass(frozen=True)
class WindowConfig:
    """Límites de las ventanas baseline / current y cadencia de refresh."""
    baseline_span_seconds: float = 30 * 86400.0
    baseline_max_size: int = 10000
    current_span_seconds: float = 3600.0
    current_max_size: int = 2000
    baseline_refresh_seconds: float = 7 * 86400.0

    def __post_init__(self):
        _require_positive("baseline_span_seconds", self.baseline_span_seconds)
        _require_positive("baseline_max_size", self.baseline_max_size)
        _require_positive("current_span_seconds", self.current_span_seconds)
        _require_positive("current_max_size", self.current_max_size)
        _require_positive("baseline_refresh_seconds", self.baseline_refresh_seconds)

    @classmethod
    def from_env(cls) -> "WindowConfig":
        return cls(
            baseline_span_seconds=float(os.getenv("QM_BASELINE_SPAN_SEC", str(30 * 86400))),
            baseline_max_size=int(os.getenv("QM_BASELINE_MAX_SIZE", "10000")),
            current_span_seconds=float(os.getenv("QM_CURRENT_SPAN_SEC", "3600")),
            current_max_size=int(os.getenv("QM_CURRENT_MAX_SIZE", "2000")),
            baseline_refresh_seconds=float(os.getenv("QM_BASELINE_REFRESH_SEC", str(7 * 86400))),
        )


@dataclass(frozen=True)
class DriftConfig:
    """Umbrales del Drift Detector y tiers de severidad."""
    k: float = 2.0
    alpha: float = 0.05
    distance_threshold: float = 0.1
    min_samples: int = 30
    medium_distance: float = 0.25
    high_distance: float = 0.5
    cycle_seconds: float = 60.0

    def __post_init__(self):
        _require_positive("k", self.k)
        if not (0.0 < self.alpha < 1.0):
            raise ConfigurationError(f"must be within (0, 1), got {self.alpha}", option="alpha")
        _require_positive("distance_threshold", self.distance_threshold)
        if self.min_samples < 2:
            raise ConfigurationError(f"must be >= 2, got {self.min_samples}", option="min_samples")
        _require_positive("medium_distance", self.medium_distance)
        _require_positive("high_distance", self.high_distance)
        if self.medium_distance > self.high_distance:
            raise ConfigurationError("medium_distance must be <= high_distance", option="severity_tiers")
        _require_positive("cycle_seconds", self.cycle_seconds)

    @classmethod
    def from_env(cls) -> "DriftConfig":
        return cls(
            k=float(os.getenv("QM_DRIFT_K", "2.0")),
            alpha=float(os.getenv("QM_DRIFT_ALPHA", "0.05")),
            distance_threshold=float(os.getenv("QM_DRIFT_DISTANCE_THRESHOLD", "0.1")),
            min_samples=int(os.getenv("QM_DRIFT_MIN_SAMPLES", "30")),
            medium_distance=float(os.getenv("QM_SEVERITY_MEDIUM_DISTANCE", "0.25")),
            high_distance=float(os.getenv("QM_SEVERITY_HIGH_DISTANCE", "0.5")),
            cycle_seconds=float(os.getenv("QM_DRIFT_CYCLE_SEC", "60")),
        )


@dataclass(frozen=True)
class ScoringConfig:
    """Cadencia y parámetros del Quality Scorer.

    Un ciclo cierra cada ``cycle_readings`` lecturas o cada ``cycle_seconds``,
    lo que ocurra primero.
    """
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    thresholds: QualityThresholds = field(default_factory=QualityThresholds)
    nominal_rate_hz: float = 1.0
    cycle_readings: int = 1000
    cycle_seconds: float = 60.0
    # Distancia contra el gold standard; por defecto la misma que usa el drift
    accuracy_metric: str = "wasserstein"

    def __post_init__(self):
        _require_positive("nominal_rate_hz", self.nominal_rate_hz)
        _require_positive("cycle_readings", self.cycle_readings)
        _require_positive("cycle_seconds", self.cycle_seconds)
        if self.accuracy_metric not in ACCURACY_METRICS:
            raise ConfigurationError(
                f"unknown metric '{self.accuracy_metric}' (expected one of {', '.join(ACCURACY_METRICS)})",
                option="accuracy_metric",
            )

    @classmethod
    def from_env(cls) -> "ScoringConfig":
        return cls(
            weights=ScoringWeights.from_env(),
            thresholds=QualityThresholds.from_env(),
            nominal_rate_hz=float(os.getenv("QM_NOMINAL_RATE_HZ", "1.0")),
            cycle_readings=int(os.getenv("QM_SCORING_CYCLE_READINGS", "1000")),
            cycle_seconds=float(os.getenv("QM_SCORING_CYCLE_SEC", "60")),
            accuracy_metric=os.getenv("QM_ACCURACY_METRIC", "wasserstein").strip().lower(),
        )


@dataclass(frozen=True)
class DispatchConfig:
    """Entrega al Alert Dispatcher: timeout, cola de reintentos, intentos."""
    timeout_seconds: float = 2.0
    retry_queue_size: int = 1000
    max_attempts: int = 5
    retry_interval_seconds: float = 10.0

    def __post_init__(self):
        _require_positive("timeout_seconds", self.timeout_seconds)
        _require_positive("retry_queue_size", self.retry_queue_size)
        _require_positive("max_attempts", self.max_attempts)
        _require_positive("retry_interval_seconds", self.retry_interval_seconds)

    @classmethod
    def from_env(cls) -> "DispatchConfig":
        return cls(
            timeout_seconds=float(os.getenv("QM_SINK_TIMEOUT_SEC", "2.0")),
            retry_queue_size=int(os.getenv("QM_RETRY_QUEUE_SIZE", "1000")),
            max_attempts=int(os.getenv("QM_SINK_MAX_ATTEMPTS", "5")),
            retry_interval_seconds=float(os.getenv("QM_RETRY_INTERVAL_SEC", "10")),
        )


DEFAULT_SCHEMA = {
    "temperature": {"type": "float", "min": -40, "max": 125},
    "signal_strength": {"type": "float", "min": 0, "max": 100},
}


@dataclass(frozen=True)
class Settings:
    schema: SchemaDescriptor
    validator: ValidatorConfig = field(default_factory=ValidatorConfig)
    windows: WindowConfig = field(default_factory=WindowConfig)
    drift: DriftConfig = field(default_factory=DriftConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    gold_standard: Mapping[str, Sequence[float]] = field(default_factory=dict)
    # Campos monitorizados por drift; vacío = todos los numéricos del schema
    monitored_fields: Tuple[str, ...] = ()
    snapshot_db_url: str = "sqlite:///quality_monitor.db"
    # Límite de cada operación contra el repositorio de snapshots
    snapshot_timeout_seconds: float = 10.0

    def __post_init__(self):
        _require_positive("snapshot_timeout_seconds", self.snapshot_timeout_seconds)
        for name in self.monitored_fields:
            spec = self.schema.get(name)
            if spec is None or not spec.type.is_numeric:
                raise ConfigurationError(f"'{name}' is not a numeric schema field", option="monitored_fields")
        for name, values in self.gold_standard.items():
            if name not in self.schema:
                raise ConfigurationError(f"unknown field '{name}'", option="gold_standard")
            if len(values) == 0:
                raise ConfigurationError(f"empty reference set for '{name}'", option="gold_standard")

    @property
    def drift_fields(self) -> Tuple[str, ...]:
        return self.monitored_fields or self.schema.numeric_fields


def _default_env_file() -> str:
    return str(Path.cwd() / ".env")


def _load_json(path: str, option: str):
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"cannot read {path}: {e}", option=option) from e


def load_schema(path: Optional[str]) -> SchemaDescriptor:
    """Carga el schema desde JSON, o el schema por defecto si no hay fichero."""
    if not path:
        return SchemaDescriptor.from_dict(DEFAULT_SCHEMA)
    return SchemaDescriptor.from_dict(_load_json(path, "schema"))


def load_gold_standard(path: Optional[str]) -> Dict[str, Tuple[float, ...]]:
    """Carga el set de referencia: {campo: [valores]}."""
    if not path:
        return {}
    data = _load_json(path, "gold_standard")
    if not isinstance(data, dict):
        raise ConfigurationError("gold standard must map field -> list of values", option="gold_standard")
    reference = {}
    for name, values in data.items():
        try:
            reference[str(name)] = tuple(float(v) for v in values)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(str(e), option=f"gold_standard.{name}") from e
    return reference


def get_settings() -> Settings:
    """Construye la configuración desde el entorno.

    Raises:
        ConfigurationError: cualquier opción inválida (fatal al arrancar).
    """
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("QM_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    try:
        fields = os.getenv("QM_MONITORED_FIELDS", "")
        return Settings(
            schema=load_schema(os.getenv("QM_SCHEMA_FILE")),
            validator=ValidatorConfig.from_env(),
            windows=WindowConfig.from_env(),
            drift=DriftConfig.from_env(),
            scoring=ScoringConfig.from_env(),
            dispatch=DispatchConfig.from_env(),
            gold_standard=load_gold_standard(os.getenv("QM_GOLD_STANDARD_FILE")),
            monitored_fields=tuple(f.strip() for f in fields.split(",") if f.strip()),
            snapshot_db_url=os.getenv("QM_SNAPSHOT_DB_URL", "sqlite:///quality_monitor.db"),
            snapshot_timeout_seconds=float(os.getenv("QM_SNAPSHOT_TIMEOUT_SEC", "10")),
        )
    except ValueError as e:
        # int()/float() sobre variables mal formadas
        raise ConfigurationError(str(e)) from e


__all__ = [
    "DispatchConfig",
    "DriftConfig",
    "FieldSpec",
    "FieldType",
    "QualityThresholds",
    "ScoringConfig",
    "ScoringWeights",
    "Settings",
    "ValidatorConfig",
    "WindowConfig",
    "get_settings",
    "load_gold_standard",
    "load_schema",
]
