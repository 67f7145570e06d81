"""Validador de lecturas: schema, rango, frescura, duplicados y plausibilidad.

Orden de checks (el primero que falla gana):
1. Forma / schema  → SchemaViolation
2. Rango           → RangeViolation
3. Frescura        → StaleTimestamp (viejo o demasiado en el futuro)
4. Duplicado       → Duplicate (mismo tag dentro de la ventana de dedup)
5. Ubicación       → LocationConflict (viaje físicamente imposible)

El validador NUNCA lanza: cualquier entrada inesperada se convierte en
SchemaViolation. No toca las ventanas; eso es responsabilidad del caller
cuando el resultado es Accepted.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Tuple

from ..config import ValidatorConfig
from ..domain.reading import Location, Reading, parse_reading
from ..domain.results import RejectionReason, ValidationResult
from ..domain.schema import SchemaDescriptor
from .recent_cache import RecentReadCache

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0088

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def haversine_km(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    """Distancia de gran círculo entre dos (lat, lon) en km."""
    lat1, lon1 = map(math.radians, a)
    lat2, lon2 = map(math.radians, b)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


class RecordValidator:
    """Valida lecturas crudas contra un schema y el estado reciente por tag.

    Uso:
        validator = RecordValidator(ValidatorConfig())
        result = validator.validate(payload, schema, recent_cache)
        if result.accepted:
            store.append(result.reading)
    """

    def __init__(self, config: Optional[ValidatorConfig] = None, clock: Optional[Clock] = None):
        self._config = config or ValidatorConfig()
        self._clock = clock or _utcnow

    @property
    def config(self) -> ValidatorConfig:
        return self._config

    def validate(
        self,
        reading: Any,
        schema: SchemaDescriptor,
        recent_cache: RecentReadCache,
    ) -> ValidationResult:
        """Clasifica una lectura como Accepted o Rejected(reason).

        Args:
            reading: Reading o payload crudo (dict)
            schema: Descriptor de schema del stream
            recent_cache: Cache de tags recientes (se muta)

        Returns:
            ValidationResult (nunca lanza)
        """
        try:
            return self._validate(reading, schema, recent_cache)
        except Exception as e:
            logger.warning("[VALIDATOR] Unexpected input rejected: %s", e)
            parsed = reading if isinstance(reading, Reading) else None
            return ValidationResult.reject(
                RejectionReason.SCHEMA_VIOLATION,
                f"Unexpected input: {type(e).__name__}: {str(e)[:200]}",
                reading=parsed,
                raw=None if parsed else reading,
            )

    def _validate(self, raw: Any, schema: SchemaDescriptor, cache: RecentReadCache) -> ValidationResult:
        try:
            reading = parse_reading(raw)
        except Exception as e:
            return ValidationResult.reject(
                RejectionReason.SCHEMA_VIOLATION,
                f"Malformed reading: {str(e)[:200]}",
                raw=raw,
            )

        error = self._check_schema(reading, schema)
        if error:
            return ValidationResult.reject(RejectionReason.SCHEMA_VIOLATION, error, reading=reading)

        error = self._check_ranges(reading, schema)
        if error:
            return ValidationResult.reject(RejectionReason.RANGE_VIOLATION, error, reading=reading)

        error = self._check_freshness(reading)
        if error:
            return ValidationResult.reject(RejectionReason.STALE_TIMESTAMP, error, reading=reading)

        if reading.tag_id is not None:
            ts = reading.epoch
            is_dup, last_seen = cache.is_duplicate(reading.stream_id, reading.tag_id, ts)
            if is_dup:
                return self._duplicate(reading, ts, last_seen)

            if reading.location is not None:
                error = self._check_location(reading, cache)
                if error:
                    return ValidationResult.reject(RejectionReason.LOCATION_CONFLICT, error, reading=reading)

            # Solo una lectura aceptada marca el tag; se re-verifica bajo el lock del shard
            is_dup, last_seen = cache.check_and_mark(reading.stream_id, reading.tag_id, ts)
            if is_dup:
                return self._duplicate(reading, ts, last_seen)
            if reading.location is not None:
                cache.update_location(reading.stream_id, reading.tag_id, reading.location, ts)

        return ValidationResult.accept(reading)

    def _duplicate(self, reading: Reading, ts: float, last_seen: float) -> ValidationResult:
        return ValidationResult.reject(
            RejectionReason.DUPLICATE,
            f"Tag {reading.tag_id} already seen {abs(ts - last_seen):.3f}s apart "
            f"(window {self._config.dedup_window_seconds}s)",
            reading=reading,
        )

    def _check_schema(self, reading: Reading, schema: SchemaDescriptor) -> Optional[str]:
        for name, spec in schema.fields.items():
            value = reading.values.get(name)
            if value is None:
                if not spec.nullable:
                    return f"Missing required field: {name}"
                continue
            if not spec.matches_type(value):
                return f"Type mismatch for {name}: expected {spec.type.value}, got {type(value).__name__}"
        return None

    def _check_ranges(self, reading: Reading, schema: SchemaDescriptor) -> Optional[str]:
        for name, spec in schema.fields.items():
            if not spec.type.is_numeric:
                continue
            value = reading.values.get(name)
            if value is None:
                continue
            if not spec.in_range(float(value)):
                return f"Out of range for {name}: {value} (expected {spec.min} to {spec.max})"
        return None

    def _check_freshness(self, reading: Reading) -> Optional[str]:
        now = self._clock()
        age = (now - reading.timestamp).total_seconds()
        if age > self._config.max_age_seconds:
            return f"Stale data: {age:.0f} seconds old (max {self._config.max_age_seconds:.0f})"
        if -age > self._config.max_future_skew_seconds:
            return f"Future timestamp: {-age:.0f} seconds ahead (max {self._config.max_future_skew_seconds:.0f})"
        return None

    def _resolve_coordinates(self, location: Location) -> Optional[Tuple[float, float]]:
        if location.has_coordinates:
            return (location.lat, location.lon)
        if location.name and location.name in self._config.known_locations:
            lat, lon = self._config.known_locations[location.name]
            return (float(lat), float(lon))
        return None

    def _check_location(self, reading: Reading, cache: RecentReadCache) -> Optional[str]:
        previous = cache.last_location(reading.stream_id, reading.tag_id)
        if previous is None:
            return None
        prev_location, prev_ts = previous
        elapsed = abs(reading.epoch - prev_ts)

        here = self._resolve_coordinates(reading.location)
        there = self._resolve_coordinates(prev_location)
        if here is not None and there is not None:
            distance_km = haversine_km(here, there)
            if distance_km < 1e-3:
                return None
            if elapsed <= 0:
                return f"Tag {reading.tag_id} at two locations {distance_km:.3f} km apart at the same instant"
            speed_kmh = distance_km / (elapsed / 3600.0)
            if speed_kmh > self._config.max_speed_kmh:
                return (
                    f"Tag {reading.tag_id} moved {distance_km:.3f} km in {elapsed:.1f}s "
                    f"({speed_kmh:.0f} km/h > {self._config.max_speed_kmh:.0f} km/h)"
                )
            return None

        if reading.location.name and prev_location.name and reading.location.name != prev_location.name:
            if elapsed < self._config.min_relocation_seconds:
                return (
                    f"Tag {reading.tag_id} seen at '{prev_location.name}' and '{reading.location.name}' "
                    f"{elapsed:.3f}s apart (min {self._config.min_relocation_seconds}s)"
                )
        return None


def validate(
    reading: Any,
    schema: SchemaDescriptor,
    recent_cache: RecentReadCache,
    config: Optional[ValidatorConfig] = None,
    clock: Optional[Clock] = None,
) -> ValidationResult:
    """Atajo funcional sobre ``RecordValidator.validate``."""
    return RecordValidator(config, clock).validate(reading, schema, recent_cache)
