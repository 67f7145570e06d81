"""Validation layer - Record Validator y cache de tags recientes."""

from .recent_cache import RecentReadCache, TagEntry
from .record_validator import RecordValidator, haversine_km, validate

__all__ = ["RecentReadCache", "RecordValidator", "TagEntry", "haversine_km", "validate"]
