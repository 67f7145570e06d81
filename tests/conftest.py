"""Fixtures compartidas de los tests del motor de calidad."""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import numpy as np
import pytest

from quality_monitor.config import DEFAULT_SCHEMA, Settings, ValidatorConfig
from quality_monitor.domain.schema import SchemaDescriptor
from quality_monitor.validation.recent_cache import RecentReadCache
from quality_monitor.validation.record_validator import RecordValidator

NOW = datetime(2026, 1, 31, 8, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def now() -> datetime:
    """Instante fijo usado como reloj del validador."""
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def schema() -> SchemaDescriptor:
    """Schema por defecto: temperature [-40, 125], signal_strength [0, 100]."""
    return SchemaDescriptor.from_dict(DEFAULT_SCHEMA)


@pytest.fixture
def recent_cache() -> RecentReadCache:
    return RecentReadCache(dedup_window_seconds=5, location_ttl_seconds=3600)


@pytest.fixture
def validator(clock) -> RecordValidator:
    return RecordValidator(ValidatorConfig(), clock=clock)


@pytest.fixture
def settings(schema) -> Settings:
    return Settings(schema=schema)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(42)


@pytest.fixture
def make_payload():
    """Factory de payloads crudos válidos relativos a NOW."""

    def _make(
        stream_id: str = "reader-01",
        tag_id: Optional[str] = "TAG-0001",
        offset_seconds: float = 0.0,
        temperature: Any = 23.5,
        signal_strength: Any = 71.0,
        location: Any = None,
        **extra: Any,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "streamId": stream_id,
            "timestamp": (NOW + timedelta(seconds=offset_seconds)).isoformat().replace("+00:00", "Z"),
            "values": {"temperature": temperature, "signal_strength": signal_strength},
        }
        if tag_id is not None:
            payload["tagId"] = tag_id
        if location is not None:
            payload["location"] = location
        payload.update(extra)
        return payload

    return _make


@pytest.fixture
def isolated_env(monkeypatch, tmp_path):
    """Entorno sin variables QM_* ni fichero .env; se restaura al terminar."""
    for key in list(os.environ):
        if key.startswith("QM_"):
            monkeypatch.delenv(key)
    saved = dict(os.environ)
    monkeypatch.setenv("QM_ENV_FILE", str(tmp_path / "missing.env"))
    yield monkeypatch
    os.environ.clear()
    os.environ.update(saved)
