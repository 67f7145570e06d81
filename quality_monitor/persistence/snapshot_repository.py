"""Repositorio de snapshots - persistencia del estado entre reinicios.

Guarda las ventanas baseline/current y el cache de lecturas recientes como
JSON en dos tablas. Usa SQLAlchemy Core con ``text()``; funciona sobre
SQLite (por defecto) o cualquier motor que acepte SQL estándar.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Dict, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from ..validation.recent_cache import RecentReadCache
from ..windows.baseline_store import BaselineStore

logger = logging.getLogger(__name__)


_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS qm_baseline_windows (
        stream_id VARCHAR(255) NOT NULL,
        field_name VARCHAR(255) NOT NULL,
        payload TEXT NOT NULL,
        saved_at FLOAT NOT NULL,
        PRIMARY KEY (stream_id, field_name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS qm_recent_reads (
        stream_id VARCHAR(255) NOT NULL PRIMARY KEY,
        payload TEXT NOT NULL,
        saved_at FLOAT NOT NULL
    )
    """,
)


class SnapshotRepository:
    """Acceso a BD para snapshots del motor."""

    def __init__(self, engine: Engine):
        self._engine = engine
        self._schema_ready = False

    @classmethod
    def from_url(cls, url: str) -> "SnapshotRepository":
        logger.info("[SNAPSHOT] Creating engine url=%s", url.split("@")[-1])
        return cls(create_engine(url, pool_pre_ping=True, future=True))

    @property
    def engine(self) -> Engine:
        return self._engine

    def ensure_schema(self) -> None:
        """Crea las tablas si no existen. Seguro de llamar varias veces."""
        if self._schema_ready:
            return
        with self._engine.begin() as conn:
            for statement in _SCHEMA_STATEMENTS:
                conn.execute(text(statement))
        self._schema_ready = True

    # =========================================================================
    # Baselines
    # =========================================================================

    def save_baselines(self, state: List[dict]) -> int:
        """Guarda el resultado de ``BaselineStore.export_state()``.

        Returns:
            Número de ventanas guardadas
        """
        self.ensure_schema()
        now = time.time()
        with self._engine.begin() as conn:
            for item in state:
                params = {"stream_id": item["stream_id"], "field_name": item["field"]}
                conn.execute(
                    text("DELETE FROM qm_baseline_windows WHERE stream_id = :stream_id AND field_name = :field_name"),
                    params,
                )
                conn.execute(
                    text("""
                        INSERT INTO qm_baseline_windows (stream_id, field_name, payload, saved_at)
                        VALUES (:stream_id, :field_name, :payload, :saved_at)
                    """),
                    {**params, "payload": json.dumps(item), "saved_at": now},
                )
        logger.info("[SNAPSHOT] Saved baselines: windows=%d", len(state))
        return len(state)

    def load_baselines(self, stream_id: Optional[str] = None) -> List[dict]:
        """Lee ventanas guardadas (todas o las de un stream)."""
        self.ensure_schema()
        query = "SELECT payload FROM qm_baseline_windows"
        params: Dict[str, str] = {}
        if stream_id is not None:
            query += " WHERE stream_id = :stream_id"
            params["stream_id"] = stream_id
        with self._engine.connect() as conn:
            rows = conn.execute(text(query), params).fetchall()
        return [json.loads(row.payload) for row in rows]

    # =========================================================================
    # Recent-read cache
    # =========================================================================

    def save_recent_cache(self, state: Dict[str, Dict[str, dict]]) -> int:
        """Guarda el resultado de ``RecentReadCache.export_state()``."""
        self.ensure_schema()
        now = time.time()
        with self._engine.begin() as conn:
            for stream_id, entries in state.items():
                conn.execute(
                    text("DELETE FROM qm_recent_reads WHERE stream_id = :stream_id"),
                    {"stream_id": stream_id},
                )
                conn.execute(
                    text("""
                        INSERT INTO qm_recent_reads (stream_id, payload, saved_at)
                        VALUES (:stream_id, :payload, :saved_at)
                    """),
                    {"stream_id": stream_id, "payload": json.dumps(entries), "saved_at": now},
                )
        logger.info("[SNAPSHOT] Saved recent cache: streams=%d", len(state))
        return len(state)

    def load_recent_cache(self) -> Dict[str, Dict[str, dict]]:
        self.ensure_schema()
        with self._engine.connect() as conn:
            rows = conn.execute(text("SELECT stream_id, payload FROM qm_recent_reads")).fetchall()
        return {row.stream_id: json.loads(row.payload) for row in rows}

    # =========================================================================
    # Helpers de alto nivel
    # =========================================================================

    def save(self, store: BaselineStore, cache: RecentReadCache) -> None:
        self.save_baselines(store.export_state())
        self.save_recent_cache(cache.export_state())

    def restore(self, store: BaselineStore, cache: RecentReadCache) -> None:
        baselines = self.load_baselines()
        if baselines:
            store.load_state(baselines)
        recent = self.load_recent_cache()
        if recent:
            cache.load_state(recent)
        logger.info("[SNAPSHOT] Restored: windows=%d streams=%d", len(baselines), len(recent))
