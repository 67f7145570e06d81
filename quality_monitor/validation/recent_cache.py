"""Cache de lecturas recientes por tag para deduplicación y plausibilidad.

Un shard por stream_id (sin contención entre streams). Cada shard es un
OrderedDict tag_id → TagEntry acotado en tamaño (LRU) y con expiración por
TTL medida con el timestamp de las lecturas, no con el reloj de pared.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from ..domain.reading import Location

logger = logging.getLogger(__name__)

# Barrido de expirados cada N escrituras por shard
EVICT_EVERY = 256


@dataclass
class TagEntry:
    """Último estado conocido de un tag dentro de un stream."""
    last_seen: float
    location: Optional[Location] = None
    location_seen: Optional[float] = None

    @property
    def last_activity(self) -> float:
        if self.location_seen is None:
            return self.last_seen
        return max(self.last_seen, self.location_seen)


class _TagShard:
    """Shard de un stream. Toda mutación pasa por ``_lock``."""

    def __init__(self, max_tags: int, retention_seconds: float):
        self._entries: "OrderedDict[str, TagEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._max_tags = max_tags
        self._retention = retention_seconds
        self._newest: float = float("-inf")
        self._writes = 0
        self.evicted = 0

    def _touch(self, tag_id: str, ts: float) -> None:
        self._entries.move_to_end(tag_id)
        if ts > self._newest:
            self._newest = ts

    def _evict(self) -> None:
        cutoff = self._newest - self._retention
        expired = [tag for tag, e in self._entries.items() if e.last_activity < cutoff]
        for tag in expired:
            del self._entries[tag]
        while len(self._entries) > self._max_tags:
            self._entries.popitem(last=False)
            self.evicted += 1
        self.evicted += len(expired)

    def is_duplicate(self, tag_id: str, ts: float, window_seconds: float) -> Tuple[bool, Optional[float]]:
        with self._lock:
            entry = self._entries.get(tag_id)
            if entry is None:
                return False, None
            return abs(ts - entry.last_seen) <= window_seconds, entry.last_seen

    def check_and_mark(self, tag_id: str, ts: float, window_seconds: float) -> Tuple[bool, Optional[float]]:
        with self._lock:
            entry = self._entries.get(tag_id)
            if entry is not None and abs(ts - entry.last_seen) <= window_seconds:
                return True, entry.last_seen
            previous = entry.last_seen if entry is not None else None
            if entry is None:
                self._entries[tag_id] = TagEntry(last_seen=ts)
            else:
                entry.last_seen = ts
            self._touch(tag_id, ts)
            self._writes += 1
            if len(self._entries) > self._max_tags or self._writes % EVICT_EVERY == 0:
                self._evict()
            return False, previous

    def last_location(self, tag_id: str) -> Optional[Tuple[Location, float]]:
        with self._lock:
            entry = self._entries.get(tag_id)
            if entry is None or entry.location is None or entry.location_seen is None:
                return None
            if self._newest - entry.location_seen > self._retention:
                return None
            return entry.location, entry.location_seen

    def update_location(self, tag_id: str, location: Location, ts: float) -> None:
        with self._lock:
            entry = self._entries.get(tag_id)
            if entry is None:
                entry = TagEntry(last_seen=ts)
                self._entries[tag_id] = entry
            # last-write-wins según el timestamp de la lectura
            if entry.location_seen is None or ts >= entry.location_seen:
                entry.location = location
                entry.location_seen = ts
            self._touch(tag_id, ts)

    def export(self) -> Dict[str, dict]:
        with self._lock:
            return {
                tag: {
                    "last_seen": e.last_seen,
                    "location": e.location.to_dict() if e.location else None,
                    "location_seen": e.location_seen,
                }
                for tag, e in self._entries.items()
            }

    def load(self, entries: Dict[str, dict]) -> None:
        with self._lock:
            self._entries.clear()
            ordered = sorted(entries.items(), key=lambda kv: float(kv[1]["last_seen"]))
            for tag, data in ordered:
                loc = data.get("location")
                entry = TagEntry(
                    last_seen=float(data["last_seen"]),
                    location=Location(**loc) if loc else None,
                    location_seen=data.get("location_seen"),
                )
                self._entries[tag] = entry
                self._newest = max(self._newest, entry.last_activity)
            self._evict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RecentReadCache:
    """Mapa acotado y particionado tag_id → último visto / última ubicación.

    Uso:
        cache = RecentReadCache(dedup_window_seconds=5)
        is_dup, _ = cache.check_and_mark("reader-1", "TAG-1", ts)
    """

    def __init__(
        self,
        dedup_window_seconds: float = 5.0,
        location_ttl_seconds: float = 3600.0,
        max_tags_per_stream: int = 50000,
    ):
        self._window = dedup_window_seconds
        self._retention = max(dedup_window_seconds, location_ttl_seconds)
        self._max_tags = max_tags_per_stream
        self._shards: Dict[str, _TagShard] = {}
        self._shards_lock = threading.Lock()

    @property
    def dedup_window_seconds(self) -> float:
        return self._window

    def _shard(self, stream_id: str) -> _TagShard:
        shard = self._shards.get(stream_id)
        if shard is None:
            with self._shards_lock:
                shard = self._shards.get(stream_id)
                if shard is None:
                    shard = _TagShard(self._max_tags, self._retention)
                    self._shards[stream_id] = shard
        return shard

    def is_duplicate(self, stream_id: str, tag_id: str, ts: float) -> Tuple[bool, Optional[float]]:
        """Consulta de duplicado sin registrar nada.

        Returns:
            (is_duplicate, last_seen)
        """
        return self._shard(stream_id).is_duplicate(tag_id, ts, self._window)

    def check_and_mark(self, stream_id: str, tag_id: str, ts: float) -> Tuple[bool, Optional[float]]:
        """Verifica duplicado y, si no lo es, registra el timestamp.

        Returns:
            (is_duplicate, previous_last_seen)
        """
        return self._shard(stream_id).check_and_mark(tag_id, ts, self._window)

    def last_location(self, stream_id: str, tag_id: str) -> Optional[Tuple[Location, float]]:
        return self._shard(stream_id).last_location(tag_id)

    def update_location(self, stream_id: str, tag_id: str, location: Location, ts: float) -> None:
        self._shard(stream_id).update_location(tag_id, location, ts)

    def export_state(self) -> Dict[str, Dict[str, dict]]:
        """Snapshot serializable (JSON) de todos los shards."""
        with self._shards_lock:
            shards = dict(self._shards)
        return {stream_id: shard.export() for stream_id, shard in shards.items()}

    def load_state(self, state: Dict[str, Dict[str, dict]]) -> None:
        """Restaura el cache desde ``export_state``."""
        for stream_id, entries in state.items():
            self._shard(stream_id).load(entries)
        logger.info("[RECENT_CACHE] Loaded state: streams=%d", len(state))

    @property
    def stats(self) -> dict:
        with self._shards_lock:
            shards = dict(self._shards)
        return {
            "streams": len(shards),
            "tags": sum(len(s) for s in shards.values()),
            "evicted": sum(s.evicted for s in shards.values()),
            "dedup_window_seconds": self._window,
            "max_tags_per_stream": self._max_tags,
        }
