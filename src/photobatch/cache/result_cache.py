"""Content-addressed result cache backed by payload files and a JSON index.

Layout under the cache root::

    cache-index.json     {"version": "1.0", "last_updated": ..., "entries": [...]}
    <key>.cache          raw payload bytes of one entry

The index is rewritten on every mutation (access bookkeeping included), always
through a temporary file and ``os.replace``. An entry is listed in the index
only while its payload file exists.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

INDEX_FILE = "cache-index.json"
INDEX_VERSION = "1.0"
PAYLOAD_SUFFIX = ".cache"


def make_cache_key(content_hash: str, template_id: str, params: dict[str, Any]) -> str:
    """Deterministic key for (image content, template, parameters)."""

    material = f"{content_hash}_{template_id}_{json.dumps(params, sort_keys=True)}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class CacheEntry:
    key: str
    size: int
    created_at: float
    last_accessed: float
    access_count: int = 1
    template_id: str | None = None
    content_hash: str | None = None

    @property
    def file_name(self) -> str:
        return f"{self.key}{PAYLOAD_SUFFIX}"


@dataclass(slots=True)
class CacheStats:
    entries: int
    total_bytes: int
    hits: int
    misses: int
    hit_rate: float
    oldest_entry: float | None
    newest_entry: float | None


class ResultCache:
    """Thread-safe disk cache with LRU eviction and age-based sweeping."""

    def __init__(
        self,
        root: Path,
        *,
        max_entries: int = 1000,
        max_bytes: int = 1024 * 1024 * 1024,
        max_age_seconds: float = 7 * 24 * 3600,
        evict_fraction: float = 0.2,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.root = root
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self.max_age_seconds = max_age_seconds
        self.evict_fraction = evict_fraction
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self.root.mkdir(parents=True, exist_ok=True)
        self._load()

    @property
    def index_path(self) -> Path:
        return self.root / INDEX_FILE

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def entry(self, key: str) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get(key)
            return CacheEntry(**asdict(entry)) if entry else None

    def get(self, key: str) -> bytes | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            try:
                payload = (self.root / entry.file_name).read_bytes()
            except FileNotFoundError:
                logger.warning("cache.payload.missing", extra={"key": key})
                del self._entries[key]
                self._misses += 1
                self._save_index()
                return None
            except OSError:
                logger.exception("cache.read.failed", extra={"key": key})
                self._misses += 1
                return None
            entry.last_accessed = self._clock()
            entry.access_count += 1
            self._hits += 1
            self._save_index()
            return payload

    def put(
        self,
        key: str,
        payload: bytes,
        *,
        template_id: str | None = None,
        content_hash: str | None = None,
    ) -> None:
        with self._lock:
            target = self.root / f"{key}{PAYLOAD_SUFFIX}"
            try:
                _atomic_write(target, payload)
            except OSError:
                logger.exception("cache.write.failed", extra={"key": key})
                return
            now = self._clock()
            self._entries[key] = CacheEntry(
                key=key,
                size=len(payload),
                created_at=now,
                last_accessed=now,
                access_count=1,
                template_id=template_id,
                content_hash=content_hash,
            )
            self._enforce_limits()
            self._save_index()

    def delete(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.pop(key, None)
            if entry is None:
                return False
            self._remove_payload(entry)
            self._save_index()
            return True

    def clear(self) -> int:
        with self._lock:
            removed = len(self._entries)
            for entry in list(self._entries.values()):
                self._remove_payload(entry)
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._save_index()
        logger.info("cache.cleared", extra={"removed": removed})
        return removed

    def expired_keys(self, now: float | None = None) -> list[str]:
        current = self._clock() if now is None else now
        with self._lock:
            return [
                entry.key
                for entry in self._entries.values()
                if current - entry.last_accessed > self.max_age_seconds
            ]

    def sweep_expired(self, now: float | None = None) -> int:
        """Drop entries not accessed within the retention window."""

        with self._lock:
            expired = [self._entries[key] for key in self.expired_keys(now)]
            for entry in expired:
                del self._entries[entry.key]
                self._remove_payload(entry)
            if expired:
                self._save_index()
        if expired:
            logger.info("cache.sweep.expired", extra={"removed": len(expired)})
        return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            entries = list(self._entries.values())
            lookups = self._hits + self._misses
            return CacheStats(
                entries=len(entries),
                total_bytes=sum(entry.size for entry in entries),
                hits=self._hits,
                misses=self._misses,
                hit_rate=(self._hits / lookups) if lookups else 0.0,
                oldest_entry=min((e.created_at for e in entries), default=None),
                newest_entry=max((e.created_at for e in entries), default=None),
            )

    def total_bytes(self) -> int:
        with self._lock:
            return sum(entry.size for entry in self._entries.values())

    def _enforce_limits(self) -> None:
        while self._entries and (
            len(self._entries) > self.max_entries or self.total_bytes() > self.max_bytes
        ):
            batch = max(1, int(len(self._entries) * self.evict_fraction))
            victims = sorted(self._entries.values(), key=lambda entry: entry.last_accessed)[:batch]
            for entry in victims:
                del self._entries[entry.key]
                self._remove_payload(entry)
            logger.info(
                "cache.evicted",
                extra={"removed": len(victims), "remaining": len(self._entries)},
            )

    def _remove_payload(self, entry: CacheEntry) -> None:
        try:
            (self.root / entry.file_name).unlink(missing_ok=True)
        except OSError:
            logger.warning("cache.payload.unlink_failed", extra={"key": entry.key})

    def _load(self) -> None:
        if not self.index_path.exists():
            self._remove_orphans()
            return
        try:
            data = json.loads(self.index_path.read_text(encoding="utf-8"))
            raw_entries = data["entries"]
            entries = [CacheEntry(**item) for item in raw_entries]
        except (OSError, ValueError, KeyError, TypeError):
            logger.warning("cache.index.corrupt", extra={"path": str(self.index_path)})
            self._entries = {}
            self._remove_orphans()
            self._save_index()
            return

        dropped = 0
        for entry in entries:
            if (self.root / entry.file_name).exists():
                self._entries[entry.key] = entry
            else:
                dropped += 1
        self._remove_orphans()
        if dropped:
            logger.info("cache.index.pruned", extra={"dropped": dropped})
            self._save_index()

    def _remove_orphans(self) -> None:
        known = {entry.file_name for entry in self._entries.values()}
        for path in self.root.glob(f"*{PAYLOAD_SUFFIX}"):
            if path.name not in known:
                path.unlink(missing_ok=True)

    def _save_index(self) -> None:
        document = {
            "version": INDEX_VERSION,
            "last_updated": datetime.now(timezone.utc).isoformat(),
            "entries": [asdict(entry) for entry in self._entries.values()],
        }
        try:
            _atomic_write(self.index_path, json.dumps(document, indent=2).encode("utf-8"))
        except OSError:
            logger.exception("cache.index.write_failed", extra={"path": str(self.index_path)})


def _atomic_write(target: Path, payload: bytes) -> None:
    tmp = target.with_name(f"{target.name}.tmp")
    with open(tmp, "wb") as handle:
        handle.write(payload)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp, target)
