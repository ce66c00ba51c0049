"""
Storage Module - Cache-Aside Stores.

============================================================
RESPONSIBILITY
============================================================
Short-lived cache for collector responses.

- TTL checked against the time the entry was written
- Stale entries stay readable through get_stale() so a failing
  source can still be served as DELAYED data
- Hit / miss / write / invalidation statistics
- Atomic writes (temp file + rename) for the file backend

============================================================
"""

import fnmatch
import json
import logging
import os
import re
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from core.clock import ClockProtocol, SystemClock


logger = logging.getLogger(__name__)


_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


# ============================================================
# BASE
# ============================================================

class CacheStore(ABC):
    """Key/value cache with per-read TTL."""

    def __init__(self, clock: Optional[ClockProtocol] = None):
        self._clock = clock or SystemClock()
        self._stats = {"hits": 0, "misses": 0, "writes": 0, "invalidations": 0}
        self._stats_lock = threading.Lock()

    @abstractmethod
    def _read(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the stored envelope {cachedAt, data} or None."""

    @abstractmethod
    def _write(self, key: str, envelope: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def _keys(self) -> list:
        pass

    @abstractmethod
    def _remove(self, key: str) -> None:
        pass

    def _count(self, stat: str, n: int = 1) -> None:
        with self._stats_lock:
            self._stats[stat] += n

    def get(self, key: str, ttl: float = 0) -> Optional[Any]:
        """
        Return cached data younger than ttl seconds (ttl=0: never expires).
        """
        envelope = self._read(key)
        if envelope is None:
            self._count("misses")
            return None

        age = self._clock.timestamp() - float(envelope.get("cachedAt", 0))
        if ttl > 0 and age > ttl:
            self._count("misses")
            logger.info(f"Cache expired: {key} ({int(age // 60)} min old)")
            return None

        self._count("hits")
        logger.debug(f"Cache hit: {key}")
        return envelope.get("data")

    def get_stale(self, key: str) -> Optional[Tuple[Any, float]]:
        """Return (data, cached_at) ignoring TTL, or None."""
        envelope = self._read(key)
        if envelope is None:
            return None
        return envelope.get("data"), float(envelope.get("cachedAt", 0))

    def set(self, key: str, data: Any) -> None:
        self._write(key, {"cachedAt": self._clock.timestamp(), "data": data})
        self._count("writes")
        logger.debug(f"Cached: {key}")

    def invalidate(self, pattern: str) -> int:
        """Remove every key equal to or glob-matching pattern."""
        count = 0
        for key in self._keys():
            if key == pattern or fnmatch.fnmatchcase(key, pattern):
                self._remove(key)
                count += 1
        self._count("invalidations", count)
        logger.info(f"Invalidated {count} cache entries (pattern: {pattern})")
        return count

    def stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats = dict(self._stats)
        total = stats["hits"] + stats["misses"]
        stats["hitRate"] = round(stats["hits"] / total * 100, 2) if total else 0.0
        stats["entryCount"] = len(self._keys())
        return stats


# ============================================================
# IN-MEMORY
# ============================================================

class MemoryCache(CacheStore):
    """Process-local cache, used in tests and single-shot runs."""

    def __init__(self, clock: Optional[ClockProtocol] = None):
        super().__init__(clock)
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _read(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._entries.get(key)

    def _write(self, key: str, envelope: Dict[str, Any]) -> None:
        with self._lock:
            self._entries[key] = envelope

    def _keys(self) -> list:
        with self._lock:
            return list(self._entries)

    def _remove(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


# ============================================================
# FILESYSTEM
# ============================================================

class FileCache(CacheStore):
    """One JSON file per key under base_dir."""

    def __init__(self, base_dir: str, clock: Optional[ClockProtocol] = None):
        super().__init__(clock)
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _path(self, key: str) -> Path:
        return self._base_dir / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def _read(self, key: str) -> Optional[Dict[str, Any]]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read cache {key}: {e}")
            return None

    def _write(self, key: str, envelope: Dict[str, Any]) -> None:
        path = self._path(key)
        fd, tmp_path = tempfile.mkstemp(dir=self._base_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(envelope, f, ensure_ascii=False)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _keys(self) -> list:
        return [p.stem for p in self._base_dir.glob("*.json")]

    def _remove(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()

    def clear(self) -> None:
        shutil.rmtree(self._base_dir, ignore_errors=True)
        self._base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Cache cleared: {self._base_dir}")
