"""
Storage Module - Phase Store.

============================================================
PURPOSE
============================================================
Persistence seam for everything the pipeline writes between
and after phases:

- phase checkpoints   (phase1-result ... phase4-result)
- run metrics         (metrics-YYYY-MM-DD)
- lineage documents   (lineage-YYYY-MM-DD)

Documents are plain JSON-compatible dicts. A checkpoint is
written once per phase per run and never modified afterwards
by a later phase.

============================================================
BACKENDS
============================================================
- FilesystemPhaseStore: one JSON file per key (default)
- InMemoryPhaseStore: dict-backed, for tests
- SqlPhaseStore: SQLAlchemy table (storage/sql_phase_store.py)

============================================================
"""

import copy
import json
import logging
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.exceptions import StorageError


logger = logging.getLogger(__name__)


_VALID_KEY = re.compile(r"^[A-Za-z0-9._-]+$")


def checkpoint_key(phase: str) -> str:
    """Storage key of a phase checkpoint."""
    return f"{phase}-result"


def metrics_key(date: str) -> str:
    return f"metrics-{date}"


def lineage_key(date: str) -> str:
    return f"lineage-{date}"


def _check_key(key: str) -> None:
    if not _VALID_KEY.match(key):
        raise StorageError(f"Invalid document key: {key!r}", key=key)


# ============================================================
# INTERFACE
# ============================================================

class PhaseStore(ABC):
    """Abstract document store keyed by name."""

    @abstractmethod
    def save(self, key: str, document: Dict[str, Any]) -> None:
        """Persist document under key, replacing any previous version."""

    @abstractmethod
    def load(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the document or None when absent."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        pass

    def exists(self, key: str) -> bool:
        return self.load(key) is not None

    def save_checkpoint(self, phase: str, document: Dict[str, Any]) -> None:
        self.save(checkpoint_key(phase), document)

    def load_checkpoint(self, phase: str) -> Optional[Dict[str, Any]]:
        return self.load(checkpoint_key(phase))


# ============================================================
# IN-MEMORY
# ============================================================

class InMemoryPhaseStore(PhaseStore):
    """Dict-backed store. Documents are deep-copied on the way in and out."""

    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save(self, key: str, document: Dict[str, Any]) -> None:
        _check_key(key)
        with self._lock:
            self._documents[key] = copy.deepcopy(document)

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            document = self._documents.get(key)
        return copy.deepcopy(document) if document is not None else None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._documents.pop(key, None) is not None

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._documents)


# ============================================================
# FILESYSTEM
# ============================================================

class FilesystemPhaseStore(PhaseStore):
    """One pretty-printed JSON file per key under base_dir."""

    def __init__(self, base_dir: str):
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def path_for(self, key: str) -> Path:
        _check_key(key)
        return self._base_dir / f"{key}.json"

    def save(self, key: str, document: Dict[str, Any]) -> None:
        path = self.path_for(key)
        fd, tmp_path = tempfile.mkstemp(dir=self._base_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StorageError(f"Failed to write {key}: {e}", key=key, cause=e)

        logger.debug(f"Saved {path}")

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read {key}: {e}", key=key, cause=e)

    def delete(self, key: str) -> bool:
        path = self.path_for(key)
        if path.exists():
            path.unlink()
            return True
        return False

    def keys(self) -> List[str]:
        return sorted(p.stem for p in self._base_dir.glob("*.json"))
