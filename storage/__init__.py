"""
Storage Package.

Persistence for the digest pipeline.

Modules:
- phase_store: checkpoint / metrics / lineage document stores
- sql_phase_store: SQLAlchemy-backed document store
- cache: cache-aside stores for collector responses
- models/: ORM models
"""

from storage.cache import CacheStore, FileCache, MemoryCache
from storage.phase_store import (
    FilesystemPhaseStore,
    InMemoryPhaseStore,
    PhaseStore,
    checkpoint_key,
    lineage_key,
    metrics_key,
)
