"""
Pipeline document table.

Stores checkpoints, metrics and lineage documents as JSON rows
keyed by document name.
"""

from typing import Any, Dict

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from storage.models.base import Base, TimestampMixin


class PipelineDocument(Base, TimestampMixin):
    """One named JSON document (e.g. phase3-result, lineage-2026-01-05)."""

    __tablename__ = "pipeline_documents"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    document: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return f"<PipelineDocument(key={self.key}, kind={self.kind})>"
