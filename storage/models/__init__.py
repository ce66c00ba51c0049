"""
Storage Models Package.

ORM models for the SQL-backed pipeline document store.
"""

from storage.models.base import Base, TimestampMixin
from storage.models.documents import PipelineDocument


__all__ = ["Base", "TimestampMixin", "PipelineDocument"]
