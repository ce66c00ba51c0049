"""
Storage Module - SQL Phase Store.

============================================================
PURPOSE
============================================================
PhaseStore backed by a SQLAlchemy table, for deployments that
keep checkpoints and lineage in a database instead of files.

- Works with any SQLAlchemy URL (sqlite for tests/dev)
- Explicit transaction scope: commit on success, rollback on error
- Database errors surface as StorageError

============================================================
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional

from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from core.exceptions import StorageError
from storage.models import Base, PipelineDocument
from storage.phase_store import PhaseStore, _check_key


logger = logging.getLogger(__name__)


def _document_kind(key: str) -> str:
    """phase3-result -> checkpoint, lineage-2026-01-05 -> lineage."""
    if key.endswith("-result"):
        return "checkpoint"
    return key.split("-", 1)[0]


class SqlPhaseStore(PhaseStore):
    """Document store on a single SQL table."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        create_tables: bool = True,
        echo: bool = False,
    ):
        if engine is None:
            if not database_url:
                raise StorageError("SqlPhaseStore requires database_url or engine")
            engine = create_engine(database_url, echo=echo, future=True)

        self._engine = engine
        self._session_factory = sessionmaker(
            bind=engine,
            autoflush=False,
            expire_on_commit=False,
        )

        if create_tables:
            Base.metadata.create_all(engine)

        logger.info(f"SqlPhaseStore ready ({engine.url.render_as_string(hide_password=True)})")

    @property
    def engine(self) -> Engine:
        return self._engine

    @contextmanager
    def transaction_scope(self) -> Generator[Session, None, None]:
        """Commit if the block succeeds, roll back on any error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error, rolled back: {e}")
            raise StorageError(f"Database error: {e}", cause=e)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def save(self, key: str, document: Dict[str, Any]) -> None:
        _check_key(key)
        with self.transaction_scope() as session:
            row = session.get(PipelineDocument, key)
            if row is None:
                session.add(PipelineDocument(
                    key=key,
                    kind=_document_kind(key),
                    document=document,
                ))
            else:
                row.document = document
        logger.debug(f"Saved document {key}")

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        with self.transaction_scope() as session:
            row = session.get(PipelineDocument, key)
            return dict(row.document) if row is not None else None

    def delete(self, key: str) -> bool:
        with self.transaction_scope() as session:
            row = session.get(PipelineDocument, key)
            if row is None:
                return False
            session.delete(row)
            return True

    def keys(self) -> List[str]:
        with self.transaction_scope() as session:
            result = session.execute(
                select(PipelineDocument.key).order_by(PipelineDocument.key)
            )
            return list(result.scalars())
