"""
Module: procure_kernel.store.sql
Responsibility: SQLAlchemy-backed DocumentStore.  Persists each document as
    a JSON row of the ``documents`` table and wraps every storage primitive
    in a commit-or-rollback session scope.
Architecture position: Kernel > Store.  May import from store/base.py and
    store/orm.py.

Invariants enforced:
    - One session per primitive; commit on success, rollback on error.
    - Backend failures on writes surface as StoreWriteError (code
      STORE_WRITE_FAILED), on reads as StoreError.  Subscribers are only
      notified after a successful commit.
    - Decimal values in documents are persisted as strings.

Failure modes:
    - StoreWriteError wrapping any SQLAlchemyError raised during a write.
    - StoreError wrapping any SQLAlchemyError raised during a read.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from procure_kernel.domain.clock import Clock
from procure_kernel.exceptions import StoreError, StoreWriteError
from procure_kernel.logging_config import get_logger
from procure_kernel.store.base import (
    CREATED_AT_FIELD,
    ID_FIELD,
    UPDATED_AT_FIELD,
    Document,
    DocumentStore,
)
from procure_kernel.store.orm import Base, DocumentRow

logger = get_logger("store.sql")


def create_store_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for SqlDocumentStore.

    In-memory SQLite URLs get a StaticPool so every session sees the same
    database; other URLs use the default pool with pre-ping.
    """
    if database_url.startswith("sqlite") and (
        database_url in ("sqlite://", "sqlite:///:memory:") or ":memory:" in database_url
    ):
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(database_url, echo=echo, pool_pre_ping=True)
    logger.info(
        "store_engine_created",
        extra={"dialect": engine.dialect.name, "echo": echo},
    )
    return engine


def create_document_tables(engine: Engine) -> None:
    """Create the ``documents`` table if it does not exist."""
    Base.metadata.create_all(engine)


def to_json_value(value: Any) -> Any:
    """Render a document value as something the JSON column accepts."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    return value


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class SqlDocumentStore(DocumentStore):
    """
    DocumentStore on a relational database through SQLAlchemy.

    Contract:
        The ``documents`` table must exist (see ``create_document_tables``).

    Guarantees:
        - Reads return documents ordered by insertion position.
        - ``replace_all`` deletes and re-inserts the collection in one
          transaction.
    """

    def __init__(self, engine: Engine, clock: Clock | None = None):
        super().__init__(clock)
        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @contextmanager
    def session_scope(self, operation: str, collection: str) -> Generator[Session, None, None]:
        """
        Transactional scope around one storage primitive.

        Postconditions: On normal exit the session is committed and closed.
            On a SQLAlchemyError it is rolled back, closed, and the error is
            re-raised as StoreWriteError (writes) or StoreError (reads).
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.warning(
                "store_transaction_rolled_back",
                extra={"operation": operation, "collection": collection},
                exc_info=True,
            )
            if operation in ("load", "get"):
                raise StoreError(f"{operation} on {collection} failed: {exc}") from exc
            raise StoreWriteError(operation, collection, str(exc)) from exc
        finally:
            session.close()

    # -- primitives --------------------------------------------------------

    @staticmethod
    def _rows(scope: str, collection: str):
        return select(DocumentRow).where(
            DocumentRow.scope == scope, DocumentRow.collection == collection
        )

    def _load(self, scope: str, collection: str) -> list[Document]:
        with self.session_scope("load", collection) as session:
            stmt = self._rows(scope, collection).order_by(DocumentRow.position)
            return [dict(row.body) for row in session.scalars(stmt)]

    def _get(self, scope: str, collection: str, document_id: str) -> Document | None:
        with self.session_scope("get", collection) as session:
            row = session.get(DocumentRow, (scope, collection, document_id))
            return dict(row.body) if row is not None else None

    def _insert(self, scope: str, collection: str, document: Document) -> None:
        with self.session_scope("add", collection) as session:
            last = session.scalar(
                select(func.max(DocumentRow.position)).where(
                    DocumentRow.scope == scope, DocumentRow.collection == collection
                )
            )
            session.add(self._make_row(scope, collection, document, (last or 0) + 1))

    def _overwrite(self, scope: str, collection: str, document: Document) -> None:
        with self.session_scope("update", collection) as session:
            row = session.get(DocumentRow, (scope, collection, document[ID_FIELD]))
            if row is None:
                raise StoreWriteError("update", collection, "document vanished during update")
            row.body = to_json_value(document)
            row.updated_at = _parse_timestamp(document[UPDATED_AT_FIELD])

    def _remove(self, scope: str, collection: str, document_id: str) -> None:
        with self.session_scope("delete", collection) as session:
            session.execute(
                delete(DocumentRow).where(
                    DocumentRow.scope == scope,
                    DocumentRow.collection == collection,
                    DocumentRow.id == document_id,
                )
            )

    def _replace(self, scope: str, collection: str, documents: list[Document]) -> None:
        with self.session_scope("replace_all", collection) as session:
            session.execute(
                delete(DocumentRow).where(
                    DocumentRow.scope == scope, DocumentRow.collection == collection
                )
            )
            for position, document in enumerate(documents, start=1):
                session.add(self._make_row(scope, collection, document, position))

    @staticmethod
    def _make_row(scope: str, collection: str, document: Document, position: int) -> DocumentRow:
        return DocumentRow(
            scope=scope,
            collection=collection,
            id=document[ID_FIELD],
            position=position,
            body=to_json_value(document),
            created_at=_parse_timestamp(document[CREATED_AT_FIELD]),
            updated_at=_parse_timestamp(document[UPDATED_AT_FIELD]),
        )
