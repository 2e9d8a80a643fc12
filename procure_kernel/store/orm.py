"""
Module: procure_kernel.store.orm
Responsibility: Declarative base and the single ``documents`` table backing
    SqlDocumentStore.  A row is one document of one (scope, collection).
Architecture position: Kernel > Store.  Lowest-level SQL import target;
    MUST NOT import from engines, ingestion or services.

Invariants enforced:
    - ``position`` preserves insertion order within a collection; reads
      order by it, so the store returns documents in creation order.
    - ``body`` holds the full document (including ``id`` and timestamps)
      as JSON.  Decimal values are stored as strings.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for the store's tables."""


class DocumentRow(Base):
    __tablename__ = "documents"
    __table_args__ = (
        Index("ix_documents_scope_collection_position", "scope", "collection", "position"),
    )

    scope: Mapped[str] = mapped_column(String(128), primary_key=True)
    collection: Mapped[str] = mapped_column(String(128), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    body: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<DocumentRow {self.scope}/{self.collection}/{self.id}>"
