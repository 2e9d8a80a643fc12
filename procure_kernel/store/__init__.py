"""Document collection store: abstract contract plus in-memory and SQL backends."""

from procure_kernel.store.base import (
    DELETE_FIELD,
    Document,
    DocumentStore,
    OnChange,
    Subscription,
)
from procure_kernel.store.memory import InMemoryDocumentStore
from procure_kernel.store.sql import (
    SqlDocumentStore,
    create_document_tables,
    create_store_engine,
)

__all__ = [
    "DELETE_FIELD",
    "Document",
    "DocumentStore",
    "InMemoryDocumentStore",
    "OnChange",
    "SqlDocumentStore",
    "Subscription",
    "create_document_tables",
    "create_store_engine",
]
