"""
Module: procure_kernel.store.base
Responsibility: Abstract document collection store and the subscription
    handle.  Every persisted procurement record lives in a collection of
    schemaless documents addressed by (scope, collection), where scope is
    the owning user.
Architecture position: Kernel > Store.  May import from domain/ and
    logging_config.  MUST NOT import from engines, ingestion or services.

Invariants enforced:
    - A subscription receives the full current document list immediately on
      subscribe and again after every successful write to its collection.
    - A torn-down subscription never receives another callback.
    - Every document carries ``id``, ``createdAt`` and ``updatedAt``; the
      timestamps come from the injected Clock.
    - Writes are last-writer-wins.  No transactions span calls.

Failure modes:
    - DocumentNotFoundError on update/delete of an unknown id.
    - StoreWriteError when the backend rejects a write.
    - Exceptions raised by a subscriber callback propagate to the writer
      after the write itself has completed.

Usage:
    store = InMemoryDocumentStore()
    sub = store.subscribe("user-1", "indentData", on_change)
    doc_id = store.add("user-1", "indentData", {"indentNo": "S-8/25-01"})
    sub.unsubscribe()
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from typing import Any
from uuid import uuid4

from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.exceptions import DocumentNotFoundError
from procure_kernel.logging_config import get_logger

logger = get_logger("store")

Document = dict[str, Any]
OnChange = Callable[[list[Document]], None]

ID_FIELD = "id"
CREATED_AT_FIELD = "createdAt"
UPDATED_AT_FIELD = "updatedAt"


class _DeleteField:
    """Sentinel: passing it as a value in ``update`` removes the key."""

    _instance: _DeleteField | None = None

    def __new__(cls) -> _DeleteField:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()


def apply_partial(document: Mapping[str, Any], partial: Mapping[str, Any]) -> Document:
    """Shallow-merge ``partial`` into a copy of ``document``.

    Keys whose value is DELETE_FIELD are removed.  ``id`` is never changed.
    """
    merged = dict(document)
    for key, value in partial.items():
        if key == ID_FIELD:
            continue
        if value is DELETE_FIELD:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


class Subscription:
    """
    Handle for one live collection subscription.

    Contract:
        Calling the handle, or ``unsubscribe()``, tears it down.  Teardown is
        idempotent.

    Guarantees:
        ``deliver`` is a no-op once the handle is inactive.
    """

    def __init__(
        self,
        scope: str,
        collection: str,
        on_change: OnChange,
        on_close: Callable[[Subscription], None],
    ):
        self.scope = scope
        self.collection = collection
        self._on_change = on_change
        self._on_close = on_close
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def deliver(self, documents: list[Document]) -> None:
        if self._active:
            self._on_change(documents)

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._on_close(self)
        logger.debug(
            "subscription_closed",
            extra={"scope": self.scope, "collection": self.collection},
        )

    __call__ = unsubscribe


class DocumentStore(ABC):
    """
    Document collection store.

    Contract:
        Subclasses implement the six ``_``-prefixed storage primitives.  The
        public methods stamp metadata, log, and notify subscribers.

    Non-goals:
        No optimistic concurrency, no transactions across calls, no query
        language beyond "the whole collection".
    """

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()
        self._subscriptions: dict[tuple[str, str], list[Subscription]] = {}

    # -- storage primitives ------------------------------------------------

    @abstractmethod
    def _load(self, scope: str, collection: str) -> list[Document]:
        """All documents of a collection in insertion order (copies)."""

    @abstractmethod
    def _get(self, scope: str, collection: str, document_id: str) -> Document | None:
        ...

    @abstractmethod
    def _insert(self, scope: str, collection: str, document: Document) -> None:
        ...

    @abstractmethod
    def _overwrite(self, scope: str, collection: str, document: Document) -> None:
        ...

    @abstractmethod
    def _remove(self, scope: str, collection: str, document_id: str) -> None:
        ...

    @abstractmethod
    def _replace(self, scope: str, collection: str, documents: list[Document]) -> None:
        ...

    # -- public API --------------------------------------------------------

    def list(self, scope: str, collection: str) -> list[Document]:
        """One-shot read of the current documents of a collection."""
        return self._load(scope, collection)

    def subscribe(self, scope: str, collection: str, on_change: OnChange) -> Subscription:
        """Register ``on_change`` and deliver the current documents at once."""
        key = (scope, collection)
        subscription = Subscription(scope, collection, on_change, self._detach)
        self._subscriptions.setdefault(key, []).append(subscription)
        logger.debug(
            "subscription_opened",
            extra={"scope": scope, "collection": collection},
        )
        subscription.deliver(self._load(scope, collection))
        return subscription

    def add(self, scope: str, collection: str, document: Mapping[str, Any]) -> str:
        """Insert a new document and return its id."""
        now = self._timestamp()
        doc = {k: v for k, v in document.items() if v is not DELETE_FIELD}
        doc[ID_FIELD] = str(uuid4())
        doc[CREATED_AT_FIELD] = now
        doc[UPDATED_AT_FIELD] = now
        self._insert(scope, collection, doc)
        logger.info(
            "document_added",
            extra={"scope": scope, "collection": collection, "document_id": doc[ID_FIELD]},
        )
        self._notify(scope, collection)
        return doc[ID_FIELD]

    def update(
        self,
        scope: str,
        collection: str,
        document_id: str,
        partial: Mapping[str, Any],
    ) -> None:
        """Merge ``partial`` into an existing document."""
        current = self._get(scope, collection, document_id)
        if current is None:
            raise DocumentNotFoundError("update", collection, document_id)
        merged = apply_partial(current, partial)
        merged[UPDATED_AT_FIELD] = self._timestamp()
        self._overwrite(scope, collection, merged)
        logger.info(
            "document_updated",
            extra={
                "scope": scope,
                "collection": collection,
                "document_id": document_id,
                "fields": sorted(partial.keys()),
            },
        )
        self._notify(scope, collection)

    def delete(self, scope: str, collection: str, document_id: str) -> None:
        if self._get(scope, collection, document_id) is None:
            raise DocumentNotFoundError("delete", collection, document_id)
        self._remove(scope, collection, document_id)
        logger.info(
            "document_deleted",
            extra={"scope": scope, "collection": collection, "document_id": document_id},
        )
        self._notify(scope, collection)

    def replace_all(
        self,
        scope: str,
        collection: str,
        documents: Sequence[Mapping[str, Any]],
    ) -> None:
        """Overwrite the whole collection with ``documents``.

        Documents that already carry an ``id`` keep it (and their
        ``createdAt``); the others are assigned fresh ids.
        """
        now = self._timestamp()
        prepared: list[Document] = []
        for document in documents:
            doc = {k: v for k, v in document.items() if v is not DELETE_FIELD}
            doc[ID_FIELD] = str(doc.get(ID_FIELD) or uuid4())
            doc.setdefault(CREATED_AT_FIELD, now)
            doc[UPDATED_AT_FIELD] = now
            prepared.append(doc)
        self._replace(scope, collection, prepared)
        logger.info(
            "collection_replaced",
            extra={"scope": scope, "collection": collection, "count": len(prepared)},
        )
        self._notify(scope, collection)

    # -- internals ---------------------------------------------------------

    def _timestamp(self) -> str:
        return self._clock.now().isoformat()

    def _detach(self, subscription: Subscription) -> None:
        key = (subscription.scope, subscription.collection)
        subscribers = self._subscriptions.get(key, [])
        if subscription in subscribers:
            subscribers.remove(subscription)
        if not subscribers:
            self._subscriptions.pop(key, None)

    def _notify(self, scope: str, collection: str) -> None:
        subscribers = list(self._subscriptions.get((scope, collection), ()))
        if not subscribers:
            return
        documents = self._load(scope, collection)
        for subscription in subscribers:
            # Each subscriber gets its own copy to mutate freely.
            subscription.deliver([dict(doc) for doc in documents])
