"""In-process document store.  Used by tests and single-session tooling."""

from __future__ import annotations

import copy

from procure_kernel.domain.clock import Clock
from procure_kernel.store.base import ID_FIELD, Document, DocumentStore


class InMemoryDocumentStore(DocumentStore):
    """
    Dict-backed DocumentStore.

    Guarantees:
        - Documents are deep-copied on the way in and out, so callers never
          share mutable state with the store.
        - Collections keep insertion order.
    """

    def __init__(self, clock: Clock | None = None):
        super().__init__(clock)
        self._collections: dict[tuple[str, str], dict[str, Document]] = {}

    def _bucket(self, scope: str, collection: str) -> dict[str, Document]:
        return self._collections.setdefault((scope, collection), {})

    def _load(self, scope: str, collection: str) -> list[Document]:
        return [copy.deepcopy(doc) for doc in self._bucket(scope, collection).values()]

    def _get(self, scope: str, collection: str, document_id: str) -> Document | None:
        doc = self._bucket(scope, collection).get(document_id)
        return copy.deepcopy(doc) if doc is not None else None

    def _insert(self, scope: str, collection: str, document: Document) -> None:
        self._bucket(scope, collection)[document[ID_FIELD]] = copy.deepcopy(document)

    def _overwrite(self, scope: str, collection: str, document: Document) -> None:
        self._bucket(scope, collection)[document[ID_FIELD]] = copy.deepcopy(document)

    def _remove(self, scope: str, collection: str, document_id: str) -> None:
        del self._bucket(scope, collection)[document_id]

    def _replace(self, scope: str, collection: str, documents: list[Document]) -> None:
        self._collections[(scope, collection)] = {
            doc[ID_FIELD]: copy.deepcopy(doc) for doc in documents
        }
