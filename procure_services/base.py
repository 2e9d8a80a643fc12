"""
Shared wiring for services that read and write one scope of the store.

Architecture: procure_services -- imperative shell.
    Services hold the store, the scope (owning user), settings, the record
    normalizer and a clock.  Engines never see any of these.

Failure modes:
    - StoreWriteError from any write is logged with its traceback as
      ``store_write_failed`` and re-raised.  Derived in-memory state is not
      rolled back; the next snapshot corrects it.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from procure_config.schema import CollectionNames, ProcurementSettings
from procure_ingestion.normalizer import RecordNormalizer
from procure_kernel.domain.clock import Clock, SystemClock
from procure_kernel.exceptions import StoreWriteError
from procure_kernel.logging_config import get_logger
from procure_kernel.store.base import DocumentStore
from procure_services.snapshot import ProcurementSnapshot, load_snapshot

logger = get_logger("services")

T = TypeVar("T")


class StoreBackedService:
    """
    Base for services bound to one (store, scope).

    Contract:
        ``snapshot()`` is a fresh one-shot read; nothing is cached between
        calls.  All writes go through ``_write`` or the helpers built on it.
    """

    def __init__(
        self,
        store: DocumentStore,
        scope: str,
        settings: ProcurementSettings | None = None,
        normalizer: RecordNormalizer | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._scope = scope
        self._settings = settings or ProcurementSettings()
        self._normalizer = normalizer or RecordNormalizer()
        self._clock = clock or SystemClock()

    @property
    def scope(self) -> str:
        return self._scope

    @property
    def settings(self) -> ProcurementSettings:
        return self._settings

    @property
    def collections(self) -> CollectionNames:
        return self._settings.collections

    def snapshot(self) -> ProcurementSnapshot:
        return load_snapshot(self._store, self._scope, self._normalizer, self.collections)

    # -- writes ------------------------------------------------------------

    def _write(self, operation: str, collection: str, action: Callable[[], T]) -> T:
        try:
            return action()
        except StoreWriteError:
            logger.error(
                "store_write_failed",
                exc_info=True,
                extra={"scope": self._scope, "collection": collection, "operation": operation},
            )
            raise

    def _add(self, collection: str, document: Mapping[str, Any]) -> str:
        return self._write("add", collection, lambda: self._store.add(self._scope, collection, document))

    def _update(self, collection: str, document_id: str, partial: Mapping[str, Any]) -> None:
        self._write(
            "update",
            collection,
            lambda: self._store.update(self._scope, collection, document_id, partial),
        )

    def _delete(self, collection: str, document_id: str) -> None:
        self._write("delete", collection, lambda: self._store.delete(self._scope, collection, document_id))

    def _replace_all(self, collection: str, documents: list[dict[str, Any]]) -> None:
        self._write(
            "replace_all",
            collection,
            lambda: self._store.replace_all(self._scope, collection, documents),
        )

    # -- line patches ------------------------------------------------------

    def _patched_lines(
        self,
        line_entity: str,
        raw_lines: Any,
        patches: Mapping[int, Mapping[str, Any]],
    ) -> list[Any]:
        """
        Copy of a raw line list with canonical-field patches applied.

        ``patches`` maps a line index to canonical field -> new value; each
        value is written under the field's primary key.  Indexes count
        mapping children only, as the normalizer does.  Keys the patch does
        not name are kept as stored.
        """
        patched: list[Any] = []
        index = 0
        for child in raw_lines if isinstance(raw_lines, list) else ():
            if not isinstance(child, Mapping):
                patched.append(child)
                continue
            line = dict(child)
            for name, value in patches.get(index, {}).items():
                line[self._normalizer.field_key(line_entity, name)] = value
            patched.append(line)
            index += 1
        return patched
