"""
Module: procure_services.workspace
Responsibility:
    Live, read-only view of one scope.  Subscribes to every collection,
    keeps the latest raw documents, normalizes them into a snapshot, keeps
    the live-stock cache current and notifies listeners.

Architecture position:
    Services -- the only stateful, subscription-holding object.  Data flows
    one way: store -> raw documents -> snapshot -> pure derivations ->
    cache -> listeners.

Invariants enforced:
    - Generation token: every subscription callback carries the generation
      it was opened under.  ``switch_scope`` and ``close`` bump the
      generation, so a callback from a superseded subscription is dropped
      even if the store delivers it late.
    - No snapshot is built and no listener is called until every collection
      has delivered at least once.  Until then, live-stock lookups fall back
      to the caller's last-known value.
    - The cache is rebuilt only when its inputs changed.

Failure modes:
    - SubscriptionClosedError when the workspace is used after ``close()``.
    - Exceptions raised by a listener propagate to the store write that
      triggered them.

Usage:
    with ProcurementWorkspace(store, "user-1") as workspace:
        workspace.add_listener(lambda snapshot: ...)
        workspace.live_stock("S-8/25-01", "X001", last_known_stock=Decimal("4"))
"""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal

from procure_config.schema import ProcurementSettings
from procure_engines.live_stock import DerivedViewCache, LiveStockEntry
from procure_ingestion.normalizer import RecordNormalizer
from procure_kernel.domain.models import ZERO
from procure_kernel.exceptions import SubscriptionClosedError
from procure_kernel.logging_config import LogContext, get_logger
from procure_kernel.store.base import Document, DocumentStore, Subscription
from procure_services.snapshot import ProcurementSnapshot, collection_names

logger = get_logger("services.workspace")

Listener = Callable[[ProcurementSnapshot], None]


class ProcurementWorkspace:
    """
    Subscription-driven view of one scope.

    Contract:
        ``open()`` (or entering the context manager) subscribes; ``close()``
        tears everything down and is idempotent.  ``switch_scope`` moves the
        workspace to another scope without reopening it.

    Non-goals:
        - Does NOT write to the store.  Services that write (purchase sync,
          backfill) are run by listeners or by the caller.
    """

    def __init__(
        self,
        store: DocumentStore,
        scope: str,
        settings: ProcurementSettings | None = None,
        normalizer: RecordNormalizer | None = None,
        cache: DerivedViewCache | None = None,
    ) -> None:
        self._store = store
        self._scope = scope
        self._settings = settings or ProcurementSettings()
        self._normalizer = normalizer or RecordNormalizer()
        self._cache = cache or DerivedViewCache()
        self._collections = collection_names(self._settings.collections)
        self._generation = 0
        self._subscriptions: list[Subscription] = []
        self._raw: dict[str, list[Document]] = {}
        self._snapshot: ProcurementSnapshot | None = None
        self._listeners: list[Listener] = []
        self._opened = False
        self._closed = False

    # -- lifecycle ---------------------------------------------------------

    def __enter__(self) -> ProcurementWorkspace:
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def open(self) -> None:
        self._ensure_open()
        if self._opened:
            return
        self._opened = True
        self._subscribe_all()

    def close(self) -> None:
        if self._closed:
            return
        self._generation += 1
        self._teardown()
        self._closed = True
        logger.info("workspace_closed", extra={"scope": self._scope})

    def switch_scope(self, scope: str) -> None:
        """
        Re-point the workspace at another scope.

        Callbacks from the old scope's subscriptions are discarded, the
        snapshot is cleared, and the new scope is subscribed.
        """
        self._ensure_open()
        previous = self._scope
        self._generation += 1
        self._teardown()
        self._scope = scope
        self._raw.clear()
        self._snapshot = None
        logger.info(
            "workspace_scope_switched",
            extra={"previous_scope": previous, "scope": scope, "generation": self._generation},
        )
        if self._opened:
            self._subscribe_all()

    # -- state -------------------------------------------------------------

    @property
    def scope(self) -> str:
        return self._scope

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def ready(self) -> bool:
        return self._snapshot is not None

    @property
    def cache(self) -> DerivedViewCache:
        return self._cache

    @property
    def snapshot(self) -> ProcurementSnapshot:
        """Latest snapshot; an empty one until every collection delivered."""
        self._ensure_open()
        return self._snapshot or ProcurementSnapshot()

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that removes it."""
        self._ensure_open()
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def live_stock(
        self,
        order_id: str,
        item_code: str,
        last_known_stock: Decimal = ZERO,
    ) -> LiveStockEntry:
        self._ensure_open()
        return self._cache.lookup(order_id, item_code, last_known_stock)

    # -- internals ---------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise SubscriptionClosedError(self._scope)

    def _teardown(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()

    def _subscribe_all(self) -> None:
        generation = self._generation
        for collection in self._collections:
            self._subscriptions.append(
                self._store.subscribe(self._scope, collection, self._callback(generation, collection))
            )

    def _callback(self, generation: int, collection: str) -> Callable[[list[Document]], None]:
        def on_change(documents: list[Document]) -> None:
            self._on_change(generation, collection, documents)

        return on_change

    def _on_change(self, generation: int, collection: str, documents: list[Document]) -> None:
        if generation != self._generation or self._closed:
            logger.debug(
                "stale_callback_discarded",
                extra={
                    "collection": collection,
                    "callback_generation": generation,
                    "generation": self._generation,
                },
            )
            return
        self._raw[collection] = documents
        if any(name not in self._raw for name in self._collections):
            return
        self._recompute(collection)

    def _recompute(self, trigger: str) -> None:
        with LogContext.bind(scope=self._scope, collection=trigger):
            snapshot = ProcurementSnapshot.from_documents(
                self._raw, self._normalizer, self._settings.collections
            )
            self._snapshot = snapshot
            rebuilt = self._cache.refresh(snapshot.live_stock_inputs())
            logger.debug(
                "workspace_snapshot_updated",
                extra={"trigger": trigger, "cache_rebuilt": rebuilt, "generation": self._generation},
            )
            for listener in list(self._listeners):
                listener(snapshot)
