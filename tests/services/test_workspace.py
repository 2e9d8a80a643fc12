"""
Tests for ProcurementWorkspace.

Covers:
- Readiness only after every collection delivered
- Listener notification and live-stock lookups
- Use after close
- Scope switching discards callbacks from the old subscriptions
- A listener that writes back through PurchaseSyncService converges
"""

from decimal import Decimal

import pytest

from procure_kernel.domain.models import IndentStatus
from procure_kernel.exceptions import SubscriptionClosedError
from procure_kernel.store import InMemoryDocumentStore
from procure_services import ProcurementWorkspace, PurchaseSyncService

D = Decimal
SCOPE = "user-1"


class RecordingStore(InMemoryDocumentStore):
    """In-memory store that remembers every callback it was handed."""

    def __init__(self, clock=None):
        super().__init__(clock)
        self.callbacks = []

    def subscribe(self, scope, collection, on_change):
        self.callbacks.append((scope, collection, on_change))
        return super().subscribe(scope, collection, on_change)


def _seed(store, scope=SCOPE):
    store.add(scope, "stock-records", {"itemCode": "X001", "closingStock": 100})
    store.add(scope, "indentData", {"indentNo": "S-8/25-01", "sequenceNumber": 1, "items": [{"itemCode": "X001", "qty": 40}]})


@pytest.fixture
def store(deterministic_clock):
    return RecordingStore(deterministic_clock)


class TestLifecycle:
    def test_ready_after_open(self, store, normalizer):
        _seed(store)
        workspace = ProcurementWorkspace(store, SCOPE, normalizer=normalizer)
        assert not workspace.ready

        workspace.open()

        assert workspace.ready
        assert [i.indent_number for i in workspace.snapshot.indents] == ["S-8/25-01"]
        workspace.close()

    def test_listener_called_on_write(self, store, normalizer):
        workspace = ProcurementWorkspace(store, SCOPE, normalizer=normalizer)
        seen = []
        workspace.add_listener(lambda snapshot: seen.append(len(snapshot.stock_records)))

        with workspace:
            store.add(SCOPE, "stock-records", {"itemCode": "X001", "closingStock": 5})

        # once when every collection first delivered, once for the write
        assert seen == [0, 1]

    def test_remove_listener(self, store, normalizer):
        seen = []
        with ProcurementWorkspace(store, SCOPE, normalizer=normalizer) as workspace:
            remove = workspace.add_listener(seen.append)
            remove()
            store.add(SCOPE, "stock-records", {"itemCode": "X001"})
        assert seen == []

    def test_live_stock_lookup_and_fallback(self, store, normalizer):
        _seed(store)
        with ProcurementWorkspace(store, SCOPE, normalizer=normalizer) as workspace:
            entry = workspace.live_stock("S-8/25-01", "X001")
            assert entry.display_stock == D("60")
            assert entry.status == IndentStatus.CLOSED
            assert workspace.live_stock("S-8/25-99", "X001", D("4")).display_stock == D("4")

    def test_lookup_before_open_uses_last_known(self, store, normalizer):
        _seed(store)
        workspace = ProcurementWorkspace(store, SCOPE, normalizer=normalizer)
        assert workspace.live_stock("S-8/25-01", "X001", D("7")).display_stock == D("7")

    def test_use_after_close(self, store, normalizer):
        workspace = ProcurementWorkspace(store, SCOPE, normalizer=normalizer)
        workspace.open()
        workspace.close()
        workspace.close()

        with pytest.raises(SubscriptionClosedError):
            workspace.add_listener(lambda snapshot: None)
        with pytest.raises(SubscriptionClosedError):
            workspace.live_stock("S-8/25-01", "X001")


class TestSwitchScope:
    def test_switch_reloads_new_scope(self, store, normalizer):
        _seed(store, "user-2")
        with ProcurementWorkspace(store, SCOPE, normalizer=normalizer) as workspace:
            assert workspace.snapshot.indents == ()
            generation = workspace.generation

            workspace.switch_scope("user-2")

            assert workspace.generation == generation + 1
            assert workspace.scope == "user-2"
            assert len(workspace.snapshot.indents) == 1

    def test_late_callback_from_old_scope_discarded(self, store, normalizer, captured_logs):
        _seed(store, "user-2")
        with ProcurementWorkspace(store, SCOPE, normalizer=normalizer) as workspace:
            old_callbacks = [cb for scope, _, cb in store.callbacks if scope == SCOPE]
            workspace.switch_scope("user-2")
            before = workspace.snapshot

            old_callbacks[0]([{"id": "x", "itemCode": "Z999", "closingStock": 1}])

            assert workspace.snapshot is before
            discarded = [r for r in captured_logs() if r["message"] == "stale_callback_discarded"]
            assert discarded[0]["callback_generation"] == 0
            assert discarded[0]["generation"] == 1


class TestWriteBackListener:
    def test_sync_from_listener_converges(self, store, normalizer):
        _seed(store)
        store.add(SCOPE, "purchaseData", {"indentNo": "S-8/25-01", "itemCode": "X001"})
        calls = []

        with ProcurementWorkspace(store, SCOPE, normalizer=normalizer) as workspace:
            sync = PurchaseSyncService(store, SCOPE, normalizer=normalizer, cache=workspace.cache)

            def on_snapshot(snapshot):
                calls.append(sync.sync())

            workspace.add_listener(on_snapshot)
            store.add(SCOPE, "stock-records", {"itemCode": "Y002", "closingStock": 1})

        # the nested sync triggered by the write sees nothing left to do
        assert calls == [0, 1]
        [entry] = store.list(SCOPE, "purchaseData")
        assert entry["indentStatus"] == "Closed"
        assert entry["currentStock"] == D("60")
