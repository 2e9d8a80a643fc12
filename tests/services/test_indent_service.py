"""
Tests for IndentService.

Covers:
- Line and header validation messages
- Stock check before save
- Numbering (indent number, sequence number, per-requester OA number)
- Publication of open and closed indent items
- Unchanged republish writes nothing; following a workspace republishes on stock changes
- Store write failures are logged and re-raised
"""

from decimal import Decimal

import pytest

from procure_config import ProcurementSettings
from procure_kernel.domain.models import IndentLine
from procure_kernel.exceptions import (
    DocumentNotFoundError,
    InsufficientStockError,
    ValidationError,
)
from procure_services import IndentService, ProcurementWorkspace

D = Decimal
SCOPE = "user-1"


def _line(code="X001", qty="10", name="Bracket"):
    return IndentLine(code, name, D(qty))


@pytest.fixture
def service(memory_store, normalizer, deterministic_clock):
    memory_store.add(SCOPE, "stock-records", {"itemCode": "X001", "itemName": "Bracket", "closingStock": 100})
    memory_store.add(SCOPE, "stock-records", {"itemCode": "Y002", "itemName": "Bolt", "stockQty": 5})
    return IndentService(memory_store, SCOPE, normalizer=normalizer, clock=deterministic_clock)


class TestValidation:
    @pytest.mark.parametrize(
        "code, name, qty",
        [("", "Bracket", "1"), ("X001", " ", "1"), ("X001", "Bracket", "0"), ("X001", "Bracket", "abc"),
         ("X001", "Bracket", None), ("X001", "Bracket", True), ("X001", "Bracket", "-2")],
    )
    def test_invalid_line(self, code, name, qty):
        with pytest.raises(ValidationError, match="Please fill in Item Name, Item Code, and a valid Quantity"):
            IndentService.validate_line(code, name, qty)

    def test_valid_line_is_trimmed(self):
        line = IndentService.validate_line(" X001 ", " Bracket ", "2.5")
        assert line == IndentLine("X001", "Bracket", D("2.5"))

    def test_header_requires_fields(self):
        with pytest.raises(ValidationError, match="Please fill in Date, Indent By, and OA NO fields"):
            IndentService.validate_header("2025-04-01", "", "Stock 01", [_line()])

    def test_header_requires_lines(self):
        with pytest.raises(ValidationError, match="Please add at least one item") as exc_info:
            IndentService.validate_header("2025-04-01", "Stores", "Stock 01", [])
        assert exc_info.value.field == "items"


class TestCreateIndent:
    def test_first_indent(self, service, memory_store):
        indent = service.create_indent(indent_date="2025-04-01", requested_by="Stores", lines=[_line(qty="50")])

        assert indent.indent_number == "S-8/25-01"
        assert indent.order_ack_number == "Stock 01"
        assert indent.sequence_number == 1
        assert indent.document_id

        [doc] = memory_store.list(SCOPE, "indentData")
        assert doc["indentNo"] == "S-8/25-01"
        assert doc["sequenceNumber"] == 1
        assert doc["items"][0]["itemCode"] == "X001"

    def test_publishes_closed_and_open_items(self, service, memory_store):
        service.create_indent(indent_date="2025-04-01", requested_by="Stores", lines=[_line(qty="50")])
        service.create_indent(indent_date="2025-04-02", requested_by="Stores", lines=[_line(qty="60")])

        [closed] = memory_store.list(SCOPE, "closedIndentItems")
        [open_item] = memory_store.list(SCOPE, "openIndentItems")
        assert closed["indentNo"] == "S-8/25-01"
        assert closed["status"] == "Closed"
        assert closed["qty1"] == D("50")
        assert open_item["indentNo"] == "S-8/25-02"
        assert open_item["status"] == "Open"
        assert open_item["availableForThisIndent"] == D("-10")
        assert open_item["qty1"] == D("50")

    def test_sequence_and_oa_numbers_increase(self, service):
        service.create_indent(indent_date="2025-04-01", requested_by="Stores", lines=[_line(qty="1")])
        second = service.create_indent(indent_date="2025-04-01", requested_by="Stores", lines=[_line(qty="1")])
        other = service.create_indent(indent_date="2025-04-01", requested_by="Assembly", lines=[_line(qty="1")])

        assert second.indent_number == "S-8/25-02"
        assert second.sequence_number == 2
        assert second.order_ack_number == "Stock 02"
        assert other.order_ack_number == "Stock 01"
        assert other.sequence_number == 3

    def test_explicit_order_ack_kept(self, service):
        indent = service.create_indent(
            indent_date="2025-04-01", requested_by="Stores", lines=[_line()], order_ack_number=" OA-77 "
        )
        assert indent.order_ack_number == "OA-77"

    def test_insufficient_stock_rejects_whole_indent(self, service, memory_store, captured_logs):
        with pytest.raises(InsufficientStockError) as exc_info:
            service.create_indent(
                indent_date="2025-04-01",
                requested_by="Stores",
                lines=[_line(qty="5"), _line("Y002", "9", "Bolt")],
            )
        [shortfall] = exc_info.value.shortfalls
        assert shortfall.item_code == "Y002"
        assert shortfall.available == D("5")
        assert "Bolt (Y002): requested 9 but only 5 available" in str(exc_info.value)
        assert memory_store.list(SCOPE, "indentData") == []
        assert any(r["message"] == "indent_rejected_insufficient_stock" for r in captured_logs())

    def test_stock_check_can_be_disabled(self, memory_store, normalizer, deterministic_clock):
        service = IndentService(
            memory_store,
            SCOPE,
            settings=ProcurementSettings(enforce_stock_on_indent=False),
            normalizer=normalizer,
            clock=deterministic_clock,
        )
        indent = service.create_indent(indent_date="2025-04-01", requested_by="Stores", lines=[_line(qty="999")])
        assert indent.indent_number == "S-8/25-01"

    def test_missing_header_rejected_before_write(self, service, memory_store):
        with pytest.raises(ValidationError):
            service.create_indent(indent_date="", requested_by="Stores", lines=[_line()])
        assert memory_store.list(SCOPE, "indentData") == []

    def test_custom_prefix(self, memory_store, normalizer):
        service = IndentService(
            memory_store, SCOPE, settings=ProcurementSettings(indent_number_prefix="S-9/26-"), normalizer=normalizer
        )
        assert service.next_indent_number() == "S-9/26-01"


class TestDeleteIndent:
    def test_delete_republishes(self, service, memory_store):
        first = service.create_indent(indent_date="2025-04-01", requested_by="Stores", lines=[_line(qty="50")])
        service.create_indent(indent_date="2025-04-02", requested_by="Stores", lines=[_line(qty="60")])

        service.delete_indent(first.document_id)

        assert memory_store.list(SCOPE, "openIndentItems") == []
        [closed] = memory_store.list(SCOPE, "closedIndentItems")
        assert closed["indentNo"] == "S-8/25-02"

    def test_delete_unknown_logged_and_raised(self, service, captured_logs):
        with pytest.raises(DocumentNotFoundError):
            service.delete_indent("missing")
        failed = [r for r in captured_logs() if r["message"] == "store_write_failed"]
        assert failed[0]["operation"] == "delete"
        assert failed[0]["exc_code"] == "DOCUMENT_NOT_FOUND"


class TestPreview:
    def test_preview_line_after_saved_indents(self, service):
        service.create_indent(indent_date="2025-04-01", requested_by="Stores", lines=[_line(qty="70")])
        result = service.preview_line("X001", D("40"))
        assert result.previously_allocated == D("70")
        assert result.allocated == D("30")
        assert not result.is_closed

    def test_remaining_and_allocated(self, service):
        service.create_indent(indent_date="2025-04-01", requested_by="Stores", lines=[_line(qty="70")])
        assert service.allocated_stock("X001") == D("70")
        assert service.remaining_stock("X001") == D("30")
        assert service.remaining_stock("X001", [_line(qty="20")]) == D("10")


class TestPublishIndentItems:
    def test_unchanged_republish_writes_nothing(self, any_store, normalizer, deterministic_clock, captured_logs):
        any_store.add(SCOPE, "stock-records", {"itemCode": "X001", "closingStock": 100})
        service = IndentService(any_store, SCOPE, normalizer=normalizer, clock=deterministic_clock)
        service.create_indent(indent_date="2025-04-01", requested_by="Stores", lines=[_line(qty="50")])
        service.create_indent(indent_date="2025-04-02", requested_by="Stores", lines=[_line(qty="60")])
        notified = []
        for collection in ("openIndentItems", "closedIndentItems"):
            any_store.subscribe(SCOPE, collection, lambda documents, c=collection: notified.append(c))
        notified.clear()

        open_items, closed_items = service.publish_indent_items()

        assert notified == []
        assert [i.indent_number for i in open_items] == ["S-8/25-02"]
        assert [i.indent_number for i in closed_items] == ["S-8/25-01"]
        unchanged = [r for r in captured_logs() if r["message"] == "indent_items_unchanged"]
        assert unchanged[-1]["written"] == []

    def test_only_changed_collection_rewritten(self, service, memory_store):
        service.create_indent(indent_date="2025-04-01", requested_by="Stores", lines=[_line(qty="50")])
        notified = []
        for collection in ("openIndentItems", "closedIndentItems"):
            memory_store.subscribe(SCOPE, collection, lambda documents, c=collection: notified.append(c))
        notified.clear()

        service.create_indent(indent_date="2025-04-02", requested_by="Stores", lines=[_line(qty="60")])

        # the first indent stays closed; only the open collection gains a line
        assert notified == ["openIndentItems"]

    def test_stock_change_moves_item_between_collections(self, service, memory_store):
        service.create_indent(indent_date="2025-04-01", requested_by="Stores", lines=[_line(qty="50")])
        [stock] = [d for d in memory_store.list(SCOPE, "stock-records") if d["itemCode"] == "X001"]

        memory_store.update(SCOPE, "stock-records", stock["id"], {"closingStock": 30})
        service.publish_indent_items()

        assert memory_store.list(SCOPE, "closedIndentItems") == []
        [open_item] = memory_store.list(SCOPE, "openIndentItems")
        assert open_item["indentNo"] == "S-8/25-01"
        assert open_item["stock"] == D("30")


class TestFollowWorkspace:
    def test_stock_update_republishes_and_settles(self, service, memory_store, normalizer):
        service.create_indent(indent_date="2025-04-01", requested_by="Stores", lines=[_line(qty="50")])
        [stock] = [d for d in memory_store.list(SCOPE, "stock-records") if d["itemCode"] == "X001"]
        writes = []
        memory_store.subscribe(SCOPE, "openIndentItems", lambda documents: writes.append(len(documents)))
        writes.clear()

        with ProcurementWorkspace(memory_store, SCOPE, normalizer=normalizer) as workspace:
            service.follow(workspace)
            memory_store.update(SCOPE, "stock-records", stock["id"], {"closingStock": 30})

        assert writes == [1]
        assert memory_store.list(SCOPE, "closedIndentItems") == []
        [open_item] = memory_store.list(SCOPE, "openIndentItems")
        assert open_item["stock"] == D("30")

    def test_unrelated_write_does_not_republish(self, service, memory_store, normalizer, captured_logs):
        service.create_indent(indent_date="2025-04-01", requested_by="Stores", lines=[_line(qty="50")])

        with ProcurementWorkspace(memory_store, SCOPE, normalizer=normalizer) as workspace:
            stop = service.follow(workspace)
            memory_store.add(SCOPE, "itemMaster", {"itemCode": "Z900", "itemName": "Washer"})
            stop()
            memory_store.add(SCOPE, "stock-records", {"itemCode": "Z900", "closingStock": 5})

        triggered = [r for r in captured_logs() if r["message"] == "indent_items_republish_triggered"]
        assert triggered == []
