"""
Tests for cross-stage field backfill.

Covers:
- Source priority (first source with a value wins)
- PO-number matching before indent-number matching
- Fill-blanks-only and idempotence
- Line quantity resolution from purchase orders and purchase entries
- Vendor batch generation as the last resort
- Vendor issues: descriptive fields and zero line quantities
"""

from decimal import Decimal

import pytest

from procure_engines.backfill import (
    GENERATED_SOURCE,
    BackfillSource,
    backfill_dispatch_order,
    backfill_dispatch_quantities,
    backfill_fields,
    backfill_vendor_inspection,
    backfill_vendor_issue,
    lookup_upstream,
    resolve_issue_line_quantity,
    resolve_line_quantity,
)
from procure_kernel.domain.models import (
    DispatchLine,
    InspectionRecord,
    POLine,
    PurchaseEntry,
    PurchaseOrder,
    VendorDispatchOrder,
    VendorInspectionRecord,
    VendorIssue,
)
from procure_kernel.exceptions import DuplicateSequenceExhaustedError

D = Decimal


class TestLookupUpstream:
    """Priority and matching rules."""

    def test_priority_source_wins(self):
        """Both sources have a batch number; the first source's value is used."""
        sources = [
            BackfillSource(
                "inspection_records",
                (InspectionRecord(po_number="PO-1", batch_number="B-PRIMARY"),),
                {"batch_number": "batch_number"},
            ),
            BackfillSource(
                "vendor_inspections",
                (VendorInspectionRecord(po_number="PO-1", batch_number="B-SECONDARY"),),
                {"batch_number": "batch_number"},
            ),
        ]
        fill = lookup_upstream(sources, "batch_number", "PO-1")
        assert fill.value == "B-PRIMARY"
        assert fill.source == "inspection_records"

    def test_falls_through_blank_priority_source(self):
        sources = [
            BackfillSource(
                "first", (InspectionRecord(po_number="PO-1", batch_number="  "),), {"batch_number": "batch_number"}
            ),
            BackfillSource(
                "second", (InspectionRecord(po_number="PO-1", batch_number="B-2"),), {"batch_number": "batch_number"}
            ),
        ]
        assert lookup_upstream(sources, "batch_number", "PO-1").source == "second"

    def test_po_match_before_indent_match(self):
        records = (
            InspectionRecord(po_number="PO-OTHER", indent_number="S-8/25-01", batch_number="BY-INDENT"),
            InspectionRecord(po_number="po-1", batch_number="BY-PO"),
        )
        source = BackfillSource("psir", records, {"batch_number": "batch_number"})
        assert lookup_upstream([source], "batch_number", "PO-1", "S-8/25-01").value == "BY-PO"

    def test_indent_match_when_no_po_match(self):
        records = (InspectionRecord(po_number="PO-OTHER", indent_number="S-8/25-01", batch_number="B-9"),)
        source = BackfillSource("psir", records, {"batch_number": "batch_number"})
        assert lookup_upstream([source], "batch_number", "PO-1", "s-8/25-01").value == "B-9"

    def test_blank_keys_match_nothing(self):
        records = (InspectionRecord(po_number="", batch_number="B-1"),)
        source = BackfillSource("psir", records, {"batch_number": "batch_number"})
        assert lookup_upstream([source], "batch_number", "", "") is None

    def test_source_without_field_mapping_skipped(self):
        source = BackfillSource(
            "purchase_orders", (PurchaseOrder(po_number="PO-1", supplier="Acme"),), {"vendor_name": "supplier"}
        )
        assert lookup_upstream([source], "batch_number", "PO-1") is None
        assert lookup_upstream([source], "vendor_name", "PO-1").value == "Acme"

    def test_value_is_stripped(self):
        source = BackfillSource(
            "psir", (InspectionRecord(po_number="PO-1", order_ack_number=" OA-7 "),), {"oa": "order_ack_number"}
        )
        assert lookup_upstream([source], "oa", "PO-1").value == "OA-7"


class TestBackfillFields:
    def setup_method(self):
        self.sources = [
            BackfillSource(
                "psir",
                (InspectionRecord(po_number="PO-1", batch_number="B-1", order_ack_number="OA-1"),),
                {"batch_number": "batch_number", "order_ack_number": "order_ack_number"},
            )
        ]

    def test_fills_only_blank_fields(self):
        order = VendorDispatchOrder(po_number="PO-1", batch_number="", order_ack_number="OA-MANUAL")
        result = backfill_fields(order, fields=("batch_number", "order_ack_number"), sources=self.sources)

        assert result.record.batch_number == "B-1"
        assert result.record.order_ack_number == "OA-MANUAL"
        assert result.changes() == {"batch_number": "B-1"}

    def test_input_record_unchanged(self):
        order = VendorDispatchOrder(po_number="PO-1")
        backfill_fields(order, fields=("batch_number",), sources=self.sources)
        assert order.batch_number == ""

    def test_second_run_changes_nothing(self):
        order = VendorDispatchOrder(po_number="PO-1")
        first = backfill_fields(order, fields=("batch_number", "order_ack_number"), sources=self.sources)
        second = backfill_fields(first.record, fields=("batch_number", "order_ack_number"), sources=self.sources)
        assert first.changed
        assert not second.changed
        assert second.record == first.record

    def test_no_source_leaves_field_blank(self):
        order = VendorDispatchOrder(po_number="PO-404")
        result = backfill_fields(order, fields=("batch_number",), sources=self.sources)
        assert not result.changed
        assert result.record is order


class TestResolveLineQuantity:
    """Zero line quantities from purchase data."""

    def test_planned_quantity_first(self):
        po = PurchaseOrder(
            po_number="PO-1",
            lines=(POLine(item_code="X001", quantity=D("10"), planned_quantity=D("12"), purchase_quantity=D("9")),),
        )
        assert resolve_line_quantity(
            po_number="PO-1", indent_number="", item_code="X001", purchase_orders=[po]
        ) == (D("12"), "purchase_orders")

    def test_ordered_quantity_when_no_planned(self):
        po = PurchaseOrder(po_number="PO-1", lines=(POLine(item_code="X001", quantity=D("10")),))
        assert resolve_line_quantity(
            po_number="PO-1", indent_number="", item_code="X001", purchase_orders=[po]
        ) == (D("10"), "purchase_orders")

    def test_po_line_matched_by_name(self):
        po = PurchaseOrder(po_number="PO-1", lines=(POLine(item_code="OTHER", item_name="Bracket", quantity=D("6")),))
        found = resolve_line_quantity(
            po_number="PO-1", indent_number="", item_code="X001", item_name="bracket", purchase_orders=[po]
        )
        assert found == (D("6"), "purchase_orders")

    def test_purchase_entry_by_indent(self):
        entry = PurchaseEntry(indent_number="S-8/25-01", item_code="X001", quantity=D("4"))
        found = resolve_line_quantity(
            po_number="PO-1", indent_number="S-8/25-01", item_code="X001", purchase_entries=[entry]
        )
        assert found == (D("4"), "purchase_entries")

    def test_purchase_entry_purchase_qty(self):
        entry = PurchaseEntry(indent_number="S-8/25-01", po_number="PO-1", item_code="X001", purchase_qty=D("3"))
        found = resolve_line_quantity(
            po_number="PO-1", indent_number="", item_code="X001", purchase_entries=[entry]
        )
        assert found == (D("3"), "purchase_entries")

    def test_po_purchase_quantity_last(self):
        po = PurchaseOrder(
            po_number="PO-1",
            lines=(POLine(item_code="X001", quantity=D("0"), purchase_quantity=D("2")),),
        )
        assert resolve_line_quantity(
            po_number="PO-1", indent_number="", item_code="X001", purchase_orders=[po]
        ) == (D("2"), "purchase_orders")

    def test_nothing_positive(self):
        entry = PurchaseEntry(indent_number="S-1", item_code="X001", quantity=D("0"))
        assert resolve_line_quantity(
            po_number="PO-1", indent_number="S-1", item_code="X001", purchase_entries=[entry]
        ) is None


class TestDispatchQuantities:
    def test_only_zero_lines_filled(self):
        order = VendorDispatchOrder(
            po_number="PO-1",
            lines=(DispatchLine("X001", quantity=D("0")), DispatchLine("Y002", quantity=D("5"))),
        )
        po = PurchaseOrder(
            po_number="PO-1",
            lines=(POLine(item_code="X001", quantity=D("8")), POLine(item_code="Y002", quantity=D("50"))),
        )
        result = backfill_dispatch_quantities(order, purchase_orders=[po])

        assert [line.quantity for line in result.record.lines] == [D("8"), D("5")]
        assert result.changes() == {"lines[0].quantity": D("8")}


class TestBackfillDispatchOrder:
    """Full dispatch-order completion."""

    def test_psir_beats_vsir(self):
        order = VendorDispatchOrder(po_number="PO-1")
        result = backfill_dispatch_order(
            order,
            inspection_records=[InspectionRecord(po_number="PO-1", batch_number="PSIR-B", vendor_batch_number="25/V8")],
            vendor_inspections=[VendorInspectionRecord(po_number="PO-1", batch_number="VSIR-B", vendor_name="Acme")],
        )
        assert result.record.batch_number == "PSIR-B"
        assert result.record.vendor_batch_number == "25/V8"
        assert result.record.vendor_name == "Acme"

    def test_vendor_name_from_purchase_order_supplier(self):
        result = backfill_dispatch_order(
            VendorDispatchOrder(po_number="PO-1"),
            purchase_orders=[PurchaseOrder(po_number="PO-1", supplier="Acme Castings")],
            purchase_entries=[PurchaseEntry(indent_number="S-1", po_number="PO-1", item_code="X", supplier="Other")],
        )
        assert result.record.vendor_name == "Acme Castings"

    def test_order_ack_from_purchase_entry(self):
        result = backfill_dispatch_order(
            VendorDispatchOrder(po_number="", indent_number="S-8/25-04"),
            purchase_entries=[PurchaseEntry(indent_number="S-8/25-04", item_code="X", order_ack_number="Stock 02")],
        )
        assert result.record.order_ack_number == "Stock 02"

    def test_generates_vendor_batch_when_no_upstream(self):
        result = backfill_dispatch_order(
            VendorDispatchOrder(po_number="PO-1"),
            vendor_batch_year="25",
            existing_vendor_batch_numbers=["25/V1", "25/V3"],
        )
        assert result.record.vendor_batch_number == "25/V4"
        assert result.fills[-1].source == GENERATED_SOURCE

    def test_no_generation_without_year(self):
        result = backfill_dispatch_order(VendorDispatchOrder(po_number="PO-1"))
        assert result.record.vendor_batch_number == ""
        assert not result.changed

    def test_upstream_vendor_batch_preferred_over_generation(self):
        result = backfill_dispatch_order(
            VendorDispatchOrder(po_number="PO-1"),
            vendor_inspections=[VendorInspectionRecord(po_number="PO-1", vendor_batch_number="25/V2")],
            vendor_batch_year="25",
            existing_vendor_batch_numbers=["25/V2"],
        )
        assert result.record.vendor_batch_number == "25/V2"
        assert all(fill.source != GENERATED_SOURCE for fill in result.fills)

    def test_existing_vendor_batch_kept(self):
        order = VendorDispatchOrder(po_number="PO-1", vendor_batch_number="MANUAL")
        result = backfill_dispatch_order(order, vendor_batch_year="25")
        assert result.record.vendor_batch_number == "MANUAL"

    def test_generation_exhaustion_propagates(self):
        with pytest.raises(DuplicateSequenceExhaustedError):
            backfill_dispatch_order(
                VendorDispatchOrder(po_number="PO-1"),
                vendor_batch_year="25",
                # lower-case spelling is not counted as a sequence but still collides
                existing_vendor_batch_numbers=["25/V1", "25/v2"],
                max_attempts=0,
            )

    def test_rerun_is_noop(self):
        kwargs = dict(
            inspection_records=[InspectionRecord(po_number="PO-1", batch_number="B-1")],
            purchase_orders=[PurchaseOrder(po_number="PO-1", supplier="Acme", lines=(POLine("X001", quantity=D("3")),))],
            vendor_batch_year="25",
        )
        order = VendorDispatchOrder(po_number="PO-1", lines=(DispatchLine("X001"),))
        first = backfill_dispatch_order(order, **kwargs)
        second = backfill_dispatch_order(
            first.record, existing_vendor_batch_numbers=[first.record.vendor_batch_number], **kwargs
        )
        assert first.changed
        assert not second.changed


class TestBackfillVendorInspection:
    def test_dispatch_order_first(self):
        record = VendorInspectionRecord(po_number="PO-1")
        result = backfill_vendor_inspection(
            record,
            dispatch_orders=[VendorDispatchOrder(po_number="PO-1", vendor_batch_number="25/V5", vendor_name="Acme")],
            inspection_records=[InspectionRecord(po_number="PO-1", vendor_batch_number="25/V9", batch_number="B-3")],
            vendor_issues=[VendorIssue(dc_number="Vendor/01", po_number="PO-1", vendor_name="Zeta")],
        )
        assert result.record.vendor_batch_number == "25/V5"
        assert result.record.vendor_name == "Acme"
        assert result.record.batch_number == "B-3"

    def test_vendor_issue_then_purchase_order(self):
        result = backfill_vendor_inspection(
            VendorInspectionRecord(po_number="PO-1"),
            vendor_issues=[VendorIssue(dc_number="Vendor/01", po_number="PO-1", order_ack_number="OA-1")],
            purchase_orders=[PurchaseOrder(po_number="PO-1", supplier="Acme")],
        )
        assert result.record.order_ack_number == "OA-1"
        assert result.record.vendor_name == "Acme"


class TestIssueLineQuantity:
    """Zero vendor-issue lines: dispatch order first, then purchase data."""

    def _order(self, *lines):
        return VendorDispatchOrder(po_number="PO-1", lines=lines)

    def test_planned_quantity_on_dispatch_line(self):
        found = resolve_issue_line_quantity(
            po_number="PO-1",
            indent_number="",
            item_code="X001",
            dispatch_orders=[self._order(DispatchLine("X001", quantity=D("9"), planned_quantity=D("7")))],
            purchase_orders=[PurchaseOrder(po_number="PO-1", lines=(POLine("X001", quantity=D("50")),))],
        )
        assert found == (D("7"), "dispatch_orders")

    def test_dispatch_quantity_when_nothing_planned(self):
        found = resolve_issue_line_quantity(
            po_number="po-1 ",
            indent_number="",
            item_code="X001",
            dispatch_orders=[self._order(DispatchLine("X001", quantity=D("9"), planned_quantity=D("0")))],
        )
        assert found == (D("9"), "dispatch_orders")

    def test_dispatch_line_matched_by_name(self):
        found = resolve_issue_line_quantity(
            po_number="PO-1",
            indent_number="",
            item_code="NEW-CODE",
            item_name="Bracket",
            dispatch_orders=[self._order(DispatchLine("X001", item_name="bracket", planned_quantity=D("4")))],
        )
        assert found == (D("4"), "dispatch_orders")

    def test_code_match_beats_earlier_name_match(self):
        found = resolve_issue_line_quantity(
            po_number="PO-1",
            indent_number="",
            item_code="X001",
            item_name="Bracket",
            dispatch_orders=[
                self._order(
                    DispatchLine("Y002", item_name="Bracket", planned_quantity=D("1")),
                    DispatchLine("X001", item_name="Other", planned_quantity=D("2")),
                )
            ],
        )
        assert found == (D("2"), "dispatch_orders")

    def test_purchase_order_line_fields_in_order(self):
        po = PurchaseOrder(
            po_number="PO-1",
            lines=(POLine("X001", quantity=D("30"), planned_quantity=None, purchase_quantity=D("12")),),
        )
        found = resolve_issue_line_quantity(
            po_number="PO-1", indent_number="", item_code="X001", purchase_orders=[po]
        )
        assert found == (D("12"), "purchase_orders")

    def test_purchase_entry_alternates(self):
        entry = PurchaseEntry(
            indent_number="S-1", po_number="PO-1", item_code="X001", quantity=D("20"), planned_qty=D("15")
        )
        found = resolve_issue_line_quantity(
            po_number="PO-1", indent_number="", item_code="X001", purchase_entries=[entry]
        )
        assert found == (D("15"), "purchase_entries")

    def test_nothing_without_po(self):
        assert resolve_issue_line_quantity(
            po_number="",
            indent_number="S-1",
            item_code="X001",
            dispatch_orders=[self._order(DispatchLine("X001", planned_quantity=D("3")))],
        ) is None


class TestBackfillVendorIssue:
    def test_descriptive_fields_by_source(self):
        issue = VendorIssue(dc_number="Vendor/01", po_number="PO-1")
        result = backfill_vendor_issue(
            issue,
            dispatch_orders=[VendorDispatchOrder(po_number="PO-1", order_ack_number="Stock 04", vendor_name="Acme")],
            inspection_records=[InspectionRecord(po_number="PO-1", order_ack_number="Stock 09", batch_number="B-2")],
            vendor_inspections=[VendorInspectionRecord(po_number="PO-1", vendor_batch_number="25/V6")],
            purchase_orders=[PurchaseOrder(po_number="PO-1", supplier="Other", vendor_batch_number="25/V1")],
        )
        assert result.record.order_ack_number == "Stock 04"
        assert result.record.batch_number == "B-2"
        assert result.record.vendor_batch_number == "25/V6"
        assert result.record.vendor_name == "Acme"
        assert {fill.field: fill.source for fill in result.fills} == {
            "order_ack_number": "dispatch_orders",
            "batch_number": "inspection_records",
            "vendor_batch_number": "vendor_inspections",
            "vendor_name": "dispatch_orders",
        }

    def test_vendor_batch_from_purchase_order_last(self):
        result = backfill_vendor_issue(
            VendorIssue(dc_number="Vendor/01", po_number="PO-1"),
            purchase_orders=[PurchaseOrder(po_number="PO-1", vendor_batch_number="25/V1")],
        )
        assert result.record.vendor_batch_number == "25/V1"

    def test_zero_lines_filled_and_values_kept(self):
        issue = VendorIssue(
            dc_number="Vendor/01",
            po_number="PO-1",
            batch_number="MINE",
            lines=(DispatchLine("X001"), DispatchLine("Y002", quantity=D("3"))),
        )
        result = backfill_vendor_issue(
            issue,
            dispatch_orders=[
                VendorDispatchOrder(
                    po_number="PO-1",
                    batch_number="B-1",
                    lines=(DispatchLine("X001", planned_quantity=D("6")), DispatchLine("Y002", planned_quantity=D("8"))),
                )
            ],
        )
        assert result.record.batch_number == "MINE"
        assert [line.quantity for line in result.record.lines] == [D("6"), D("3")]
        assert result.changes() == {"lines[0].quantity": D("6")}

    def test_never_generates_vendor_batch(self):
        result = backfill_vendor_issue(VendorIssue(dc_number="Vendor/01", po_number="PO-1"))
        assert result.record.vendor_batch_number == ""
        assert not result.changed

    def test_rerun_is_noop(self):
        kwargs = dict(
            dispatch_orders=[VendorDispatchOrder(po_number="PO-1", vendor_name="Acme", lines=(DispatchLine("X001", quantity=D("2")),))],
        )
        first = backfill_vendor_issue(
            VendorIssue(dc_number="Vendor/01", po_number="PO-1", lines=(DispatchLine("X001"),)), **kwargs
        )
        second = backfill_vendor_issue(first.record, **kwargs)
        assert first.changed
        assert not second.changed
