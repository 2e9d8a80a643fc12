"""
Procurement Domain Models (``procure_kernel.domain.models``).

Responsibility
--------------
Frozen value objects for the canonical schema of every pipeline stage:
item master, stock ledger, indents, purchase orders and purchase lines,
vendor dispatch orders, vendor issues, and the two inspection stages
(VSIR at the vendor site, PSIR in house).

Architecture
------------
Layer: **Kernel > Domain** -- pure data.  Raw store documents are mapped to
these types exactly once, by ``procure_ingestion.normalizer``; nothing
downstream of ingestion checks alternate key spellings.

Invariants
----------
- Every quantity is a ``Decimal``.  Absent optional quantities are ``None``,
  never zero, so "not entered" stays distinguishable from "entered as 0".
- ``StockRecord.computed_stock`` uses the explicit closing stock when one
  was recorded and derives it otherwise.
- ``Indent.sequence_number`` is the load-bearing allocation order.

Failure Modes
-------------
None -- construction never validates user input.  Validation belongs to the
service layer (``procure_services``), which raises ``ValidationError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

ZERO = Decimal("0")


class IndentStatus(str, Enum):
    """Open/closed state of an indent line."""

    OPEN = "Open"
    CLOSED = "Closed"


@dataclass(frozen=True)
class Item:
    """Item master entry. Identity is ``code``."""

    code: str
    name: str
    document_id: str = ""


@dataclass(frozen=True)
class StockRecord:
    """
    One stock-ledger row for an item.

    ``alternate_keys`` holds other code- or name-like values found on the
    raw record (SKU, model, description); ``other_values`` holds every
    remaining text value.  The resolver's fuzzy stages search them.
    ``created_at`` is the store's ``createdAt`` stamp; it breaks ties
    between duplicate records for one item.
    """

    item_code: str
    item_name: str = ""
    stock_quantity: Decimal = ZERO
    incoming_quantity: Decimal = ZERO
    issued_quantity: Decimal = ZERO
    closing_stock: Decimal | None = None
    document_id: str = ""
    alternate_keys: tuple[str, ...] = ()
    other_values: tuple[str, ...] = ()
    created_at: str = ""

    @property
    def computed_stock(self) -> Decimal:
        if self.closing_stock is not None:
            return self.closing_stock
        return self.stock_quantity + self.incoming_quantity - self.issued_quantity


@dataclass(frozen=True)
class IndentLine:
    """A requested quantity of one item inside an indent."""

    item_code: str
    item_name: str
    quantity: Decimal


@dataclass(frozen=True)
class Indent:
    """An internal request; allocation walks indents by ``sequence_number``."""

    indent_number: str
    indent_date: str
    requested_by: str
    order_ack_number: str
    lines: tuple[IndentLine, ...] = ()
    sequence_number: int = 0
    document_id: str = ""
    created_at: str = ""


@dataclass(frozen=True)
class PublishedIndentItem:
    """
    One indent line with its allocation figures, as published to the open
    and closed indent-item collections.
    """

    indent_number: str
    indent_date: str
    requested_by: str
    order_ack_number: str
    item_code: str
    item_name: str
    quantity: Decimal
    stock: Decimal
    available_for_this_indent: Decimal
    allocated: Decimal
    status: IndentStatus


@dataclass(frozen=True)
class POLine:
    """
    Purchase order line.

    ``quantity`` is the ordered quantity that feeds the allocation pool;
    ``planned_quantity`` is the explicitly planned PO quantity when one was
    entered separately.
    """

    item_code: str
    item_name: str = ""
    quantity: Decimal = ZERO
    planned_quantity: Decimal | None = None
    purchase_quantity: Decimal | None = None


@dataclass(frozen=True)
class PurchaseOrder:
    po_number: str
    supplier: str = ""
    lines: tuple[POLine, ...] = ()
    indent_number: str = ""
    vendor_batch_number: str = ""
    document_id: str = ""


@dataclass(frozen=True)
class PurchaseEntry:
    """A purchase-module line: one indent item being bought."""

    indent_number: str
    item_code: str
    item_name: str = ""
    po_number: str = ""
    supplier: str = ""
    order_ack_number: str = ""
    quantity: Decimal | None = None
    planned_qty: Decimal | None = None
    purchase_qty: Decimal = ZERO
    current_stock: Decimal = ZERO
    indent_status: str = ""
    received_qty: Decimal = ZERO
    ok_qty: Decimal = ZERO
    rejected_qty: Decimal = ZERO
    document_id: str = ""


@dataclass(frozen=True)
class DispatchLine:
    """
    One item line of a vendor dispatch order or a vendor issue.

    ``planned_quantity`` is the quantity planned against the PO when it was
    entered separately from ``quantity``.  The receipt fields (received,
    ok, rework, rejected, GRN) are copied from the vendor-site inspection
    of the same PO and item.
    """

    item_code: str
    item_name: str = ""
    quantity: Decimal = ZERO
    planned_quantity: Decimal | None = None
    received_qty: Decimal = ZERO
    ok_qty: Decimal = ZERO
    rework_qty: Decimal = ZERO
    rejected_qty: Decimal = ZERO
    grn_number: str = ""


@dataclass(frozen=True)
class VendorDispatchOrder:
    """Vendor department order: material sent to a vendor against a PO."""

    po_number: str
    indent_number: str = ""
    order_ack_number: str = ""
    batch_number: str = ""
    vendor_batch_number: str = ""
    vendor_name: str = ""
    dc_number: str = ""
    order_date: str = ""
    lines: tuple[DispatchLine, ...] = ()
    document_id: str = ""


@dataclass(frozen=True)
class VendorIssue:
    """Material issued to a vendor under a delivery challan."""

    dc_number: str
    po_number: str = ""
    issue_date: str = ""
    vendor_name: str = ""
    order_ack_number: str = ""
    batch_number: str = ""
    vendor_batch_number: str = ""
    indent_number: str = ""
    lines: tuple[DispatchLine, ...] = ()
    document_id: str = ""


@dataclass(frozen=True)
class InspectionLine:
    item_code: str
    item_name: str = ""
    received_qty: Decimal = ZERO
    ok_qty: Decimal = ZERO
    rejected_qty: Decimal = ZERO


@dataclass(frozen=True)
class InspectionRecord:
    """In-house inspection (PSIR) of goods received against a PO."""

    po_number: str
    indent_number: str = ""
    order_ack_number: str = ""
    batch_number: str = ""
    vendor_batch_number: str = ""
    supplier: str = ""
    received_date: str = ""
    lines: tuple[InspectionLine, ...] = ()
    document_id: str = ""
    created_at: str = ""


@dataclass(frozen=True)
class VendorInspectionRecord:
    """Vendor-site inspection (VSIR) of one item returned by a vendor."""

    po_number: str
    item_code: str = ""
    item_name: str = ""
    indent_number: str = ""
    order_ack_number: str = ""
    batch_number: str = ""
    vendor_batch_number: str = ""
    vendor_name: str = ""
    dc_number: str = ""
    invoice_dc_number: str = ""
    received_date: str = ""
    qty_received: Decimal = ZERO
    ok_qty: Decimal = ZERO
    rework_qty: Decimal = ZERO
    reject_qty: Decimal = ZERO
    grn_number: str = ""
    remarks: str = ""
    document_id: str = ""
