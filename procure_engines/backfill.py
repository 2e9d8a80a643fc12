"""
Module: procure_engines.backfill
Responsibility:
    Cross-stage field backfill.  A downstream record (vendor dispatch order,
    vendor-site inspection, vendor issue) that is missing a descriptive
    field gets it copied from the first upstream record that has it,
    searching upstream collections in a fixed priority order.  Zero line
    quantities are resolved from upstream lines and purchase data the
    same way.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import procure_kernel/domain and sibling engines.

Invariants enforced:
    - Fill-blanks-only: a field that already has a value is never
      overwritten, and a non-zero quantity is never replaced.  Running a
      backfill on its own output changes nothing.
    - Matching key: PO number first; indent number only when no PO match
      in that source yields a value.
    - Within a source, the first record (in the order given) with a
      non-blank value wins.  Sources are consulted in the order given.
    - A generated vendor batch number is the last resort, after every
      upstream source came up blank.

Failure modes:
    - DuplicateSequenceExhaustedError propagated from vendor batch number
      generation.
    - A missing upstream value is not an error; the field stays blank.

Usage:
    result = backfill_dispatch_order(
        order,
        inspection_records=psirs,
        vendor_inspections=vsirs,
        purchase_orders=pos,
        purchase_entries=entries,
        vendor_batch_year="25",
        existing_vendor_batch_numbers=[o.vendor_batch_number for o in orders],
    )
    result.record, result.changes()
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Generic, TypeVar

from procure_engines.identifiers import DEFAULT_RETRY_LIMIT, next_vendor_batch_number
from procure_engines.tracer import traced_engine
from procure_kernel.domain.keys import norm
from procure_kernel.domain.models import (
    ZERO,
    DispatchLine,
    InspectionRecord,
    POLine,
    PurchaseEntry,
    PurchaseOrder,
    VendorDispatchOrder,
    VendorInspectionRecord,
    VendorIssue,
)
from procure_kernel.logging_config import get_logger

logger = get_logger("engines.backfill")

T = TypeVar("T")
L = TypeVar("L", DispatchLine, POLine)

GENERATED_SOURCE = "generated"

DESCRIPTIVE_FIELDS = ("order_ack_number", "batch_number", "vendor_batch_number", "vendor_name")


@dataclass(frozen=True)
class BackfillSource:
    """
    One upstream collection, with the attribute each target field is read
    from on its records.
    """

    name: str
    records: tuple[Any, ...]
    fields: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class FieldFill:
    """A blank field that was filled, and where the value came from."""

    field: str
    value: Any
    source: str


@dataclass(frozen=True)
class BackfillResult(Generic[T]):
    record: T
    fills: tuple[FieldFill, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.fills)

    def changes(self) -> dict[str, Any]:
        """Canonical field -> new value, for the fields that were filled."""
        return {fill.field: fill.value for fill in self.fills}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _first_value(
    records: Iterable[Any],
    attribute: str,
    matches,
) -> Any:
    for record in records:
        if not matches(record):
            continue
        value = getattr(record, attribute, None)
        if not _is_blank(value):
            return value.strip() if isinstance(value, str) else value
    return None


def lookup_upstream(
    sources: Sequence[BackfillSource],
    field_name: str,
    po_number: str,
    indent_number: str = "",
) -> FieldFill | None:
    """
    First non-blank upstream value for one field.

    Postconditions:
        Sources are tried in order.  Within a source, records matching the
        PO number are tried before records matching the indent number.
        None when no source has a value.
    """
    po = norm(po_number)
    indent = norm(indent_number)
    for source in sources:
        attribute = source.fields.get(field_name)
        if attribute is None:
            continue
        if po:
            value = _first_value(
                source.records, attribute, lambda r: norm(getattr(r, "po_number", "")) == po
            )
            if value is not None:
                return FieldFill(field_name, value, source.name)
        if indent:
            value = _first_value(
                source.records, attribute, lambda r: norm(getattr(r, "indent_number", "")) == indent
            )
            if value is not None:
                return FieldFill(field_name, value, source.name)
    return None


@traced_engine("field_backfill", "1.0", fingerprint_fields=("fields",))
def backfill_fields(
    record: T,
    *,
    fields: Sequence[str],
    sources: Sequence[BackfillSource],
) -> BackfillResult[T]:
    """
    Fill the blank ``fields`` of ``record`` from ``sources``.

    Preconditions:
        ``record`` is a frozen dataclass with ``po_number`` and (optionally)
        ``indent_number`` attributes.
    Postconditions:
        Non-blank fields are untouched.  The returned record is a new
        instance; the input is unchanged.
    """
    po_number = getattr(record, "po_number", "")
    indent_number = getattr(record, "indent_number", "")
    fills: list[FieldFill] = []
    for field_name in fields:
        if not _is_blank(getattr(record, field_name)):
            continue
        fill = lookup_upstream(sources, field_name, po_number, indent_number)
        if fill is not None:
            fills.append(fill)
    if not fills:
        return BackfillResult(record=record)
    updated = dataclasses.replace(record, **{fill.field: fill.value for fill in fills})
    return BackfillResult(record=updated, fills=tuple(fills))


# -- quantity backfill --------------------------------------------------------


def _positive(value: Decimal | None) -> Decimal | None:
    return value if value is not None and value > 0 else None


def _first_positive(*values: Decimal | None) -> Decimal | None:
    return next((value for value in values if _positive(value) is not None), None)


def _match_line(lines: Sequence[L], code: str, name: str) -> L | None:
    """Line with the same item code, else the same item name."""
    line = next((line for line in lines if code and norm(line.item_code) == code), None)
    if line is None and name:
        line = next((line for line in lines if norm(line.item_name) == name), None)
    return line


def resolve_line_quantity(
    *,
    po_number: str,
    indent_number: str,
    item_code: str,
    item_name: str = "",
    purchase_orders: Sequence[PurchaseOrder] = (),
    purchase_entries: Sequence[PurchaseEntry] = (),
) -> tuple[Decimal, str] | None:
    """
    Quantity for a downstream line whose own quantity is zero or missing.

    Order of resolution:
        1. The planned quantity on the matching PO line (matched by item
           code, falling back to item name), or its ordered quantity.
        2. The quantity fields of a matching purchase entry (matched by PO
           or indent number, and item code).
        3. The purchase quantity recorded on the PO line.
    Returns (quantity, source name), or None when nothing positive is found.
    """
    po = norm(po_number)
    code = norm(item_code)
    name = norm(item_name)

    po_line = None
    if po:
        for order in purchase_orders:
            if norm(order.po_number) != po:
                continue
            po_line = _match_line(order.lines, code, name)
            if po_line is not None:
                break

    if po_line is not None:
        planned = po_line.planned_quantity if po_line.planned_quantity is not None else po_line.quantity
        if _positive(planned) is not None:
            return planned, "purchase_orders"

    keys = {k for k in (po, norm(indent_number)) if k}
    for entry in purchase_entries:
        if norm(entry.item_code) != code or not code:
            continue
        if norm(entry.po_number) in keys or norm(entry.indent_number) in keys:
            value = _positive(entry.quantity) or _positive(entry.purchase_qty)
            if value is not None:
                return value, "purchase_entries"

    if po_line is not None and _positive(po_line.purchase_quantity) is not None:
        return po_line.purchase_quantity, "purchase_orders"
    return None


def _fill_zero_lines(
    record: T,
    resolve: Callable[[DispatchLine], tuple[Decimal, str] | None],
) -> BackfillResult[T]:
    """Replace zero line quantities of ``record`` with ``resolve(line)``."""
    lines = []
    fills: list[FieldFill] = []
    for index, line in enumerate(record.lines):
        found = resolve(line) if line.quantity == ZERO else None
        if found is None:
            lines.append(line)
            continue
        quantity, source = found
        lines.append(dataclasses.replace(line, quantity=quantity))
        fills.append(FieldFill(f"lines[{index}].quantity", quantity, source))
    if not fills:
        return BackfillResult(record=record)
    return BackfillResult(record=dataclasses.replace(record, lines=tuple(lines)), fills=tuple(fills))


def backfill_dispatch_quantities(
    order: VendorDispatchOrder,
    *,
    purchase_orders: Sequence[PurchaseOrder] = (),
    purchase_entries: Sequence[PurchaseEntry] = (),
) -> BackfillResult[VendorDispatchOrder]:
    """Fill zero line quantities of a dispatch order; non-zero lines are kept."""
    return _fill_zero_lines(
        order,
        lambda line: resolve_line_quantity(
            po_number=order.po_number,
            indent_number=order.indent_number,
            item_code=line.item_code,
            item_name=line.item_name,
            purchase_orders=purchase_orders,
            purchase_entries=purchase_entries,
        ),
    )


def resolve_issue_line_quantity(
    *,
    po_number: str,
    indent_number: str,
    item_code: str,
    item_name: str = "",
    dispatch_orders: Sequence[VendorDispatchOrder] = (),
    purchase_orders: Sequence[PurchaseOrder] = (),
    purchase_entries: Sequence[PurchaseEntry] = (),
) -> tuple[Decimal, str] | None:
    """
    Quantity for a zero vendor-issue line.

    Order of resolution:
        1. The line of the dispatch order for the same PO (matched by item
           code, then item name): its planned quantity, else its quantity.
        2. The matching PO line: planned, purchase, then ordered quantity.
        3. A matching purchase entry: planned, purchase, then indent
           quantity.
    Returns (quantity, source name), or None when nothing positive is found.
    """
    po = norm(po_number)
    code = norm(item_code)
    name = norm(item_name)
    if not po:
        return None

    for order in dispatch_orders:
        if norm(order.po_number) != po:
            continue
        line = _match_line(order.lines, code, name)
        if line is not None:
            value = _first_positive(line.planned_quantity, line.quantity)
            if value is not None:
                return value, "dispatch_orders"

    for order in purchase_orders:
        if norm(order.po_number) != po:
            continue
        po_line = _match_line(order.lines, code, name)
        if po_line is not None:
            value = _first_positive(po_line.planned_quantity, po_line.purchase_quantity, po_line.quantity)
            if value is not None:
                return value, "purchase_orders"

    keys = {k for k in (po, norm(indent_number)) if k}
    for entry in purchase_entries:
        if not (norm(entry.po_number) in keys or norm(entry.indent_number) in keys):
            continue
        if (code and norm(entry.item_code) == code) or (name and norm(entry.item_name) == name):
            value = _first_positive(entry.planned_qty, entry.purchase_qty, entry.quantity)
            if value is not None:
                return value, "purchase_entries"
    return None


# -- stage plans -----------------------------------------------------------------


def dispatch_order_sources(
    *,
    inspection_records: Sequence[InspectionRecord] = (),
    vendor_inspections: Sequence[VendorInspectionRecord] = (),
    purchase_orders: Sequence[PurchaseOrder] = (),
    purchase_entries: Sequence[PurchaseEntry] = (),
) -> tuple[BackfillSource, ...]:
    """Upstream priority for a vendor dispatch order."""
    return (
        BackfillSource(
            "inspection_records",
            tuple(inspection_records),
            {
                "order_ack_number": "order_ack_number",
                "batch_number": "batch_number",
                "vendor_batch_number": "vendor_batch_number",
            },
        ),
        BackfillSource(
            "vendor_inspections",
            tuple(vendor_inspections),
            {
                "vendor_batch_number": "vendor_batch_number",
                "order_ack_number": "order_ack_number",
                "batch_number": "batch_number",
                "vendor_name": "vendor_name",
            },
        ),
        BackfillSource("purchase_orders", tuple(purchase_orders), {"vendor_name": "supplier"}),
        BackfillSource(
            "purchase_entries",
            tuple(purchase_entries),
            {"vendor_name": "supplier", "order_ack_number": "order_ack_number"},
        ),
    )


def vendor_inspection_sources(
    *,
    dispatch_orders: Sequence[VendorDispatchOrder] = (),
    inspection_records: Sequence[InspectionRecord] = (),
    vendor_issues: Sequence[VendorIssue] = (),
    purchase_orders: Sequence[PurchaseOrder] = (),
) -> tuple[BackfillSource, ...]:
    """Upstream priority for a vendor-site inspection record."""
    return (
        BackfillSource(
            "dispatch_orders",
            tuple(dispatch_orders),
            {
                "order_ack_number": "order_ack_number",
                "batch_number": "batch_number",
                "vendor_batch_number": "vendor_batch_number",
                "vendor_name": "vendor_name",
            },
        ),
        BackfillSource(
            "inspection_records",
            tuple(inspection_records),
            {
                "order_ack_number": "order_ack_number",
                "batch_number": "batch_number",
                "vendor_batch_number": "vendor_batch_number",
            },
        ),
        BackfillSource(
            "vendor_issues",
            tuple(vendor_issues),
            {
                "order_ack_number": "order_ack_number",
                "batch_number": "batch_number",
                "vendor_name": "vendor_name",
            },
        ),
        BackfillSource("purchase_orders", tuple(purchase_orders), {"vendor_name": "supplier"}),
    )


def backfill_dispatch_order(
    order: VendorDispatchOrder,
    *,
    inspection_records: Sequence[InspectionRecord] = (),
    vendor_inspections: Sequence[VendorInspectionRecord] = (),
    purchase_orders: Sequence[PurchaseOrder] = (),
    purchase_entries: Sequence[PurchaseEntry] = (),
    vendor_batch_year: str | None = None,
    existing_vendor_batch_numbers: Iterable[str] = (),
    vendor_batch_marker: str = "V",
    max_attempts: int = DEFAULT_RETRY_LIMIT,
) -> BackfillResult[VendorDispatchOrder]:
    """
    Complete a vendor dispatch order from upstream stages.

    Descriptive fields first, then zero line quantities, then, when
    ``vendor_batch_year`` is given and no upstream source had one, a newly
    generated vendor batch number.

    Raises:
        DuplicateSequenceExhaustedError: from vendor batch generation.
    """
    sources = dispatch_order_sources(
        inspection_records=inspection_records,
        vendor_inspections=vendor_inspections,
        purchase_orders=purchase_orders,
        purchase_entries=purchase_entries,
    )
    described = backfill_fields(order, fields=DESCRIPTIVE_FIELDS, sources=sources)
    quantified = backfill_dispatch_quantities(
        described.record,
        purchase_orders=purchase_orders,
        purchase_entries=purchase_entries,
    )
    record = quantified.record
    fills = list(described.fills) + list(quantified.fills)

    if vendor_batch_year is not None and _is_blank(record.vendor_batch_number):
        generated = next_vendor_batch_number(
            existing_vendor_batch_numbers,
            vendor_batch_year,
            marker=vendor_batch_marker,
            max_attempts=max_attempts,
        )
        record = dataclasses.replace(record, vendor_batch_number=generated)
        fills.append(FieldFill("vendor_batch_number", generated, GENERATED_SOURCE))

    if fills:
        logger.debug(
            "dispatch_order_backfilled",
            extra={
                "po_number": order.po_number,
                "filled": [f"{fill.field}<-{fill.source}" for fill in fills],
            },
        )
    return BackfillResult(record=record, fills=tuple(fills))


def backfill_vendor_inspection(
    record: VendorInspectionRecord,
    *,
    dispatch_orders: Sequence[VendorDispatchOrder] = (),
    inspection_records: Sequence[InspectionRecord] = (),
    vendor_issues: Sequence[VendorIssue] = (),
    purchase_orders: Sequence[PurchaseOrder] = (),
) -> BackfillResult[VendorInspectionRecord]:
    """Complete a vendor-site inspection record from upstream stages."""
    sources = vendor_inspection_sources(
        dispatch_orders=dispatch_orders,
        inspection_records=inspection_records,
        vendor_issues=vendor_issues,
        purchase_orders=purchase_orders,
    )
    result = backfill_fields(record, fields=DESCRIPTIVE_FIELDS, sources=sources)
    if result.changed:
        logger.debug(
            "vendor_inspection_backfilled",
            extra={
                "po_number": record.po_number,
                "filled": [f"{fill.field}<-{fill.source}" for fill in result.fills],
            },
        )
    return result


def vendor_issue_sources(
    *,
    dispatch_orders: Sequence[VendorDispatchOrder] = (),
    inspection_records: Sequence[InspectionRecord] = (),
    vendor_inspections: Sequence[VendorInspectionRecord] = (),
    purchase_orders: Sequence[PurchaseOrder] = (),
) -> tuple[BackfillSource, ...]:
    """
    Upstream priority for a vendor issue.

    Order acknowledgement and batch numbers come from the dispatch order,
    then PSIR.  The vendor batch number comes from the dispatch order, then
    VSIR, then the purchase order.
    """
    return (
        BackfillSource(
            "dispatch_orders",
            tuple(dispatch_orders),
            {
                "order_ack_number": "order_ack_number",
                "batch_number": "batch_number",
                "vendor_batch_number": "vendor_batch_number",
                "vendor_name": "vendor_name",
            },
        ),
        BackfillSource(
            "inspection_records",
            tuple(inspection_records),
            {"order_ack_number": "order_ack_number", "batch_number": "batch_number"},
        ),
        BackfillSource(
            "vendor_inspections",
            tuple(vendor_inspections),
            {"vendor_batch_number": "vendor_batch_number"},
        ),
        BackfillSource(
            "purchase_orders",
            tuple(purchase_orders),
            {"vendor_batch_number": "vendor_batch_number", "vendor_name": "supplier"},
        ),
    )


def backfill_vendor_issue(
    issue: VendorIssue,
    *,
    dispatch_orders: Sequence[VendorDispatchOrder] = (),
    inspection_records: Sequence[InspectionRecord] = (),
    vendor_inspections: Sequence[VendorInspectionRecord] = (),
    purchase_orders: Sequence[PurchaseOrder] = (),
    purchase_entries: Sequence[PurchaseEntry] = (),
) -> BackfillResult[VendorIssue]:
    """
    Complete a vendor issue (delivery challan) from upstream stages.

    Descriptive fields first, then zero line quantities.  Vendor batch
    numbers are never generated here; an issue only carries one an
    upstream stage already assigned.
    """
    sources = vendor_issue_sources(
        dispatch_orders=dispatch_orders,
        inspection_records=inspection_records,
        vendor_inspections=vendor_inspections,
        purchase_orders=purchase_orders,
    )
    described = backfill_fields(issue, fields=DESCRIPTIVE_FIELDS, sources=sources)
    quantified = _fill_zero_lines(
        described.record,
        lambda line: resolve_issue_line_quantity(
            po_number=issue.po_number,
            indent_number=issue.indent_number,
            item_code=line.item_code,
            item_name=line.item_name,
            dispatch_orders=dispatch_orders,
            purchase_orders=purchase_orders,
            purchase_entries=purchase_entries,
        ),
    )
    fills = described.fills + quantified.fills
    if fills:
        logger.debug(
            "vendor_issue_backfilled",
            extra={
                "dc_number": issue.dc_number,
                "po_number": issue.po_number,
                "filled": [f"{fill.field}<-{fill.source}" for fill in fills],
            },
        )
    return BackfillResult(record=quantified.record, fills=fills)
