"""
PurchaseSyncService -- keep purchase entries in line with indents and PSIR,
and vendor dispatch lines in line with VSIR.

Architecture: procure_services -- imperative shell.
    Planning is pure over a snapshot and a live-stock cache and returns the
    field changes per purchase entry.  ``apply`` writes them.

Invariants enforced:
    - Idempotent write guard: a change only lists fields whose value differs
      from the stored entry, and an entry with no differing field is never
      written.  Running a sync twice writes nothing the second time, which
      is what stops a subscription-triggered sync from re-triggering itself.
    - Stock sync: ``indent_status`` follows the cache status,
      ``current_stock`` follows the cache display value, and
      ``purchase_qty`` is the display value for open lines and zero for
      closed ones.
    - Inspection sync: received, ok and rejected quantities come from the
      newest PSIR line for the same PO number and item code.
    - Dispatch receipt sync: received, ok, rework and rejected quantities
      and the GRN number of a vendor dispatch line come from the first VSIR
      record for the same PO number and item code.  The same write guard
      applies per line.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from procure_config.schema import ProcurementSettings
from procure_engines.live_stock import DerivedViewCache
from procure_ingestion.normalizer import RecordNormalizer
from procure_kernel.domain.clock import Clock
from procure_kernel.domain.keys import norm
from procure_kernel.domain.models import (
    ZERO,
    IndentStatus,
    InspectionRecord,
    PurchaseEntry,
    VendorDispatchOrder,
    VendorInspectionRecord,
)
from procure_kernel.logging_config import get_logger
from procure_kernel.store.base import DocumentStore
from procure_services.base import StoreBackedService
from procure_services.snapshot import ProcurementSnapshot

logger = get_logger("services.purchase_sync")


@dataclass(frozen=True)
class EntryChange:
    """Field changes planned for one purchase entry (canonical field names)."""

    document_id: str
    indent_number: str
    item_code: str
    changes: dict[str, Any] = field(default_factory=dict)


def plan_stock_sync(
    entries: Sequence[PurchaseEntry],
    cache: DerivedViewCache,
) -> tuple[EntryChange, ...]:
    """Changes that bring entries in line with the live-stock cache."""
    planned: list[EntryChange] = []
    for entry in entries:
        hit = cache.get(entry.indent_number, entry.item_code)
        if hit is None:
            continue
        changes: dict[str, Any] = {}
        status = hit.status.value if hit.status is not None else entry.indent_status
        if status != entry.indent_status:
            changes["indent_status"] = status
        if hit.display_stock != entry.current_stock:
            changes["current_stock"] = hit.display_stock
        desired = hit.display_stock if status == IndentStatus.OPEN.value else ZERO
        if desired != entry.purchase_qty:
            changes["purchase_qty"] = desired
        if changes:
            planned.append(EntryChange(entry.document_id, entry.indent_number, entry.item_code, changes))
    return tuple(planned)


def plan_inspection_sync(
    entries: Sequence[PurchaseEntry],
    inspection_records: Sequence[InspectionRecord],
) -> tuple[EntryChange, ...]:
    """
    Changes that copy PSIR quantities onto purchase entries.

    ``inspection_records`` must be newest first (as the normalizer returns
    them); the first matching line wins.
    """
    planned: list[EntryChange] = []
    for entry in entries:
        po = norm(entry.po_number)
        code = norm(entry.item_code)
        if not po or not code:
            continue
        line = next(
            (
                line
                for record in inspection_records
                if norm(record.po_number) == po
                for line in record.lines
                if norm(line.item_code) == code
            ),
            None,
        )
        if line is None:
            continue
        changes: dict[str, Any] = {}
        for name, value in (
            ("received_qty", line.received_qty),
            ("ok_qty", line.ok_qty),
            ("rejected_qty", line.rejected_qty),
        ):
            if getattr(entry, name) != value:
                changes[name] = value
        if changes:
            planned.append(EntryChange(entry.document_id, entry.indent_number, entry.item_code, changes))
    return tuple(planned)


@dataclass(frozen=True)
class DispatchReceiptChange:
    """
    Receipt figures planned for the lines of one vendor dispatch order.

    ``lines`` maps a line index to canonical field -> new value.
    """

    document_id: str
    po_number: str
    lines: dict[int, dict[str, Any]] = field(default_factory=dict)


# dispatch line field -> vendor-site inspection attribute
_RECEIPT_FIELDS = (
    ("received_qty", "qty_received"),
    ("ok_qty", "ok_qty"),
    ("rework_qty", "rework_qty"),
    ("rejected_qty", "reject_qty"),
    ("grn_number", "grn_number"),
)


def plan_dispatch_receipt_sync(
    orders: Sequence[VendorDispatchOrder],
    vendor_inspections: Sequence[VendorInspectionRecord],
) -> tuple[DispatchReceiptChange, ...]:
    """
    Changes that copy VSIR receipt figures onto vendor dispatch lines.

    A line takes its figures from the first VSIR record with the same PO
    number and item code.  Lines without a matching record keep what they
    have; matching lines list only the fields that differ.
    """
    planned: list[DispatchReceiptChange] = []
    for order in orders:
        po = norm(order.po_number)
        if not po:
            continue
        lines: dict[int, dict[str, Any]] = {}
        for index, line in enumerate(order.lines):
            code = norm(line.item_code)
            record = next(
                (
                    record
                    for record in vendor_inspections
                    if code and norm(record.po_number) == po and norm(record.item_code) == code
                ),
                None,
            )
            if record is None:
                continue
            changes = {
                name: getattr(record, source)
                for name, source in _RECEIPT_FIELDS
                if getattr(line, name) != getattr(record, source)
            }
            if changes:
                lines[index] = changes
        if lines:
            planned.append(DispatchReceiptChange(order.document_id, order.po_number, lines))
    return tuple(planned)


def merge_changes(*plans: Sequence[EntryChange]) -> tuple[EntryChange, ...]:
    """Combine plans so each entry is written once; later plans win per field."""
    merged: dict[str, EntryChange] = {}
    for plan in plans:
        for change in plan:
            current = merged.get(change.document_id)
            if current is None:
                merged[change.document_id] = change
            else:
                merged[change.document_id] = EntryChange(
                    current.document_id,
                    current.indent_number,
                    current.item_code,
                    {**current.changes, **change.changes},
                )
    return tuple(merged.values())


class PurchaseSyncService(StoreBackedService):
    """
    Applies stock and inspection sync to the purchase entry collection,
    and VSIR receipt sync to the vendor dispatch collection.

    Contract:
        ``sync`` reads a fresh snapshot, refreshes the cache if its inputs
        changed, plans both syncs and writes the differing fields.
        ``sync_dispatch_receipts`` reads its own snapshot and writes only
        the vendor dispatch collection.

    Non-goals:
        - Does NOT create or delete purchase entries or dispatch lines.
    """

    def __init__(
        self,
        store: DocumentStore,
        scope: str,
        settings: ProcurementSettings | None = None,
        normalizer: RecordNormalizer | None = None,
        clock: Clock | None = None,
        cache: DerivedViewCache | None = None,
    ) -> None:
        super().__init__(store, scope, settings, normalizer, clock)
        self._cache = cache or DerivedViewCache()

    @property
    def cache(self) -> DerivedViewCache:
        return self._cache

    def plan(self, snapshot: ProcurementSnapshot) -> tuple[EntryChange, ...]:
        self._cache.refresh(snapshot.live_stock_inputs())
        return merge_changes(
            plan_stock_sync(snapshot.purchase_entries, self._cache),
            plan_inspection_sync(snapshot.purchase_entries, snapshot.inspection_records),
        )

    def apply(self, changes: Sequence[EntryChange]) -> int:
        """
        Write planned changes.  Returns the number of entries written.

        Raises:
            StoreWriteError: from the store; earlier writes stay applied.
        """
        written = 0
        collection = self.collections.purchase_entries
        for change in changes:
            if not change.changes or not change.document_id:
                continue
            partial = {
                self._normalizer.field_key("purchase_entry", name): value
                for name, value in change.changes.items()
            }
            self._update(collection, change.document_id, partial)
            written += 1
        if written:
            logger.info(
                "purchase_entries_synced",
                extra={"scope": self._scope, "written": written},
            )
        return written

    def sync(self) -> int:
        return self.apply(self.plan(self.snapshot()))

    def apply_dispatch_receipts(
        self,
        changes: Sequence[DispatchReceiptChange],
        snapshot: ProcurementSnapshot,
    ) -> int:
        """
        Write planned receipt figures into the raw line lists of
        ``snapshot``'s dispatch orders.  Returns the number of orders
        written.

        Raises:
            StoreWriteError: from the store; earlier writes stay applied.
        """
        written = 0
        collection = self.collections.dispatch_orders
        for change in changes:
            raw = snapshot.raw_document(collection, change.document_id)
            if not change.lines or raw is None:
                continue
            lines_key = self._normalizer.source_key("dispatch_order", "lines", raw)
            self._update(
                collection,
                change.document_id,
                {lines_key: self._patched_lines("dispatch_line", raw.get(lines_key), change.lines)},
            )
            written += 1
        if written:
            logger.info(
                "dispatch_receipts_synced",
                extra={"scope": self._scope, "written": written},
            )
        return written

    def sync_dispatch_receipts(self) -> int:
        """Bring vendor dispatch lines in line with VSIR; returns orders written."""
        snapshot = self.snapshot()
        return self.apply_dispatch_receipts(
            plan_dispatch_receipt_sync(snapshot.dispatch_orders, snapshot.vendor_inspections),
            snapshot,
        )
