"""
BackfillService -- fill blank fields of downstream records in the store.

Architecture: procure_services -- imperative shell.
    Loads a snapshot, runs the pure backfill engine over every vendor
    dispatch order, vendor-site inspection record and vendor issue, and
    writes back only the fields the engine filled.

Invariants enforced:
    - Only blank fields and zero line quantities are ever written.  A second
      run over unchanged upstream data writes nothing.
    - Vendor batch numbers generated in one run are added to the taken set
      before the next order is processed, so one run never hands out the
      same number twice.
    - Dispatch orders are completed before inspection records, so an
      inspection record or a vendor issue can pick up a vendor batch number
      generated in the same ``backfill_all`` call.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from procure_engines.backfill import (
    BackfillResult,
    backfill_dispatch_order,
    backfill_vendor_inspection,
    backfill_vendor_issue,
)
from procure_kernel.domain.models import VendorDispatchOrder, VendorInspectionRecord, VendorIssue
from procure_kernel.logging_config import get_logger
from procure_services.base import StoreBackedService
from procure_services.snapshot import ProcurementSnapshot

logger = get_logger("services.backfill")

_HEADER_FIELDS = ("order_ack_number", "batch_number", "vendor_batch_number", "vendor_name")


@dataclass(frozen=True)
class BackfillRun:
    """Outcome of one pass over a collection."""

    collection: str
    examined: int
    written: int
    results: tuple[BackfillResult, ...] = ()


class BackfillService(StoreBackedService):
    """
    Cross-stage backfill against the document store.

    Contract:
        - ``backfill_dispatch_orders`` completes vendor dispatch orders and
          generates vendor batch numbers for orders no upstream stage covers.
        - ``backfill_vendor_inspections`` completes VSIR records.
        - ``backfill_vendor_issues`` completes vendor issues; it never
          generates vendor batch numbers.
        - ``backfill_all`` runs all three, in that order.

    Non-goals:
        - Does NOT overwrite any value a user entered.
    """

    def taken_vendor_batch_numbers(self, snapshot: ProcurementSnapshot) -> set[str]:
        return {
            value
            for value in (
                *(order.vendor_batch_number for order in snapshot.dispatch_orders),
                *(record.vendor_batch_number for record in snapshot.vendor_inspections),
                *(record.vendor_batch_number for record in snapshot.inspection_records),
            )
            if value
        }

    def backfill_dispatch_orders(self) -> BackfillRun:
        """
        Raises:
            DuplicateSequenceExhaustedError: no free vendor batch number.
            StoreWriteError: a write failed; earlier writes stay applied.
        """
        snapshot = self.snapshot()
        collection = self.collections.dispatch_orders
        taken = self.taken_vendor_batch_numbers(snapshot)
        year = self._clock.year_suffix()
        results: list[BackfillResult] = []
        written = 0

        for order in snapshot.dispatch_orders:
            result = backfill_dispatch_order(
                order,
                inspection_records=snapshot.inspection_records,
                vendor_inspections=snapshot.vendor_inspections,
                purchase_orders=snapshot.purchase_orders,
                purchase_entries=snapshot.purchase_entries,
                vendor_batch_year=year,
                existing_vendor_batch_numbers=taken,
                vendor_batch_marker=self._settings.vendor_batch_marker,
                max_attempts=self._settings.sequence_retry_limit,
            )
            results.append(result)
            if result.record.vendor_batch_number:
                taken.add(result.record.vendor_batch_number)
            if not result.changed:
                continue
            raw = snapshot.raw_document(collection, order.document_id) or {}
            partial = self._lines_partial("dispatch_order", order, result.record, raw)
            if partial:
                self._update(collection, order.document_id, partial)
                written += 1

        return self._finish(collection, len(snapshot.dispatch_orders), written, results)

    def backfill_vendor_inspections(self) -> BackfillRun:
        snapshot = self.snapshot()
        collection = self.collections.vendor_inspections
        results: list[BackfillResult] = []
        written = 0

        for record in snapshot.vendor_inspections:
            result = backfill_vendor_inspection(
                record,
                dispatch_orders=snapshot.dispatch_orders,
                inspection_records=snapshot.inspection_records,
                vendor_issues=snapshot.vendor_issues,
                purchase_orders=snapshot.purchase_orders,
            )
            results.append(result)
            if not result.changed:
                continue
            partial = self._header_partial("vendor_inspection", record, result.record)
            if partial:
                self._update(collection, record.document_id, partial)
                written += 1

        return self._finish(collection, len(snapshot.vendor_inspections), written, results)

    def backfill_vendor_issues(self) -> BackfillRun:
        """
        Complete vendor issues (delivery challans) from dispatch orders,
        PSIR, VSIR and purchase data.

        Raises:
            StoreWriteError: a write failed; earlier writes stay applied.
        """
        snapshot = self.snapshot()
        collection = self.collections.vendor_issues
        results: list[BackfillResult] = []
        written = 0

        for issue in snapshot.vendor_issues:
            result = backfill_vendor_issue(
                issue,
                dispatch_orders=snapshot.dispatch_orders,
                inspection_records=snapshot.inspection_records,
                vendor_inspections=snapshot.vendor_inspections,
                purchase_orders=snapshot.purchase_orders,
                purchase_entries=snapshot.purchase_entries,
            )
            results.append(result)
            if not result.changed:
                continue
            raw = snapshot.raw_document(collection, issue.document_id) or {}
            partial = self._lines_partial("vendor_issue", issue, result.record, raw)
            if partial:
                self._update(collection, issue.document_id, partial)
                written += 1

        return self._finish(collection, len(snapshot.vendor_issues), written, results)

    def backfill_all(self) -> tuple[BackfillRun, BackfillRun, BackfillRun]:
        return (
            self.backfill_dispatch_orders(),
            self.backfill_vendor_inspections(),
            self.backfill_vendor_issues(),
        )

    # -----------------------------------------------------------------
    # Write-back helpers
    # -----------------------------------------------------------------

    def _header_partial(
        self,
        entity: str,
        before: VendorDispatchOrder | VendorInspectionRecord | VendorIssue,
        after: VendorDispatchOrder | VendorInspectionRecord | VendorIssue,
    ) -> dict[str, Any]:
        return {
            self._normalizer.field_key(entity, name): getattr(after, name)
            for name in _HEADER_FIELDS
            if getattr(before, name) != getattr(after, name)
        }

    def _lines_partial(
        self,
        entity: str,
        before: VendorDispatchOrder | VendorIssue,
        after: VendorDispatchOrder | VendorIssue,
        raw: Mapping[str, Any],
    ) -> dict[str, Any]:
        partial = self._header_partial(entity, before, after)
        quantities = {
            index: {"quantity": new.quantity}
            for index, (old, new) in enumerate(zip(before.lines, after.lines))
            if old.quantity != new.quantity
        }
        if quantities:
            lines_key = self._normalizer.source_key(entity, "lines", raw)
            partial[lines_key] = self._patched_lines("dispatch_line", raw.get(lines_key), quantities)
        return partial

    def _finish(
        self,
        collection: str,
        examined: int,
        written: int,
        results: list[BackfillResult],
    ) -> BackfillRun:
        logger.info(
            "backfill_completed",
            extra={
                "scope": self._scope,
                "collection": collection,
                "examined": examined,
                "written": written,
            },
        )
        return BackfillRun(collection, examined, written, tuple(results))
