"""
IndentService -- create, delete and publish indents.

Architecture: procure_services -- imperative shell.
    Reads a snapshot of the scope, runs the stock resolver and the
    sequential allocation engine, and writes indents plus the derived open
    and closed indent-item collections back to the store.

Invariants enforced:
    - Input validation happens here, before anything reaches an engine:
      every line needs an item code, an item name and a quantity above zero;
      every indent needs a date, a requester, an order-acknowledgement number
      and at least one line.
    - With ``enforce_stock_on_indent`` on, a line asking for more than the
      item's resolved stock rejects the whole indent.
    - New indents get the next sequence number (max + 1), which fixes their
      position in the allocation walk.
    - ``publish_indent_items`` rewrites both item collections from one walk,
      so an item line is never in both.  A collection whose content would
      not change is not rewritten.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any

from procure_engines.allocation import (
    AllocationPool,
    AllocationResult,
    SequentialAllocationEngine,
)
from procure_engines.identifiers import next_indent_number, next_order_ack_number
from procure_engines.stock_resolver import StockResolver
from procure_kernel.domain.models import Indent, IndentLine, PublishedIndentItem
from procure_kernel.exceptions import InsufficientStockError, ShortfallLine, ValidationError
from procure_kernel.logging_config import get_logger
from procure_services.base import StoreBackedService
from procure_services.snapshot import ProcurementSnapshot
from procure_services.workspace import ProcurementWorkspace

logger = get_logger("services.indent")


def _to_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


class IndentService(StoreBackedService):
    """
    Indent lifecycle against the document store.

    Contract:
        - ``validate_line`` / ``validate_header`` raise ValidationError with
          a user-facing message.
        - ``create_indent`` validates, checks stock, numbers, persists and
          republishes the indent-item collections.
        - ``preview_line`` analyses an unsaved line as if appended after
          every existing indent.

    Non-goals:
        - Does NOT edit saved indents in place; delete and recreate.
    """

    # -----------------------------------------------------------------
    # Validation
    # -----------------------------------------------------------------

    @staticmethod
    def validate_line(item_code: str, item_name: str, quantity: Any) -> IndentLine:
        """
        Check one draft line.

        Raises:
            ValidationError: missing name or code, or a quantity that is
                not a number above zero.
        """
        code = (item_code or "").strip()
        name = (item_name or "").strip()
        qty = _to_decimal(quantity)
        if not code or not name or qty is None or qty <= 0:
            raise ValidationError(
                "Please fill in Item Name, Item Code, and a valid Quantity",
                field="items",
            )
        return IndentLine(item_code=code, item_name=name, quantity=qty)

    @staticmethod
    def validate_header(
        indent_date: str,
        requested_by: str,
        order_ack_number: str,
        lines: Sequence[IndentLine],
    ) -> None:
        if not (indent_date or "").strip() or not (requested_by or "").strip() or not (
            order_ack_number or ""
        ).strip():
            raise ValidationError("Please fill in Date, Indent By, and OA NO fields")
        if not lines:
            raise ValidationError("Please add at least one item", field="items")

    # -----------------------------------------------------------------
    # Engines over the current snapshot
    # -----------------------------------------------------------------

    @staticmethod
    def engine_for(snapshot: ProcurementSnapshot) -> SequentialAllocationEngine:
        return SequentialAllocationEngine(
            AllocationPool(
                indents=snapshot.indents,
                stock_records=snapshot.stock_records,
                purchase_orders=snapshot.purchase_orders,
            )
        )

    def preview_line(self, item_code: str, quantity: Decimal) -> AllocationResult:
        """Allocation for a draft line placed after every saved indent."""
        engine = self.engine_for(self.snapshot())
        return engine.analyze(
            item_code=item_code,
            indent_index=len(engine.pool.indents),
            requested_qty=quantity,
        )

    def remaining_stock(self, item_code: str, draft_lines: Sequence[IndentLine] = ()) -> Decimal:
        return self.engine_for(self.snapshot()).remaining_stock(item_code, draft_lines)

    def allocated_stock(self, item_code: str) -> Decimal:
        return self.engine_for(self.snapshot()).allocated_stock(item_code)

    # -----------------------------------------------------------------
    # Numbering
    # -----------------------------------------------------------------

    def next_indent_number(self, snapshot: ProcurementSnapshot | None = None) -> str:
        snapshot = snapshot or self.snapshot()
        return next_indent_number(
            (indent.indent_number for indent in snapshot.indents),
            prefix=self._settings.indent_number_prefix,
            width=self._settings.serial_width,
        )

    def next_order_ack_number(self, requested_by: str, snapshot: ProcurementSnapshot | None = None) -> str:
        snapshot = snapshot or self.snapshot()
        return next_order_ack_number(
            ((indent.requested_by, indent.order_ack_number) for indent in snapshot.indents),
            requested_by,
            prefix=self._settings.order_ack_prefix,
            width=self._settings.serial_width,
        )

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    def check_stock(self, lines: Sequence[IndentLine], snapshot: ProcurementSnapshot) -> None:
        """
        Raises:
            InsufficientStockError: listing every line whose quantity exceeds
                the item's resolved stock.
        """
        resolver = StockResolver(snapshot.stock_records)
        shortfalls = []
        for line in lines:
            available = resolver.resolve_stock(line.item_code)
            if line.quantity > available:
                shortfalls.append(
                    ShortfallLine(
                        item_code=line.item_code,
                        item_name=line.item_name,
                        requested=line.quantity,
                        available=available,
                    )
                )
        if shortfalls:
            logger.warning(
                "indent_rejected_insufficient_stock",
                extra={"scope": self._scope, "items": [s.item_code for s in shortfalls]},
            )
            raise InsufficientStockError(tuple(shortfalls))

    def create_indent(
        self,
        *,
        indent_date: str,
        requested_by: str,
        lines: Sequence[IndentLine],
        order_ack_number: str | None = None,
    ) -> Indent:
        """
        Validate, number and persist a new indent, then republish items.

        Preconditions:
            ``lines`` came through ``validate_line``.
        Postconditions:
            The indent is stored with the next indent number and sequence
            number; the open/closed item collections reflect it.
        Raises:
            ValidationError: header missing or no lines.
            InsufficientStockError: a line exceeds resolved stock.
            StoreWriteError: the store rejected a write.
        """
        snapshot = self.snapshot()
        if order_ack_number is None and (requested_by or "").strip():
            order_ack_number = self.next_order_ack_number(requested_by, snapshot)
        self.validate_header(indent_date, requested_by, order_ack_number or "", lines)
        if self._settings.enforce_stock_on_indent:
            self.check_stock(lines, snapshot)

        indent = Indent(
            indent_number=self.next_indent_number(snapshot),
            indent_date=indent_date.strip(),
            requested_by=requested_by.strip(),
            order_ack_number=(order_ack_number or "").strip(),
            lines=tuple(lines),
            sequence_number=max((i.sequence_number for i in snapshot.indents), default=0) + 1,
        )
        document_id = self._add(self.collections.indents, self._normalizer.to_document("indent", indent))
        logger.info(
            "indent_created",
            extra={
                "scope": self._scope,
                "indent_number": indent.indent_number,
                "sequence_number": indent.sequence_number,
                "line_count": len(indent.lines),
            },
        )
        self.publish_indent_items()
        return dataclasses.replace(indent, document_id=document_id)

    def delete_indent(self, document_id: str) -> None:
        self._delete(self.collections.indents, document_id)
        logger.info("indent_deleted", extra={"scope": self._scope, "document_id": document_id})
        self.publish_indent_items()

    def publish_indent_items(self) -> tuple[tuple[PublishedIndentItem, ...], tuple[PublishedIndentItem, ...]]:
        """
        Recompute allocation for every saved line and rewrite the open and
        closed indent-item collections.

        A collection whose stored items already match the recomputed ones
        is left alone, so republishing unchanged data writes nothing and
        notifies no subscriber.

        Returns:
            (open_items, closed_items)
        """
        snapshot = self.snapshot()
        open_items: list[PublishedIndentItem] = []
        closed_items: list[PublishedIndentItem] = []
        for allocation in self.engine_for(snapshot).analyze_all():
            result = allocation.result
            item = PublishedIndentItem(
                indent_number=allocation.indent.indent_number,
                indent_date=allocation.indent.indent_date,
                requested_by=allocation.indent.requested_by,
                order_ack_number=allocation.indent.order_ack_number,
                item_code=allocation.line.item_code,
                item_name=allocation.line.item_name,
                quantity=allocation.line.quantity,
                stock=result.total_stock,
                available_for_this_indent=result.available_for_this_indent,
                allocated=result.allocated,
                status=result.status,
            )
            (closed_items if result.is_closed else open_items).append(item)

        written = [
            collection
            for collection, items, stored in (
                (self.collections.open_indent_items, open_items, snapshot.open_items),
                (self.collections.closed_indent_items, closed_items, snapshot.closed_items),
            )
            if self._publish(collection, items, stored)
        ]
        logger.info(
            "indent_items_published" if written else "indent_items_unchanged",
            extra={
                "scope": self._scope,
                "open": len(open_items),
                "closed": len(closed_items),
                "written": written,
            },
        )
        return tuple(open_items), tuple(closed_items)

    def _publish(
        self,
        collection: str,
        items: Sequence[PublishedIndentItem],
        stored: Sequence[PublishedIndentItem],
    ) -> bool:
        if tuple(items) == tuple(stored):
            return False
        self._replace_all(
            collection,
            [self._normalizer.to_document("published_item", item) for item in items],
        )
        return True

    def follow(self, workspace: ProcurementWorkspace) -> Callable[[], None]:
        """
        Republish indent items whenever the workspace sees stock records,
        indents or purchase orders change.

        The publish it triggers writes the item collections, which calls the
        listener again with the same allocation inputs; that call returns
        without publishing.

        Returns:
            A callable that stops following.
        """
        seen: list[tuple] = []
        if workspace.ready:
            seen.append(_allocation_inputs(workspace.snapshot))

        def on_snapshot(snapshot: ProcurementSnapshot) -> None:
            inputs = _allocation_inputs(snapshot)
            if seen and seen[0] == inputs:
                return
            seen[:] = [inputs]
            logger.debug("indent_items_republish_triggered", extra={"scope": self._scope})
            self.publish_indent_items()

        return workspace.add_listener(on_snapshot)


def _allocation_inputs(snapshot: ProcurementSnapshot) -> tuple:
    return snapshot.stock_records, snapshot.indents, snapshot.purchase_orders
