"""
Module: procure_engines.allocation
Responsibility:
    Sequential allocation of a shared stock pool across an ordered list of
    indents.  For every indent line it computes how much confirmed stock is
    allocated, how much was consumed by earlier indents, the forward-looking
    availability including incoming purchase orders, and whether the line
    is closed (fully satisfiable from stock alone).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import procure_kernel/domain and sibling engines.

Invariants enforced:
    - Walk order is the order of ``AllocationPool.indents``.  Callers pass
      indents already sorted by sequence number (see the normalizer).
    - allocated_j = min(max(0, total_stock - allocated_before_j), qty_j), so
      no line is ever allocated more than the stock left before it, and the
      sum of allocations never exceeds max(0, total_stock).
    - Allocation draws on confirmed stock only.  Incoming PO quantity shows
      up in ``available_for_this_indent`` and ``remaining_stock`` but never
      in ``allocated`` or ``is_closed``.
    - ``available_for_this_indent`` is never clamped; a negative value is the
      depth of the shortfall.
    - Several lines for the same item inside one indent are allocated one
      after another in line order.

Failure modes:
    - ValueError when ``indent_index`` lies outside 0..len(indents) or
      ``requested_qty`` is negative (programmer errors; user input is
      validated before it reaches the engine).

Usage:
    pool = AllocationPool(indents=indents, stock_records=stock, purchase_orders=pos)
    engine = SequentialAllocationEngine(pool)
    result = engine.analyze(item_code="X001", indent_index=1, requested_qty=Decimal("60"))
    result.allocated, result.is_closed
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from procure_engines.stock_resolver import StockResolver
from procure_engines.tracer import traced_engine
from procure_kernel.domain.keys import norm
from procure_kernel.domain.models import (
    ZERO,
    Indent,
    IndentLine,
    IndentStatus,
    PurchaseOrder,
    StockRecord,
)
from procure_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")


@dataclass(frozen=True)
class AllocationPool:
    """Immutable snapshot of everything allocation depends on."""

    indents: tuple[Indent, ...] = ()
    stock_records: tuple[StockRecord, ...] = ()
    purchase_orders: tuple[PurchaseOrder, ...] = ()


@dataclass(frozen=True)
class AllocationResult:
    """
    Allocation figures for one requested quantity of one item at one
    position in the indent order.

    Contract:
        Derived, never persisted as a source of truth.
    Guarantees:
        0 <= allocated <= requested_qty
    """

    item_code: str
    indent_index: int
    requested_qty: Decimal
    total_stock: Decimal
    previously_allocated: Decimal
    po_quantity: Decimal
    available_before: Decimal
    allocated: Decimal
    available_for_this_indent: Decimal
    is_closed: bool

    @property
    def status(self) -> IndentStatus:
        return IndentStatus.CLOSED if self.is_closed else IndentStatus.OPEN

    @property
    def shortfall(self) -> Decimal:
        return self.requested_qty - self.allocated

    @property
    def calculation(self) -> str:
        """Human-readable derivation shown next to the figures."""
        return (
            f"{self.total_stock} - {self.previously_allocated} = {self.available_before} "
            f"(before) - {self.requested_qty} = {self.available_for_this_indent}"
        )


@dataclass(frozen=True)
class LineAllocation:
    """One indent line together with its allocation result."""

    indent_index: int
    line_index: int
    indent: Indent
    line: IndentLine
    result: AllocationResult


def allocate_against(available_before: Decimal, requested_qty: Decimal) -> Decimal:
    """min(max(0, available_before), requested_qty)"""
    return min(max(ZERO, available_before), requested_qty)


class SequentialAllocationEngine:
    """
    Sequential allocation over one AllocationPool.

    Contract:
        Built once per snapshot; every method is a pure function of the
        pool and its arguments.

    Non-goals:
        Does not persist anything and does not validate user input.
    """

    def __init__(self, pool: AllocationPool, resolver: StockResolver | None = None):
        self._pool = pool
        self._resolver = resolver or StockResolver(pool.stock_records)

    @property
    def pool(self) -> AllocationPool:
        return self._pool

    @property
    def resolver(self) -> StockResolver:
        return self._resolver

    # -- pool figures ------------------------------------------------------

    def total_stock(self, item_code: str) -> Decimal:
        return self._resolver.resolve_stock(item_code)

    def po_quantity(self, item_code: str) -> Decimal:
        """Sum of ordered quantity over every PO line for the item."""
        code = norm(item_code)
        return sum(
            (
                line.quantity
                for po in self._pool.purchase_orders
                for line in po.lines
                if norm(line.item_code) == code
            ),
            ZERO,
        )

    def _matching_quantities(self, item_code: str, indents: Iterable[Indent]) -> Iterable[Decimal]:
        code = norm(item_code)
        for indent in indents:
            for line in indent.lines:
                if norm(line.item_code) == code:
                    yield max(ZERO, line.quantity)

    def previously_allocated(self, item_code: str, indent_index: int) -> Decimal:
        """
        Stock consumed by indents[0..indent_index) for one item.

        Preconditions:
            0 <= indent_index <= len(indents)
        """
        self._check_index(indent_index)
        total_stock = self.total_stock(item_code)
        consumed = ZERO
        for qty in self._matching_quantities(item_code, self._pool.indents[:indent_index]):
            consumed += allocate_against(total_stock - consumed, qty)
        return consumed

    def _check_index(self, indent_index: int) -> None:
        if not 0 <= indent_index <= len(self._pool.indents):
            raise ValueError(
                f"indent_index must be within 0..{len(self._pool.indents)}, got {indent_index}"
            )

    # -- per-line analysis -------------------------------------------------

    @traced_engine(
        "allocation", "1.0", fingerprint_fields=("item_code", "indent_index", "requested_qty")
    )
    def analyze(
        self,
        *,
        item_code: str,
        indent_index: int,
        requested_qty: Decimal,
    ) -> AllocationResult:
        """
        Allocation for ``requested_qty`` of an item at position ``indent_index``.

        Preconditions:
            0 <= indent_index <= len(indents); requested_qty >= 0.
        Postconditions:
            Figures follow the sequential rule against indents before
            ``indent_index``; later indents never influence the result.
        Raises:
            ValueError: on an out-of-range index or negative quantity.
        """
        if requested_qty < 0:
            raise ValueError(f"requested_qty cannot be negative, got {requested_qty}")
        previously = self.previously_allocated(item_code, indent_index)
        return self._result(
            item_code=item_code,
            indent_index=indent_index,
            requested_qty=requested_qty,
            total_stock=self.total_stock(item_code),
            po_quantity=self.po_quantity(item_code),
            previously_allocated=previously,
        )

    @staticmethod
    def _result(
        *,
        item_code: str,
        indent_index: int,
        requested_qty: Decimal,
        total_stock: Decimal,
        po_quantity: Decimal,
        previously_allocated: Decimal,
    ) -> AllocationResult:
        available_before = total_stock - previously_allocated
        return AllocationResult(
            item_code=item_code,
            indent_index=indent_index,
            requested_qty=requested_qty,
            total_stock=total_stock,
            previously_allocated=previously_allocated,
            po_quantity=po_quantity,
            available_before=available_before,
            allocated=allocate_against(available_before, requested_qty),
            available_for_this_indent=(total_stock + po_quantity) - previously_allocated - requested_qty,
            is_closed=available_before >= requested_qty,
        )

    @traced_engine("allocation_walk", "1.0")
    def analyze_all(self) -> tuple[LineAllocation, ...]:
        """
        Allocation for every line of every indent, in walk order.

        A single pass keeps a running consumed total per item, so this is
        linear in the number of lines.
        """
        consumed: dict[str, Decimal] = {}
        stock: dict[str, Decimal] = {}
        po_qty: dict[str, Decimal] = {}
        out: list[LineAllocation] = []

        for indent_index, indent in enumerate(self._pool.indents):
            for line_index, line in enumerate(indent.lines):
                code = norm(line.item_code)
                if code not in stock:
                    stock[code] = self.total_stock(line.item_code)
                    po_qty[code] = self.po_quantity(line.item_code)
                requested = max(ZERO, line.quantity)
                result = self._result(
                    item_code=line.item_code,
                    indent_index=indent_index,
                    requested_qty=requested,
                    total_stock=stock[code],
                    po_quantity=po_qty[code],
                    previously_allocated=consumed.get(code, ZERO),
                )
                consumed[code] = consumed.get(code, ZERO) + result.allocated
                out.append(LineAllocation(indent_index, line_index, indent, line, result))

        logger.info(
            "allocation_walk_completed",
            extra={
                "indent_count": len(self._pool.indents),
                "line_count": len(out),
                "open_lines": sum(1 for la in out if not la.result.is_closed),
            },
        )
        return tuple(out)

    # -- aggregates --------------------------------------------------------

    def allocated_stock(self, item_code: str) -> Decimal:
        """Total allocated to the item across all existing indents."""
        return self.previously_allocated(item_code, len(self._pool.indents))

    def remaining_stock(self, item_code: str, draft_lines: Sequence[IndentLine] = ()) -> Decimal:
        """
        Pool left for the item after all indents and any unsaved draft lines.

        Starts from stock plus incoming PO quantity, subtracts what existing
        indents were allocated, then deducts draft lines (treated as one more
        indent at the end) sequentially against what is left.
        """
        available = self.total_stock(item_code) + self.po_quantity(item_code)
        available -= self.allocated_stock(item_code)
        code = norm(item_code)
        for line in draft_lines:
            if norm(line.item_code) == code:
                available -= allocate_against(available, max(ZERO, line.quantity))
        return available
