"""
Module: procure_engines.live_stock
Responsibility:
    The derived-view cache: one precomputed map from (order id, item code)
    to the live stock figure shown next to a purchase line, so that reads
    are a dictionary lookup instead of a walk over every indent.

Architecture position:
    Engines -- pure calculation layer.  The cache object holds the last
    built map but performs no I/O; the workspace feeds it snapshots.

Invariants enforced:
    - A rebuild is a pure function of ``LiveStockInputs``.  Identical inputs
      give a byte-identical ``to_canonical_json()``.
    - ``refresh`` rebuilds only when the input fingerprint changed.
    - Entries computed from the indent walk take precedence over entries
      seeded from published open/closed items; a key is never overwritten
      once set.
    - Every order also gets an order-only key (``ORDER|``) holding its
      first line's entry.
    - Before the first rebuild, and for keys the map does not know, a
      lookup returns the caller's last-known stock, never zero.

Failure modes:
    None at lookup time.  Allocation errors cannot occur during a rebuild
    because every quantity is clamped at zero by the walk.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal

from procure_engines.allocation import AllocationPool, SequentialAllocationEngine
from procure_engines.tracer import compute_input_fingerprint, traced_engine
from procure_kernel.domain.keys import norm, order_item_key
from procure_kernel.domain.models import (
    ZERO,
    Indent,
    IndentStatus,
    PublishedIndentItem,
    PurchaseOrder,
    StockRecord,
)
from procure_kernel.logging_config import get_logger

logger = get_logger("engines.live_stock")


@dataclass(frozen=True)
class LiveStockInputs:
    """Every input the live-stock map depends on."""

    stock_records: tuple[StockRecord, ...] = ()
    indents: tuple[Indent, ...] = ()
    purchase_orders: tuple[PurchaseOrder, ...] = ()
    open_items: tuple[PublishedIndentItem, ...] = ()
    closed_items: tuple[PublishedIndentItem, ...] = ()

    def fingerprint(self) -> str:
        return compute_input_fingerprint(("inputs",), {"inputs": self})


@dataclass(frozen=True)
class LiveStockEntry:
    """
    Live figures for one (order, item).

    ``status`` is None only for the fallback entry returned on a miss.
    """

    display_stock: Decimal
    is_short: bool = False
    status: IndentStatus | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "displayStock": str(self.display_stock),
            "isShort": self.is_short,
            "status": self.status.value if self.status is not None else None,
        }


@traced_engine("live_stock", "1.0")
def build_live_stock_map(inputs: LiveStockInputs) -> dict[str, LiveStockEntry]:
    """
    Compute the full ``ORDER|ITEM`` -> LiveStockEntry map.

    Walk entries: display is the line's forward-looking availability,
    ``is_short`` is cumulative demand for the item (this line included)
    above the resolved stock, and status is the allocation status.
    Published items then fill keys the walk did not produce, with the
    availability they were published with.
    """
    engine = SequentialAllocationEngine(
        AllocationPool(
            indents=inputs.indents,
            stock_records=inputs.stock_records,
            purchase_orders=inputs.purchase_orders,
        )
    )
    entries: dict[str, LiveStockEntry] = {}
    demand: dict[str, Decimal] = {}

    for allocation in engine.analyze_all():
        result = allocation.result
        code = norm(allocation.line.item_code)
        demand[code] = demand.get(code, ZERO) + result.requested_qty
        entry = LiveStockEntry(
            display_stock=result.available_for_this_indent,
            is_short=demand[code] > result.total_stock,
            status=result.status,
        )
        order_id = allocation.indent.indent_number
        entries.setdefault(order_item_key(order_id, code), entry)
        entries.setdefault(order_item_key(order_id, ""), entry)

    for item in (*inputs.open_items, *inputs.closed_items):
        if not norm(item.indent_number):
            continue
        entry = LiveStockEntry(
            display_stock=item.available_for_this_indent,
            is_short=False,
            status=item.status,
        )
        entries.setdefault(order_item_key(item.indent_number, item.item_code), entry)
        entries.setdefault(order_item_key(item.indent_number, ""), entry)

    return entries


class DerivedViewCache:
    """
    Memoized live-stock map.

    Contract:
        ``rebuild`` always recomputes; ``refresh`` recomputes only when the
        inputs differ from the last build.  Lookups never raise.

    Non-goals:
        Does not subscribe to anything.  The owner decides when inputs
        changed and calls ``refresh``.
    """

    def __init__(self) -> None:
        self._entries: dict[str, LiveStockEntry] | None = None
        self._fingerprint: str | None = None
        self._rebuild_count = 0

    @property
    def built(self) -> bool:
        return self._entries is not None

    @property
    def rebuild_count(self) -> int:
        return self._rebuild_count

    @property
    def fingerprint(self) -> str | None:
        return self._fingerprint

    def __len__(self) -> int:
        return len(self._entries or {})

    def entries(self) -> Mapping[str, LiveStockEntry]:
        return dict(self._entries or {})

    def rebuild(self, inputs: LiveStockInputs) -> Mapping[str, LiveStockEntry]:
        self._entries = build_live_stock_map(inputs)
        self._fingerprint = inputs.fingerprint()
        self._rebuild_count += 1
        logger.info(
            "live_stock_rebuilt",
            extra={
                "entry_count": len(self._entries),
                "input_fingerprint": self._fingerprint,
                "rebuild_count": self._rebuild_count,
            },
        )
        return self.entries()

    def refresh(self, inputs: LiveStockInputs) -> bool:
        """Rebuild if ``inputs`` changed since the last build. True if rebuilt."""
        if self.built and inputs.fingerprint() == self._fingerprint:
            return False
        self.rebuild(inputs)
        return True

    def get(self, order_id: str, item_code: str) -> LiveStockEntry | None:
        """Exact key, then the order-only key; None on a miss or before a build."""
        if self._entries is None:
            return None
        hit = self._entries.get(order_item_key(order_id, item_code))
        if hit is None:
            hit = self._entries.get(order_item_key(order_id, ""))
        return hit

    def lookup(
        self,
        order_id: str,
        item_code: str,
        last_known_stock: Decimal = ZERO,
    ) -> LiveStockEntry:
        hit = self.get(order_id, item_code)
        if hit is None:
            return LiveStockEntry(display_stock=last_known_stock)
        return hit

    def display_stock(self, order_id: str, item_code: str, last_known_stock: Decimal = ZERO) -> Decimal:
        return self.lookup(order_id, item_code, last_known_stock).display_stock

    def to_canonical_json(self) -> str:
        """Sorted-key JSON of the current map; '{}' before the first build."""
        payload = {key: entry.as_dict() for key, entry in (self._entries or {}).items()}
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))
