"""
Module: procure_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the import surface for the service layer.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import procure_kernel (domain, keys, logging, exceptions) and
    sibling engine modules.  MUST NOT import procure_services.

Invariants enforced:
    - Purity: engines never read the clock.  The current year for vendor
      batch numbers is passed in by the caller.
    - Decimal-only quantities.
    - Determinism: identical inputs always produce identical outputs,
      whatever the order of stock records.

Failure modes:
    - ValueError from the allocation engine on programmer-error inputs.
    - DuplicateSequenceExhaustedError from vendor batch generation.

Audit relevance:
    Engine entry points are wrapped by ``@traced_engine`` (see
    ``procure_engines.tracer``), emitting PROCURE_ENGINE_TRACE records with
    engine name, version, input fingerprint and duration.

Usage:
    from procure_engines import StockResolver, SequentialAllocationEngine
    from procure_engines import backfill_dispatch_order, DerivedViewCache
"""

from procure_kernel.logging_config import get_logger

logger = get_logger("engines")

from procure_engines.allocation import (
    AllocationPool,
    AllocationResult,
    LineAllocation,
    SequentialAllocationEngine,
    allocate_against,
)
from procure_engines.backfill import (
    BackfillResult,
    BackfillSource,
    FieldFill,
    backfill_dispatch_order,
    backfill_dispatch_quantities,
    backfill_fields,
    backfill_vendor_inspection,
    backfill_vendor_issue,
    lookup_upstream,
    resolve_issue_line_quantity,
    resolve_line_quantity,
)
from procure_engines.identifiers import (
    ensure_unique_vendor_batch_number,
    next_dc_number,
    next_indent_number,
    next_order_ack_number,
    next_vendor_batch_number,
)
from procure_engines.live_stock import (
    DerivedViewCache,
    LiveStockEntry,
    LiveStockInputs,
    build_live_stock_map,
)
from procure_engines.stock_resolver import (
    MatchStage,
    StockResolution,
    StockResolver,
    choose_best_stock,
)
from procure_engines.tracer import traced_engine

__all__ = [
    # Allocation
    "AllocationPool",
    "AllocationResult",
    "LineAllocation",
    "SequentialAllocationEngine",
    "allocate_against",
    # Backfill
    "BackfillResult",
    "BackfillSource",
    "FieldFill",
    "backfill_dispatch_order",
    "backfill_dispatch_quantities",
    "backfill_fields",
    "backfill_vendor_inspection",
    "backfill_vendor_issue",
    "lookup_upstream",
    "resolve_issue_line_quantity",
    "resolve_line_quantity",
    # Identifiers
    "ensure_unique_vendor_batch_number",
    "next_dc_number",
    "next_indent_number",
    "next_order_ack_number",
    "next_vendor_batch_number",
    # Live stock
    "DerivedViewCache",
    "LiveStockEntry",
    "LiveStockInputs",
    "build_live_stock_map",
    # Stock resolver
    "MatchStage",
    "StockResolution",
    "StockResolver",
    "choose_best_stock",
    # Tracer
    "traced_engine",
]

logger.debug("engines_package_loaded", extra={"engine_count": 5})
