"""
procure_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure engines (procure_engines/)
    with the document store, the record normalizer and the clock.  This is
    the only layer that holds a store, a subscription or wall-clock time.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        procure_services/  -> procure_engines/    (allowed)
        procure_services/  -> procure_ingestion/  (allowed)
        procure_services/  -> procure_kernel/     (allowed)
        procure_engines/   -> procure_services/   (FORBIDDEN)
        procure_kernel/    -> procure_services/   (FORBIDDEN)

Failure modes:
    - ValidationError / InsufficientStockError at the input boundary.
    - StoreWriteError, logged and re-raised, from any write.
"""

from procure_kernel.logging_config import get_logger

logger = get_logger("services")

from procure_services.backfill_service import BackfillRun, BackfillService
from procure_services.indent_service import IndentService
from procure_services.item_master import ItemMasterService
from procure_services.purchase_sync import (
    DispatchReceiptChange,
    EntryChange,
    PurchaseSyncService,
    plan_dispatch_receipt_sync,
    plan_inspection_sync,
    plan_stock_sync,
)
from procure_services.snapshot import ProcurementSnapshot, load_snapshot
from procure_services.workspace import ProcurementWorkspace

__all__ = [
    "BackfillRun",
    "BackfillService",
    "DispatchReceiptChange",
    "EntryChange",
    "IndentService",
    "ItemMasterService",
    "ProcurementSnapshot",
    "ProcurementWorkspace",
    "PurchaseSyncService",
    "load_snapshot",
    "plan_dispatch_receipt_sync",
    "plan_inspection_sync",
    "plan_stock_sync",
]
