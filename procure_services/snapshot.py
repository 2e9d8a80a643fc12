"""
ProcurementSnapshot -- one normalized, immutable view of every collection.

Architecture: procure_services -- imperative shell.
    Raw documents (from a one-shot ``list`` or from live subscriptions) are
    normalized exactly once here, then handed to the pure engines.  The raw
    documents are kept alongside so services can write back only the fields
    they change.

Invariants enforced:
    - Indents are in allocation order; PSIR records are newest first and
      deduplicated; purchase entries are deduplicated (see the normalizer).
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields

from procure_config.schema import CollectionNames
from procure_engines.live_stock import LiveStockInputs
from procure_ingestion.normalizer import RecordNormalizer
from procure_kernel.domain.models import (
    Indent,
    IndentStatus,
    InspectionRecord,
    Item,
    PublishedIndentItem,
    PurchaseEntry,
    PurchaseOrder,
    StockRecord,
    VendorDispatchOrder,
    VendorInspectionRecord,
    VendorIssue,
)
from procure_kernel.store.base import Document, DocumentStore


@dataclass(frozen=True)
class ProcurementSnapshot:
    """Canonical entities for one scope at one point in time."""

    items: tuple[Item, ...] = ()
    stock_records: tuple[StockRecord, ...] = ()
    indents: tuple[Indent, ...] = ()
    open_items: tuple[PublishedIndentItem, ...] = ()
    closed_items: tuple[PublishedIndentItem, ...] = ()
    purchase_orders: tuple[PurchaseOrder, ...] = ()
    purchase_entries: tuple[PurchaseEntry, ...] = ()
    dispatch_orders: tuple[VendorDispatchOrder, ...] = ()
    vendor_inspections: tuple[VendorInspectionRecord, ...] = ()
    inspection_records: tuple[InspectionRecord, ...] = ()
    vendor_issues: tuple[VendorIssue, ...] = ()
    raw: Mapping[str, Sequence[Document]] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_documents(
        cls,
        raw: Mapping[str, Sequence[Document]],
        normalizer: RecordNormalizer,
        collections: CollectionNames | None = None,
    ) -> ProcurementSnapshot:
        """Normalize raw documents keyed by collection name."""
        names = collections or CollectionNames()

        def docs(collection: str) -> Sequence[Document]:
            return raw.get(collection, ())

        return cls(
            items=tuple(normalizer.item(doc) for doc in docs(names.items)),
            stock_records=tuple(normalizer.stock_record(doc) for doc in docs(names.stock_records)),
            indents=normalizer.indents(docs(names.indents)),
            open_items=tuple(
                normalizer.published_item(doc, IndentStatus.OPEN) for doc in docs(names.open_indent_items)
            ),
            closed_items=tuple(
                normalizer.published_item(doc, IndentStatus.CLOSED)
                for doc in docs(names.closed_indent_items)
            ),
            purchase_orders=tuple(normalizer.purchase_order(doc) for doc in docs(names.purchase_orders)),
            purchase_entries=normalizer.purchase_entries(docs(names.purchase_entries)),
            dispatch_orders=tuple(normalizer.dispatch_order(doc) for doc in docs(names.dispatch_orders)),
            vendor_inspections=tuple(
                normalizer.vendor_inspection(doc) for doc in docs(names.vendor_inspections)
            ),
            inspection_records=normalizer.inspection_records(docs(names.inspection_records)),
            vendor_issues=tuple(normalizer.vendor_issue(doc) for doc in docs(names.vendor_issues)),
            raw={name: list(docs(name)) for name in collection_names(names)},
        )

    def live_stock_inputs(self) -> LiveStockInputs:
        return LiveStockInputs(
            stock_records=self.stock_records,
            indents=self.indents,
            purchase_orders=self.purchase_orders,
            open_items=self.open_items,
            closed_items=self.closed_items,
        )

    def raw_document(self, collection: str, document_id: str) -> Document | None:
        for doc in self.raw.get(collection, ()):
            if doc.get("id") == document_id:
                return doc
        return None


def collection_names(collections: CollectionNames) -> tuple[str, ...]:
    """Every store collection name, in declaration order."""
    return tuple(getattr(collections, f.name) for f in fields(collections))


def load_snapshot(
    store: DocumentStore,
    scope: str,
    normalizer: RecordNormalizer,
    collections: CollectionNames | None = None,
) -> ProcurementSnapshot:
    """One-shot read of every collection of a scope."""
    names = collections or CollectionNames()
    raw = {name: store.list(scope, name) for name in collection_names(names)}
    return ProcurementSnapshot.from_documents(raw, normalizer, names)
