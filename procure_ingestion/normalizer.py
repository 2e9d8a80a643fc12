"""
Record normalizer: raw store documents to canonical entities.

Responsibility:
    Field-name reconciliation happens here and nowhere else.  Each raw key
    spelling accepted for a canonical field is listed in the alias table
    (``procure_config/field_aliases.yaml``); the normalizer reads a document
    once and returns a frozen entity from ``procure_kernel.domain.models``.

Architecture position:
    Ingestion -- boundary between the document store and the pure engines.
    Imports kernel domain types and config; never imports services.

Invariants enforced:
    - Quantities are Decimal; unparseable values are skipped (the next alias
      is tried) and logged as ``quantity_coercion_failed``.
    - ``indents()`` returns indents in allocation order: by explicit
      sequence number, then creation timestamp.  Ties keep store order.
    - ``purchase_entries()`` keeps the first entry per order/item key.

Failure modes:
    - ConfigurationError if the alias table lacks a rule the normalizer
      needs.  Malformed documents never raise; missing values become blank
      or zero.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Mapping
from decimal import Decimal
from enum import Enum
from typing import Any

from procure_config.loader import load_field_aliases
from procure_config.schema import FieldAliases
from procure_ingestion.coercion import coerce_int, coerce_quantity, coerce_text, is_blank
from procure_kernel.domain.keys import norm, order_item_key
from procure_kernel.domain.models import (
    ZERO,
    DispatchLine,
    Indent,
    IndentLine,
    IndentStatus,
    InspectionLine,
    InspectionRecord,
    Item,
    POLine,
    PublishedIndentItem,
    PurchaseEntry,
    PurchaseOrder,
    StockRecord,
    VendorDispatchOrder,
    VendorInspectionRecord,
    VendorIssue,
)
from procure_kernel.logging_config import get_logger
from procure_kernel.store.base import CREATED_AT_FIELD, ID_FIELD, UPDATED_AT_FIELD

logger = get_logger("ingestion.normalizer")

_METADATA_KEYS = frozenset({ID_FIELD, CREATED_AT_FIELD, UPDATED_AT_FIELD})

# Entity whose ``lines`` field holds each child entity.
LINE_ENTITIES: dict[str, str] = {
    "indent": "indent_line",
    "purchase_order": "po_line",
    "dispatch_order": "dispatch_line",
    "vendor_issue": "dispatch_line",
    "inspection_record": "inspection_line",
}


class RecordNormalizer:
    """
    Maps raw documents to canonical entities using a FieldAliases table.

    Contract:
        Every public method takes a raw document (a mapping as delivered by
        the store) and returns a frozen entity.  No method mutates its input.
    """

    def __init__(self, aliases: FieldAliases | None = None):
        self._aliases = aliases or load_field_aliases()

    @property
    def aliases(self) -> FieldAliases:
        return self._aliases

    # -- field access ------------------------------------------------------

    def raw(self, entity: str, field_name: str, doc: Mapping[str, Any]) -> Any:
        """First non-blank raw value among the field's aliases, else None."""
        for key in self._aliases.rule(entity, field_name).keys:
            value = doc.get(key)
            if not is_blank(value):
                return value
        return None

    def text(self, entity: str, field_name: str, doc: Mapping[str, Any]) -> str:
        return coerce_text(self.raw(entity, field_name, doc))

    def quantity(self, entity: str, field_name: str, doc: Mapping[str, Any]) -> Decimal | None:
        """
        Quantity for a field, or None when no alias carries a usable number.

        ``first`` rules return the first alias that coerces; ``sum`` rules add
        every alias that coerces.
        """
        rule = self._aliases.rule(entity, field_name)
        total: Decimal | None = None
        for key in rule.keys:
            if key not in doc:
                continue
            result = coerce_quantity(doc[key])
            if not result.success:
                logger.warning(
                    "quantity_coercion_failed",
                    extra={"entity": entity, "field": field_name, "key": key, "error": result.error},
                )
                continue
            if result.value is None:
                continue
            if rule.combine == "first":
                return result.value
            total = result.value if total is None else total + result.value
        return total

    def quantity_or_zero(self, entity: str, field_name: str, doc: Mapping[str, Any]) -> Decimal:
        value = self.quantity(entity, field_name, doc)
        return ZERO if value is None else value

    def children(self, entity: str, doc: Mapping[str, Any]) -> list[Mapping[str, Any]]:
        value = self.raw(entity, "lines", doc)
        if not isinstance(value, list):
            return []
        return [child for child in value if isinstance(child, Mapping)]

    # -- entities ----------------------------------------------------------

    def item(self, doc: Mapping[str, Any]) -> Item:
        return Item(
            code=self.text("item", "code", doc),
            name=self.text("item", "name", doc),
            document_id=coerce_text(doc.get(ID_FIELD)),
        )

    def stock_record(self, doc: Mapping[str, Any]) -> StockRecord:
        item_code = self.text("stock_record", "item_code", doc)
        item_name = self.text("stock_record", "item_name", doc)

        identity_keys: list[str] = []
        for field_name in ("item_code", "item_name"):
            identity_keys.extend(self._aliases.rule("stock_record", field_name).keys)
        alternate_keys = tuple(
            value
            for value in (coerce_text(doc.get(key)) for key in identity_keys)
            if value and value not in (item_code, item_name)
        )
        other_values = tuple(
            coerce_text(value)
            for key, value in doc.items()
            if key not in _METADATA_KEYS
            and key not in identity_keys
            and isinstance(value, str)
            and value.strip()
        )

        return StockRecord(
            item_code=item_code,
            item_name=item_name,
            stock_quantity=self.quantity_or_zero("stock_record", "stock_quantity", doc),
            incoming_quantity=self.quantity_or_zero("stock_record", "incoming_quantity", doc),
            issued_quantity=self.quantity_or_zero("stock_record", "issued_quantity", doc),
            closing_stock=self.quantity("stock_record", "closing_stock", doc),
            document_id=coerce_text(doc.get(ID_FIELD)),
            alternate_keys=alternate_keys,
            other_values=other_values,
            created_at=coerce_text(doc.get(CREATED_AT_FIELD)),
        )

    def indent_line(self, doc: Mapping[str, Any]) -> IndentLine:
        return IndentLine(
            item_code=self.text("indent_line", "item_code", doc),
            item_name=self.text("indent_line", "item_name", doc),
            quantity=self.quantity_or_zero("indent_line", "quantity", doc),
        )

    def indent(self, doc: Mapping[str, Any]) -> Indent:
        return Indent(
            indent_number=self.text("indent", "indent_number", doc),
            indent_date=self.text("indent", "indent_date", doc),
            requested_by=self.text("indent", "requested_by", doc),
            order_ack_number=self.text("indent", "order_ack_number", doc),
            lines=tuple(self.indent_line(line) for line in self.children("indent", doc)),
            sequence_number=coerce_int(self.raw("indent", "sequence_number", doc)),
            document_id=coerce_text(doc.get(ID_FIELD)),
            created_at=coerce_text(doc.get(CREATED_AT_FIELD)),
        )

    def indents(self, docs: Iterable[Mapping[str, Any]]) -> tuple[Indent, ...]:
        """Indents in allocation order (stable sort, store order breaks ties)."""
        normalized = [self.indent(doc) for doc in docs]
        normalized.sort(key=lambda indent: (indent.sequence_number, indent.created_at))
        return tuple(normalized)

    def published_item(self, doc: Mapping[str, Any], default_status: IndentStatus) -> PublishedIndentItem:
        raw_status = norm(self.raw("published_item", "status", doc))
        status = default_status
        for candidate in IndentStatus:
            if raw_status == norm(candidate.value):
                status = candidate
        return PublishedIndentItem(
            indent_number=self.text("published_item", "indent_number", doc),
            indent_date=self.text("published_item", "indent_date", doc),
            requested_by=self.text("published_item", "requested_by", doc),
            order_ack_number=self.text("published_item", "order_ack_number", doc),
            item_code=self.text("published_item", "item_code", doc),
            item_name=self.text("published_item", "item_name", doc),
            quantity=self.quantity_or_zero("published_item", "quantity", doc),
            stock=self.quantity_or_zero("published_item", "stock", doc),
            available_for_this_indent=self.quantity_or_zero(
                "published_item", "available_for_this_indent", doc
            ),
            allocated=self.quantity_or_zero("published_item", "allocated", doc),
            status=status,
        )

    def published_items(
        self,
        open_docs: Iterable[Mapping[str, Any]],
        closed_docs: Iterable[Mapping[str, Any]],
    ) -> tuple[PublishedIndentItem, ...]:
        """Open items first, then closed, each in store order."""
        return tuple(
            [self.published_item(doc, IndentStatus.OPEN) for doc in open_docs]
            + [self.published_item(doc, IndentStatus.CLOSED) for doc in closed_docs]
        )

    def po_line(self, doc: Mapping[str, Any]) -> POLine:
        return POLine(
            item_code=self.text("po_line", "item_code", doc),
            item_name=self.text("po_line", "item_name", doc),
            quantity=self.quantity_or_zero("po_line", "quantity", doc),
            planned_quantity=self.quantity("po_line", "planned_quantity", doc),
            purchase_quantity=self.quantity("po_line", "purchase_quantity", doc),
        )

    def purchase_order(self, doc: Mapping[str, Any]) -> PurchaseOrder:
        return PurchaseOrder(
            po_number=self.text("purchase_order", "po_number", doc),
            supplier=self.text("purchase_order", "supplier", doc),
            lines=tuple(self.po_line(line) for line in self.children("purchase_order", doc)),
            indent_number=self.text("purchase_order", "indent_number", doc),
            vendor_batch_number=self.text("purchase_order", "vendor_batch_number", doc),
            document_id=coerce_text(doc.get(ID_FIELD)),
        )

    def purchase_entry(self, doc: Mapping[str, Any]) -> PurchaseEntry:
        return PurchaseEntry(
            indent_number=self.text("purchase_entry", "indent_number", doc),
            item_code=self.text("purchase_entry", "item_code", doc),
            item_name=self.text("purchase_entry", "item_name", doc),
            po_number=self.text("purchase_entry", "po_number", doc),
            supplier=self.text("purchase_entry", "supplier", doc),
            order_ack_number=self.text("purchase_entry", "order_ack_number", doc),
            quantity=self.quantity("purchase_entry", "quantity", doc),
            planned_qty=self.quantity("purchase_entry", "planned_qty", doc),
            purchase_qty=self.quantity_or_zero("purchase_entry", "purchase_qty", doc),
            current_stock=self.quantity_or_zero("purchase_entry", "current_stock", doc),
            indent_status=self.text("purchase_entry", "indent_status", doc),
            received_qty=self.quantity_or_zero("purchase_entry", "received_qty", doc),
            ok_qty=self.quantity_or_zero("purchase_entry", "ok_qty", doc),
            rejected_qty=self.quantity_or_zero("purchase_entry", "rejected_qty", doc),
            document_id=coerce_text(doc.get(ID_FIELD)),
        )

    def purchase_entries(self, docs: Iterable[Mapping[str, Any]]) -> tuple[PurchaseEntry, ...]:
        """Purchase entries deduplicated by indent/item key, first wins."""
        seen: set[str] = set()
        kept: list[PurchaseEntry] = []
        for doc in docs:
            entry = self.purchase_entry(doc)
            key = order_item_key(entry.indent_number, entry.item_code)
            if key in seen:
                logger.warning(
                    "purchase_entry_duplicate_dropped",
                    extra={"key": key, "document_id": entry.document_id},
                )
                continue
            seen.add(key)
            kept.append(entry)
        return tuple(kept)

    def dispatch_line(self, doc: Mapping[str, Any]) -> DispatchLine:
        return DispatchLine(
            item_code=self.text("dispatch_line", "item_code", doc),
            item_name=self.text("dispatch_line", "item_name", doc),
            quantity=self.quantity_or_zero("dispatch_line", "quantity", doc),
            planned_quantity=self.quantity("dispatch_line", "planned_quantity", doc),
            received_qty=self.quantity_or_zero("dispatch_line", "received_qty", doc),
            ok_qty=self.quantity_or_zero("dispatch_line", "ok_qty", doc),
            rework_qty=self.quantity_or_zero("dispatch_line", "rework_qty", doc),
            rejected_qty=self.quantity_or_zero("dispatch_line", "rejected_qty", doc),
            grn_number=self.text("dispatch_line", "grn_number", doc),
        )

    def dispatch_order(self, doc: Mapping[str, Any]) -> VendorDispatchOrder:
        return VendorDispatchOrder(
            po_number=self.text("dispatch_order", "po_number", doc),
            indent_number=self.text("dispatch_order", "indent_number", doc),
            order_ack_number=self.text("dispatch_order", "order_ack_number", doc),
            batch_number=self.text("dispatch_order", "batch_number", doc),
            vendor_batch_number=self.text("dispatch_order", "vendor_batch_number", doc),
            vendor_name=self.text("dispatch_order", "vendor_name", doc),
            dc_number=self.text("dispatch_order", "dc_number", doc),
            order_date=self.text("dispatch_order", "order_date", doc),
            lines=tuple(self.dispatch_line(line) for line in self.children("dispatch_order", doc)),
            document_id=coerce_text(doc.get(ID_FIELD)),
        )

    def vendor_issue(self, doc: Mapping[str, Any]) -> VendorIssue:
        return VendorIssue(
            dc_number=self.text("vendor_issue", "dc_number", doc),
            po_number=self.text("vendor_issue", "po_number", doc),
            issue_date=self.text("vendor_issue", "issue_date", doc),
            vendor_name=self.text("vendor_issue", "vendor_name", doc),
            order_ack_number=self.text("vendor_issue", "order_ack_number", doc),
            batch_number=self.text("vendor_issue", "batch_number", doc),
            vendor_batch_number=self.text("vendor_issue", "vendor_batch_number", doc),
            indent_number=self.text("vendor_issue", "indent_number", doc),
            lines=tuple(self.dispatch_line(line) for line in self.children("vendor_issue", doc)),
            document_id=coerce_text(doc.get(ID_FIELD)),
        )

    def inspection_line(self, doc: Mapping[str, Any]) -> InspectionLine:
        return InspectionLine(
            item_code=self.text("inspection_line", "item_code", doc),
            item_name=self.text("inspection_line", "item_name", doc),
            received_qty=self.quantity_or_zero("inspection_line", "received_qty", doc),
            ok_qty=self.quantity_or_zero("inspection_line", "ok_qty", doc),
            rejected_qty=self.quantity_or_zero("inspection_line", "rejected_qty", doc),
        )

    def inspection_record(self, doc: Mapping[str, Any]) -> InspectionRecord:
        return InspectionRecord(
            po_number=self.text("inspection_record", "po_number", doc),
            indent_number=self.text("inspection_record", "indent_number", doc),
            order_ack_number=self.text("inspection_record", "order_ack_number", doc),
            batch_number=self.text("inspection_record", "batch_number", doc),
            vendor_batch_number=self.text("inspection_record", "vendor_batch_number", doc),
            supplier=self.text("inspection_record", "supplier", doc),
            received_date=self.text("inspection_record", "received_date", doc),
            lines=tuple(
                self.inspection_line(line) for line in self.children("inspection_record", doc)
            ),
            document_id=coerce_text(doc.get(ID_FIELD)),
            created_at=coerce_text(doc.get(CREATED_AT_FIELD)),
        )

    def inspection_records(self, docs: Iterable[Mapping[str, Any]]) -> tuple[InspectionRecord, ...]:
        """
        PSIR records newest first, one per indent/PO pair.

        The in-house inspection form may save the same receipt more than
        once; the most recently created copy is authoritative.
        """
        records = sorted(
            (self.inspection_record(doc) for doc in docs),
            key=lambda record: record.created_at,
            reverse=True,
        )
        seen: set[str] = set()
        kept: list[InspectionRecord] = []
        for record in records:
            key = f"{norm(record.indent_number)}-{norm(record.po_number)}"
            if key in seen:
                continue
            seen.add(key)
            kept.append(record)
        return tuple(kept)

    def vendor_inspection(self, doc: Mapping[str, Any]) -> VendorInspectionRecord:
        return VendorInspectionRecord(
            po_number=self.text("vendor_inspection", "po_number", doc),
            item_code=self.text("vendor_inspection", "item_code", doc),
            item_name=self.text("vendor_inspection", "item_name", doc),
            indent_number=self.text("vendor_inspection", "indent_number", doc),
            order_ack_number=self.text("vendor_inspection", "order_ack_number", doc),
            batch_number=self.text("vendor_inspection", "batch_number", doc),
            vendor_batch_number=self.text("vendor_inspection", "vendor_batch_number", doc),
            vendor_name=self.text("vendor_inspection", "vendor_name", doc),
            dc_number=self.text("vendor_inspection", "dc_number", doc),
            invoice_dc_number=self.text("vendor_inspection", "invoice_dc_number", doc),
            received_date=self.text("vendor_inspection", "received_date", doc),
            qty_received=self.quantity_or_zero("vendor_inspection", "qty_received", doc),
            ok_qty=self.quantity_or_zero("vendor_inspection", "ok_qty", doc),
            rework_qty=self.quantity_or_zero("vendor_inspection", "rework_qty", doc),
            reject_qty=self.quantity_or_zero("vendor_inspection", "reject_qty", doc),
            grn_number=self.text("vendor_inspection", "grn_number", doc),
            remarks=self.text("vendor_inspection", "remarks", doc),
            document_id=coerce_text(doc.get(ID_FIELD)),
        )

    # -- write-back --------------------------------------------------------

    def field_key(self, entity: str, field_name: str) -> str:
        """Raw key a canonical field is written under."""
        return self._aliases.primary_key(entity, field_name)

    def source_key(self, entity: str, field_name: str, doc: Mapping[str, Any]) -> str:
        """Raw key the field was read from in ``doc``; the write key if none."""
        for key in self._aliases.rule(entity, field_name).keys:
            if not is_blank(doc.get(key)):
                return key
        return self.field_key(entity, field_name)

    def to_document(self, entity: str, obj: Any) -> dict[str, Any]:
        """
        Render a canonical entity as a store document.

        Fields without an alias rule (document ids, timestamps, search
        helpers) are left out; the store owns ``id`` and the timestamps.
        """
        doc: dict[str, Any] = {}
        for f in dataclasses.fields(obj):
            if not self._aliases.has_rule(entity, f.name):
                continue
            value = getattr(obj, f.name)
            if f.name == "lines":
                child_entity = LINE_ENTITIES[entity]
                value = [self.to_document(child_entity, line) for line in value]
            elif isinstance(value, Enum):
                value = value.value
            elif value is None:
                continue
            doc[self.field_key(entity, f.name)] = value
        return doc
