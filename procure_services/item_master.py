"""
ItemMasterService -- maintain the item master list.

Item codes are the identity every other stage keys on, so they must be
present and unique (case-insensitively) within a scope.
"""

from __future__ import annotations

from procure_kernel.domain.keys import norm
from procure_kernel.domain.models import Item
from procure_kernel.exceptions import ValidationError
from procure_kernel.logging_config import get_logger
from procure_services.base import StoreBackedService

logger = get_logger("services.item_master")


class ItemMasterService(StoreBackedService):
    """Add, update, delete and list item master entries."""

    def list_items(self) -> tuple[Item, ...]:
        docs = self._store.list(self._scope, self.collections.items)
        return tuple(self._normalizer.item(doc) for doc in docs)

    def _validate(self, code: str, name: str, exclude_id: str | None = None) -> Item:
        code = (code or "").strip()
        name = (name or "").strip()
        if not code or not name:
            raise ValidationError("Item name and item code are required", field="itemCode")
        for existing in self.list_items():
            if existing.document_id != exclude_id and norm(existing.code) == norm(code):
                raise ValidationError(f"Item code {code} already exists", field="itemCode")
        return Item(code=code, name=name)

    def add_item(self, code: str, name: str) -> Item:
        """
        Raises:
            ValidationError: blank name or code, or a duplicate code.
        """
        item = self._validate(code, name)
        document_id = self._add(self.collections.items, self._normalizer.to_document("item", item))
        logger.info("item_added", extra={"scope": self._scope, "item_code": item.code})
        return Item(code=item.code, name=item.name, document_id=document_id)

    def update_item(self, document_id: str, code: str, name: str) -> Item:
        item = self._validate(code, name, exclude_id=document_id)
        self._update(self.collections.items, document_id, self._normalizer.to_document("item", item))
        logger.info(
            "item_updated",
            extra={"scope": self._scope, "item_code": item.code, "document_id": document_id},
        )
        return Item(code=item.code, name=item.name, document_id=document_id)

    def delete_item(self, document_id: str) -> None:
        self._delete(self.collections.items, document_id)
        logger.info("item_deleted", extra={"scope": self._scope, "document_id": document_id})
