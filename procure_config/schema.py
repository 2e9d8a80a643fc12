"""
Configuration Schema (``procure_config.schema``).

Responsibility
--------------
Typed settings for the procurement core: identifier formats, retry bounds,
store collection names, and the field-alias table that drives ingestion.

Invariants enforced
-------------------
* Every prefix is non-empty; ``serial_width`` and ``sequence_retry_limit``
  are positive.
* Every collection name is non-empty and unique.
* Each alias rule lists at least one raw key and combines them either as
  ``first`` (first present, non-blank value wins) or ``sum`` (all present
  numeric values are added).

Failure modes
-------------
* ``ConfigurationError`` from ``__post_init__`` on any violation.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields

from procure_kernel.exceptions import ConfigurationError
from procure_kernel.logging_config import get_logger

logger = get_logger("config.schema")

VALID_COMBINE_MODES = {"first", "sum"}


@dataclass(frozen=True)
class CollectionNames:
    """Store collection names for each pipeline stage."""

    stock_records: str = "stock-records"
    indents: str = "indentData"
    open_indent_items: str = "openIndentItems"
    closed_indent_items: str = "closedIndentItems"
    purchase_orders: str = "purchaseOrders"
    purchase_entries: str = "purchaseData"
    dispatch_orders: str = "vendorDeptData"
    vendor_inspections: str = "vsri-records"
    inspection_records: str = "psirData"
    vendor_issues: str = "vendorIssueData"
    items: str = "itemMaster"

    def __post_init__(self):
        names = [getattr(self, f.name) for f in fields(self)]
        if any(not name for name in names):
            raise ConfigurationError("collection names cannot be empty", key="collections")
        if len(set(names)) != len(names):
            raise ConfigurationError("collection names must be unique", key="collections")


@dataclass
class ProcurementSettings:
    """
    Settings for the procurement core.

    Field defaults reproduce the numbering the shop floor already uses:

        settings = ProcurementSettings(
            indent_number_prefix="S-9/26-",
            **load_yaml_file(path).get("procurement", {}),
        )
    """

    # Identifier formats
    indent_number_prefix: str = "S-8/25-"
    order_ack_prefix: str = "Stock "
    dc_number_prefix: str = "Vendor/"
    vendor_batch_marker: str = "V"
    serial_width: int = 2

    # Bounded retry for identifier collisions
    sequence_retry_limit: int = 100

    # Reject indents whose lines exceed resolved stock
    enforce_stock_on_indent: bool = True

    collections: CollectionNames = field(default_factory=CollectionNames)

    def __post_init__(self):
        for name in ("indent_number_prefix", "order_ack_prefix", "dc_number_prefix", "vendor_batch_marker"):
            if not getattr(self, name):
                raise ConfigurationError(f"{name} cannot be empty", key=name)
        if self.serial_width <= 0:
            raise ConfigurationError("serial_width must be positive", key="serial_width")
        if self.sequence_retry_limit <= 0:
            raise ConfigurationError(
                "sequence_retry_limit must be positive", key="sequence_retry_limit"
            )

        logger.info(
            "procurement_settings_initialized",
            extra={
                "indent_number_prefix": self.indent_number_prefix,
                "order_ack_prefix": self.order_ack_prefix,
                "dc_number_prefix": self.dc_number_prefix,
                "sequence_retry_limit": self.sequence_retry_limit,
                "enforce_stock_on_indent": self.enforce_stock_on_indent,
            },
        )


@dataclass(frozen=True)
class FieldRule:
    """Raw document keys accepted for one canonical field."""

    keys: tuple[str, ...]
    combine: str = "first"

    def __post_init__(self):
        if not self.keys:
            raise ConfigurationError("alias rule needs at least one key")
        if self.combine not in VALID_COMBINE_MODES:
            raise ConfigurationError(
                f"combine must be one of {sorted(VALID_COMBINE_MODES)}, got '{self.combine}'"
            )

    @property
    def primary(self) -> str:
        """Key used when writing the field back to a document."""
        return self.keys[0]


@dataclass(frozen=True)
class FieldAliases:
    """entity name -> canonical field name -> FieldRule."""

    entities: dict[str, dict[str, FieldRule]]

    def rule(self, entity: str, field_name: str) -> FieldRule:
        try:
            return self.entities[entity][field_name]
        except KeyError:
            raise ConfigurationError(
                f"no alias rule for {entity}.{field_name}", key=f"{entity}.{field_name}"
            ) from None

    def has_rule(self, entity: str, field_name: str) -> bool:
        return field_name in self.entities.get(entity, {})

    def primary_key(self, entity: str, field_name: str) -> str:
        return self.rule(entity, field_name).primary
