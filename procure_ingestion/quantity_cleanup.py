"""
Cleanup of legacy quantity fields on inspection documents.

Older PSIR and VSIR documents carry a signed or text ``poQty`` and a stale
``okQty`` at document and line level.  ``plan_quantity_cleanup`` computes
the partial update that normalizes one document: ``poQty`` becomes its
absolute numeric value (or is removed when blank or non-numeric) and
``okQty`` is removed.  A value that already reads as a non-negative
number is left as stored, so a second pass finds nothing to do.  Pure: the
caller decides whether to write.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from procure_ingestion.coercion import coerce_quantity
from procure_kernel.store.base import DELETE_FIELD

PLANNED_QTY_KEY = "poQty"
STALE_OK_KEY = "okQty"
LINES_KEY = "items"


def normalize_planned_qty(value: Any) -> Decimal | None:
    """Absolute value of a numeric quantity; None when blank or non-numeric."""
    result = coerce_quantity(value)
    if not result.success or result.value is None:
        return None
    return abs(result.value)


def _is_clean(value: Any) -> bool:
    """A non-negative number, or a string ingestion reads as one."""
    result = coerce_quantity(value)
    return result.success and result.value is not None and result.value >= 0


def _clean_line(line: Mapping[str, Any]) -> dict[str, Any]:
    cleaned = dict(line)
    if PLANNED_QTY_KEY in cleaned and not _is_clean(cleaned[PLANNED_QTY_KEY]):
        qty = normalize_planned_qty(cleaned[PLANNED_QTY_KEY])
        if qty is None:
            del cleaned[PLANNED_QTY_KEY]
        else:
            cleaned[PLANNED_QTY_KEY] = qty
    cleaned.pop(STALE_OK_KEY, None)
    return cleaned


def plan_quantity_cleanup(document: Mapping[str, Any]) -> dict[str, Any] | None:
    """
    Partial update for one document, or None when it is already clean.

    Postconditions:
        Removed keys map to DELETE_FIELD.  ``items`` is included only when a
        line actually changed.
    """
    updates: dict[str, Any] = {}

    if PLANNED_QTY_KEY in document and not _is_clean(document[PLANNED_QTY_KEY]):
        qty = normalize_planned_qty(document[PLANNED_QTY_KEY])
        updates[PLANNED_QTY_KEY] = DELETE_FIELD if qty is None else qty

    if STALE_OK_KEY in document:
        updates[STALE_OK_KEY] = DELETE_FIELD

    lines = document.get(LINES_KEY)
    if isinstance(lines, list):
        cleaned = [_clean_line(line) if isinstance(line, Mapping) else line for line in lines]
        if cleaned != lines:
            updates[LINES_KEY] = cleaned

    return updates or None
