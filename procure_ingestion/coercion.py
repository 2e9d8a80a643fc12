"""
Boundary coercion: raw document values to typed values. ZERO I/O.

Store documents are hand-entered and inconsistently typed (numbers, numeric
strings, blanks).  Everything is coerced here, once, so the engines only
ever see ``Decimal`` quantities and stripped strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any


@dataclass(frozen=True)
class CoercionResult:
    """Result of coercing a raw value to a quantity."""

    success: bool
    value: Decimal | None = None
    error: str | None = None


def is_blank(value: Any) -> bool:
    """None, or a string that is empty after stripping."""
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def coerce_quantity(raw: Any) -> CoercionResult:
    """
    Coerce a raw value to a Decimal quantity. Pure function.

    Blank values succeed with ``value=None`` (absent, not zero).  Booleans,
    non-numeric strings and non-finite numbers fail.
    """
    if is_blank(raw):
        return CoercionResult(success=True, value=None)
    if isinstance(raw, bool):
        return CoercionResult(success=False, error=f"Cannot coerce boolean to quantity: {raw!r}")
    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, int):
        value = Decimal(raw)
    elif isinstance(raw, float):
        value = Decimal(str(raw))
    elif isinstance(raw, str):
        try:
            value = Decimal(raw.strip())
        except InvalidOperation:
            return CoercionResult(success=False, error=f"Cannot coerce to quantity: {raw!r}")
    else:
        return CoercionResult(
            success=False, error=f"Unsupported quantity type {type(raw).__name__}"
        )
    if not value.is_finite():
        return CoercionResult(success=False, error=f"Quantity is not finite: {raw!r}")
    return CoercionResult(success=True, value=value)


def coerce_text(raw: Any) -> str:
    """Stripped string form; None becomes ''."""
    if raw is None:
        return ""
    return str(raw).strip()


def coerce_int(raw: Any, default: int = 0) -> int:
    """Integer form of a sequence-like value; ``default`` when unusable."""
    result = coerce_quantity(raw)
    if not result.success or result.value is None:
        return default
    return int(result.value)
