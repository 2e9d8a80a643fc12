"""Identifier normalization shared by ingestion, engines and services."""

import re
from typing import Any

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


def norm(value: Any) -> str:
    """Trimmed, upper-cased string form. None becomes ''."""
    if value is None:
        return ""
    return str(value).strip().upper()


def alpha(value: Any) -> str:
    """``norm`` with every non-alphanumeric character removed."""
    return _NON_ALNUM.sub("", norm(value))


def order_item_key(order_id: Any, item_code: Any) -> str:
    """Lookup key ``ORDER|ITEM`` used by the live-stock map and dedup passes.

    An empty item code yields the order-only fallback key ``ORDER|``.
    """
    return f"{norm(order_id)}|{norm(item_code)}"
