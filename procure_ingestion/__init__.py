"""
Store-boundary ingestion: raw documents in, canonical entities out.

All field-name reconciliation and value coercion happens in this package.
"""

from procure_ingestion.coercion import CoercionResult, coerce_quantity, coerce_text
from procure_ingestion.normalizer import RecordNormalizer

__all__ = [
    "CoercionResult",
    "RecordNormalizer",
    "coerce_quantity",
    "coerce_text",
]
