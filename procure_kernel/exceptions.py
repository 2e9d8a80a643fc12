"""
Typed Exception Hierarchy for the Procurement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every error the kernel raises is a typed class with a machine-readable
``code`` attribute and structured data. Callers at the UI boundary catch by
type, surface ``str(exc)`` as the user-facing message and use ``code`` for
anything programmatic. Log records of these exceptions carry every public
attribute as ``exc_<name>`` (see logging_config.StructuredFormatter).

Absence is NOT an error: a stock lookup or backfill source that finds no
match resolves to zero or blank and never raises.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProcureKernelError (base)
    |
    +-- ValidationError                    VALIDATION_FAILED
    |   +-- InsufficientStockError         INSUFFICIENT_STOCK
    |
    +-- StoreError                         STORE_ERROR
    |   +-- StoreWriteError                STORE_WRITE_FAILED
    |   |   +-- DocumentNotFoundError      DOCUMENT_NOT_FOUND
    |   +-- SubscriptionClosedError        SUBSCRIPTION_CLOSED
    |
    +-- DuplicateSequenceExhaustedError    DUPLICATE_SEQUENCE_EXHAUSTED
    |
    +-- ConfigurationError                 CONFIG_INVALID
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


class ProcureKernelError(Exception):
    """
    Base exception for all procurement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PROCURE_KERNEL_ERROR"


# Input boundary


class ValidationError(ProcureKernelError):
    """User input rejected at the input boundary."""

    code: str = "VALIDATION_FAILED"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


@dataclass(frozen=True)
class ShortfallLine:
    """One line of an indent that asks for more than the resolved stock."""

    item_code: str
    item_name: str
    requested: Decimal
    available: Decimal


class InsufficientStockError(ValidationError):
    """One or more indent lines request more than the resolved stock."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, shortfalls: tuple[ShortfallLine, ...]):
        self.shortfalls = shortfalls
        details = "; ".join(
            f"{s.item_name} ({s.item_code}): requested {s.requested} "
            f"but only {s.available} available"
            for s in shortfalls
        )
        super().__init__(f"Insufficient stock: {details}", field="items")


# Document store


class StoreError(ProcureKernelError):
    """Base class for document store errors."""

    code: str = "STORE_ERROR"


class StoreWriteError(StoreError):
    """A write to the document store failed."""

    code: str = "STORE_WRITE_FAILED"

    def __init__(self, operation: str, collection: str, reason: str):
        self.operation = operation
        self.collection = collection
        self.reason = reason
        super().__init__(f"{operation} on {collection} failed: {reason}")


class DocumentNotFoundError(StoreWriteError):
    """Update or delete addressed a document id that does not exist."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, operation: str, collection: str, document_id: str):
        self.document_id = document_id
        super().__init__(operation, collection, f"document not found: {document_id}")


class SubscriptionClosedError(StoreError):
    """An operation was attempted on a workspace after it was closed."""

    code: str = "SUBSCRIPTION_CLOSED"

    def __init__(self, scope: str):
        self.scope = scope
        super().__init__(f"Workspace for scope {scope!r} is closed")


# Identifier generation


class DuplicateSequenceExhaustedError(ProcureKernelError):
    """No free sequence number was found within the retry bound."""

    code: str = "DUPLICATE_SEQUENCE_EXHAUSTED"

    def __init__(self, last_candidate: str, attempts: int):
        self.last_candidate = last_candidate
        self.attempts = attempts
        super().__init__(
            f"Could not find a free identifier after {attempts} attempts "
            f"(last tried {last_candidate})"
        )


# Configuration


class ConfigurationError(ProcureKernelError):
    """Settings or alias configuration is invalid."""

    code: str = "CONFIG_INVALID"

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        super().__init__(message)
