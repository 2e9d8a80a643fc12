"""
Module: procure_engines.identifiers
Responsibility:
    Pure generators for the human-facing document numbers of the pipeline:
    indent numbers, order-acknowledgement numbers, delivery-challan numbers
    and vendor batch numbers.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The current year is passed
    in by the caller (from an injected Clock), never read here.

Invariants enforced:
    - Every generator is max + 1 over the sequence numbers it can parse from
      existing identifiers, never count + 1, so deletions do not cause reuse
      of a number that still exists.
    - Vendor batch numbers are checked against every existing value and
      bumped while they collide, at most ``max_attempts`` times.

Failure modes:
    - DuplicateSequenceExhaustedError when no free vendor batch number is
      found within ``max_attempts``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from procure_kernel.domain.keys import norm
from procure_kernel.exceptions import DuplicateSequenceExhaustedError
from procure_kernel.logging_config import get_logger

logger = get_logger("engines.identifiers")

DEFAULT_RETRY_LIMIT = 100


def max_sequence(existing: Iterable[str], pattern: re.Pattern[str]) -> int:
    """Largest integer captured by ``pattern`` (group 1) across ``existing``; 0 if none."""
    highest = 0
    for value in existing:
        match = pattern.fullmatch((value or "").strip())
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


def _serial_pattern(prefix: str) -> re.Pattern[str]:
    return re.compile(re.escape(prefix) + r"(\d+)")


def next_indent_number(existing: Iterable[str], prefix: str = "S-8/25-", width: int = 2) -> str:
    """``S-8/25-01``, ``S-8/25-02``, ... over the existing indent numbers."""
    serial = max_sequence(existing, _serial_pattern(prefix)) + 1
    return f"{prefix}{serial:0{width}d}"


def next_dc_number(existing: Iterable[str], prefix: str = "Vendor/", width: int = 2) -> str:
    """``Vendor/01``, ``Vendor/02``, ... over the existing challan numbers."""
    serial = max_sequence(existing, _serial_pattern(prefix)) + 1
    return f"{prefix}{serial:0{width}d}"


def next_order_ack_number(
    existing: Iterable[tuple[str, str]],
    requested_by: str,
    prefix: str = "Stock ",
    width: int = 2,
) -> str:
    """
    Next stock order-acknowledgement number for one requester.

    ``existing`` holds (requested_by, order_ack_number) pairs; only the
    requester's own numbers count.  Matching of the prefix is
    case-insensitive and tolerant of extra spaces (``stock  3``).
    """
    pattern = re.compile(re.escape(prefix.strip()) + r"\s*(\d+)", re.IGNORECASE)
    own = (oa for who, oa in existing if norm(who) == norm(requested_by))
    serial = max_sequence(own, pattern) + 1
    return f"{prefix}{serial:0{width}d}"


def _vendor_batch_pattern(year: str, marker: str) -> re.Pattern[str]:
    return re.compile(re.escape(f"{year}/{marker}") + r"(\d+)")


def ensure_unique_vendor_batch_number(
    candidate: str,
    existing: Iterable[str],
    year: str,
    marker: str = "V",
    max_attempts: int = DEFAULT_RETRY_LIMIT,
) -> str:
    """
    Return ``candidate`` or, while it collides with an existing value, the
    next ``{year}/{marker}{N+1}``.

    Raises:
        DuplicateSequenceExhaustedError: if still colliding after
            ``max_attempts`` increments, or the colliding candidate is not in
            the current year's format and cannot be incremented.
    """
    taken = {norm(value) for value in existing if value}
    pattern = _vendor_batch_pattern(year, marker)
    attempts = 0
    while norm(candidate) in taken:
        match = pattern.fullmatch(candidate.strip())
        if match is None or attempts >= max_attempts:
            logger.error(
                "vendor_batch_sequence_exhausted",
                extra={"candidate": candidate, "attempts": attempts},
            )
            raise DuplicateSequenceExhaustedError(candidate, attempts)
        attempts += 1
        candidate = f"{year}/{marker}{int(match.group(1)) + 1}"
    if attempts:
        logger.info(
            "vendor_batch_collision_resolved",
            extra={"vendor_batch_number": candidate, "attempts": attempts},
        )
    return candidate


def next_vendor_batch_number(
    existing: Iterable[str],
    year: str,
    marker: str = "V",
    max_attempts: int = DEFAULT_RETRY_LIMIT,
) -> str:
    """
    ``{yy}/V{N}`` with N one above the highest current-year sequence.

    Only numbers of the given year count towards the maximum; every
    existing value counts towards collision checks.
    """
    values = [value for value in existing if value]
    candidate = f"{year}/{marker}{max_sequence(values, _vendor_batch_pattern(year, marker)) + 1}"
    return ensure_unique_vendor_batch_number(candidate, values, year, marker, max_attempts)
