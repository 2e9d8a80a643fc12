"""
Module: procure_engines.stock_resolver
Responsibility:
    Resolve the on-hand quantity of an item from a set of stock-ledger
    records, matching the item by code or name with progressively fuzzier
    rules, and picking one record deterministically when several match.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import procure_kernel/domain.

Invariants enforced:
    - Match stages run in fixed priority: exact code, exact name, alpha
      (punctuation-stripped) equality, then substring containment.  The
      first stage with any candidate decides.
    - Tie-break: highest computed stock, then the most recently created
      record (``createdAt``), then the largest record identifier.  The
      choice does not depend on the order of the input records.
    - An unmatched item resolves to zero.  It is never an error.

Failure modes:
    None.  Callers must read a zero as "unknown or none", not as a
    validated stock level.

Usage:
    resolver = StockResolver(stock_records)
    qty = resolver.resolve_stock("X001")
    detail = resolver.resolve(item_code="X001", item_name="Bracket")
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from procure_engines.tracer import traced_engine
from procure_kernel.domain.keys import alpha, norm
from procure_kernel.domain.models import ZERO, StockRecord
from procure_kernel.logging_config import get_logger

logger = get_logger("engines.stock_resolver")


class MatchStage(str, Enum):
    """Which rule matched a stock record to the requested item."""

    CODE = "code"
    NAME = "name"
    ALPHA = "alpha"
    SUBSTRING = "substring"


@dataclass(frozen=True)
class StockResolution:
    """
    Outcome of one stock lookup.

    ``record`` and ``stage`` are None when nothing matched, in which case
    ``quantity`` is zero.
    """

    item_code: str
    quantity: Decimal
    record: StockRecord | None = None
    stage: MatchStage | None = None
    candidate_count: int = 0

    @property
    def resolved(self) -> bool:
        return self.record is not None


def _identifier_key(record: StockRecord) -> tuple[int, int, str]:
    """Sort key for "largest identifier": numeric ids compare numerically
    and rank above non-numeric ones, which compare as text."""
    ident = record.document_id.strip()
    if ident.isdigit():
        return (1, int(ident), ident)
    return (0, 0, ident)


def _rank(record: StockRecord) -> tuple:
    # createdAt is ISO-8601 UTC from the store clock, so text order is time order
    return (
        record.computed_stock,
        record.created_at,
        _identifier_key(record),
        record.item_code,
        record.item_name,
    )


def choose_best_stock(candidates: Iterable[StockRecord]) -> StockRecord | None:
    """
    Pick one record among duplicates for the same item.

    Preconditions:
        candidates may be empty and in any order.
    Postconditions:
        Returns the record with the highest ``computed_stock``; ties go to
        the most recently created record, then the larger identifier.  None
        for an empty input.
    """
    best: StockRecord | None = None
    for record in candidates:
        if best is None or _rank(record) > _rank(best):
            best = record
    return best


class StockResolver:
    """
    Fuzzy item -> stock lookup over an immutable set of stock records.

    Contract:
        Built once per stock snapshot.  Exact-match stages use prebuilt
        indexes; the substring stage scans.

    Guarantees:
        - ``resolve`` never raises for unknown items.
        - Identical record sets (in any order) give identical answers.
    """

    def __init__(self, records: Sequence[StockRecord]):
        self._records = tuple(records)
        self._by_code: dict[str, list[StockRecord]] = {}
        self._by_name: dict[str, list[StockRecord]] = {}
        self._by_alpha: dict[str, list[StockRecord]] = {}
        for record in self._records:
            if norm(record.item_code):
                self._by_code.setdefault(norm(record.item_code), []).append(record)
            if norm(record.item_name):
                self._by_name.setdefault(norm(record.item_name), []).append(record)
            alphas = {alpha(v) for v in (record.item_code, record.item_name, *record.alternate_keys)}
            for key in alphas - {""}:
                self._by_alpha.setdefault(key, []).append(record)

    @property
    def records(self) -> tuple[StockRecord, ...]:
        return self._records

    def _candidates(self, item_code: str, item_name: str | None) -> tuple[MatchStage, list[StockRecord]] | None:
        code = norm(item_code)
        name = norm(item_name) if item_name else code

        if code and code in self._by_code:
            return MatchStage.CODE, self._by_code[code]
        if name and name in self._by_name:
            return MatchStage.NAME, self._by_name[name]

        alpha_hits: list[StockRecord] = []
        for key in {alpha(item_code), alpha(item_name)} - {""}:
            for record in self._by_alpha.get(key, ()):
                if record not in alpha_hits:
                    alpha_hits.append(record)
        if alpha_hits:
            return MatchStage.ALPHA, alpha_hits

        needles = {code, name} - {""}
        substring_hits = [
            record
            for record in self._records
            if any(
                needle in value or value in needle
                for needle in needles
                for value in self._searchable(record)
            )
        ]
        if substring_hits:
            return MatchStage.SUBSTRING, substring_hits
        return None

    @staticmethod
    def _searchable(record: StockRecord) -> list[str]:
        values = (record.item_code, record.item_name, *record.alternate_keys, *record.other_values)
        return [v for v in (norm(value) for value in values) if v]

    @traced_engine("stock_resolver", "1.0", fingerprint_fields=("item_code", "item_name"))
    def resolve(self, *, item_code: str, item_name: str | None = None) -> StockResolution:
        """
        Resolve the stock of one item.

        Postconditions:
            ``quantity`` is the chosen record's computed stock, or zero when
            nothing matched.
        """
        found = self._candidates(item_code, item_name)
        if found is None:
            logger.debug("stock_unresolved", extra={"item_code": item_code, "item_name": item_name})
            return StockResolution(item_code=item_code, quantity=ZERO)

        stage, candidates = found
        best = choose_best_stock(candidates)
        if len(candidates) > 1:
            logger.debug(
                "stock_tie_break_applied",
                extra={
                    "item_code": item_code,
                    "stage": stage.value,
                    "candidates": len(candidates),
                    "chosen_document_id": best.document_id,
                },
            )
        return StockResolution(
            item_code=item_code,
            quantity=best.computed_stock,
            record=best,
            stage=stage,
            candidate_count=len(candidates),
        )

    def resolve_stock(self, item_code: str, item_name: str | None = None) -> Decimal:
        """Shorthand for ``resolve(...).quantity``."""
        return self.resolve(item_code=item_code, item_name=item_name).quantity
