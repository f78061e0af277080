"""
Fact Store.

Read-only lookup of atomic arithmetic facts by id or by query filter.

Canonical ids are "<op>-<a>-<b>" with op in add | sub | mult | div, so any
well-formed id can also be materialised without a store (fact_from_id).
Doubling is stored as mult-<n>-2 and halving as div-<n>-2.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Iterator
from typing import Protocol, runtime_checkable

from loguru import logger

from src.core.errors import InvalidFactId
from src.core.models import Fact, FactQuery

OPERATIONS: tuple[str, ...] = ("add", "sub", "mult", "div")

OPERATION_TAGS = {
    "add": "addition",
    "sub": "subtraction",
    "mult": "multiplication",
    "div": "division",
}


@runtime_checkable
class FactStore(Protocol):
    """Anything that can look facts up locally."""

    def get_by_id(self, fact_id: str) -> Fact | None: ...

    def get_many(self, fact_ids: Iterable[str]) -> dict[str, Fact]: ...

    def query(self, query: FactQuery) -> list[Fact]: ...


# =============================================================================
# Fact ids
# =============================================================================


def fact_id(operation: str, operand1: int, operand2: int) -> str:
    """Build a canonical fact id."""
    return f"{operation}-{operand1}-{operand2}"


def parse_fact_id(value: str) -> tuple[str, int, int]:
    """
    Split a canonical fact id into its parts.

    Raises:
        InvalidFactId: If the id is not "<op>-<a>-<b>" with a known op
    """
    parts = value.split("-")
    if len(parts) != 3 or parts[0] not in OPERATIONS:
        raise InvalidFactId(value)
    try:
        operand1, operand2 = int(parts[1]), int(parts[2])
    except ValueError:
        raise InvalidFactId(value) from None
    return parts[0], operand1, operand2


def estimate_difficulty(operation: str, operand1: int, operand2: int) -> float:
    """Heuristic difficulty in [0.1, 0.9] used for difficulty-band queries."""
    if operation == "add":
        difficulty = 0.1 + (operand1 + operand2) / 100
        crosses_ten = operand1 < 10 and operand2 < 10 and operand1 + operand2 >= 10
        crosses_twenty = operand1 < 20 and operand2 < 20 and operand1 + operand2 >= 20
        if crosses_ten or crosses_twenty:
            difficulty += 0.2
        if 0 in (operand1, operand2):
            difficulty -= 0.05
        if 1 in (operand1, operand2):
            difficulty -= 0.03
    elif operation == "sub":
        difficulty = 0.15 + operand1 / 100
        remainder = operand1 - operand2
        if (operand1 >= 10 and remainder < 10) or (operand1 >= 20 and remainder < 20):
            difficulty += 0.2
        if operand2 == 0:
            difficulty -= 0.1
        if operand1 == operand2:
            difficulty -= 0.05
    elif operation == "mult":
        if 0 in (operand1, operand2):
            return 0.1
        if 1 in (operand1, operand2):
            return 0.15
        if 10 in (operand1, operand2):
            return 0.2
        difficulty = 0.2 + (operand1 * operand2) / 200
        if operand1 == operand2:
            difficulty -= 0.05
    else:
        if operand2 == 1:
            return 0.15
        if operand2 == 10:
            return 0.2
        difficulty = 0.25 + operand1 / 200
        if operand1 == operand2:
            difficulty -= 0.1
    return round(max(0.1, min(0.9, difficulty)), 3)


def difficulty_band(difficulty: float) -> str:
    """Map a difficulty to one of five band tags (level-1 .. level-5)."""
    for band, upper in enumerate((0.2, 0.4, 0.6, 0.8), start=1):
        if difficulty < upper:
            return f"level-{band}"
    return "level-5"


def fact_from_id(value: str) -> Fact:
    """
    Materialise a fact from its canonical id.

    Raises:
        InvalidFactId: If the id is malformed or describes a fact with no
            whole, non-negative result (e.g. div-7-2, sub-3-5)
    """
    operation, operand1, operand2 = parse_fact_id(value)
    if operand1 < 0 or operand2 < 0:
        raise InvalidFactId(value)

    if operation == "add":
        result = operand1 + operand2
    elif operation == "sub":
        result = operand1 - operand2
    elif operation == "mult":
        result = operand1 * operand2
    else:
        if operand2 == 0 or operand1 % operand2:
            raise InvalidFactId(value)
        result = operand1 // operand2
    if result < 0:
        raise InvalidFactId(value)

    difficulty = estimate_difficulty(operation, operand1, operand2)
    tags = [OPERATION_TAGS[operation], difficulty_band(difficulty)]
    if operation == "mult" and operand2 == 2:
        tags.append("doubling")
    if operation == "div" and operand2 == 2:
        tags.append("halving")
    if operation in ("mult", "div"):
        for table, tag in ((10, "ten-times-table"), (5, "five-times-table"), (2, "two-times-table")):
            if operand2 == table or (operation == "mult" and operand1 == table):
                tags.append(tag)

    return Fact(
        id=value,
        operation=operation,
        operand1=operand1,
        operand2=operand2,
        result=result,
        tags=tuple(tags),
        difficulty=difficulty,
    )


# =============================================================================
# In-memory store
# =============================================================================


class InMemoryFactStore:
    """Dictionary-backed FactStore with operation and tag indexes."""

    def __init__(self, facts: Iterable[Fact] = ()):
        self._facts: dict[str, Fact] = {}
        self._by_operation: dict[str, set[str]] = defaultdict(set)
        self._by_tag: dict[str, set[str]] = defaultdict(set)
        for fact in facts:
            self.add(fact)

    def add(self, fact: Fact) -> None:
        """Add or replace a fact and index it."""
        self._facts[fact.id] = fact
        self._by_operation[fact.operation].add(fact.id)
        for tag in fact.tags:
            self._by_tag[tag].add(fact.id)

    def get_by_id(self, fact_id: str) -> Fact | None:
        return self._facts.get(fact_id)

    def get_many(self, fact_ids: Iterable[str]) -> dict[str, Fact]:
        """Facts found among fact_ids, keyed by id; unknown ids are absent."""
        return {value: self._facts[value] for value in fact_ids if value in self._facts}

    def query(self, query: FactQuery) -> list[Fact]:
        """
        Filter facts, easiest first.

        Args:
            query: Operation, tag and difficulty-band filter with pagination

        Returns:
            Matching facts sorted by (difficulty, id)
        """
        candidates: set[str] | None = None
        if query.operation:
            candidates = set(self._by_operation.get(query.operation, ()))
        for tag in query.tags:
            tagged = self._by_tag.get(tag, set())
            candidates = tagged.copy() if candidates is None else candidates & tagged

        pool = self._facts.values() if candidates is None else (self._facts[i] for i in candidates)
        matches = sorted(
            (fact for fact in pool if query.matches(fact)),
            key=lambda fact: (fact.difficulty, fact.id),
        )
        return matches[query.offset : query.offset + query.limit]

    def __len__(self) -> int:
        return len(self._facts)

    def __iter__(self) -> Iterator[Fact]:
        return iter(self._facts.values())

    def __contains__(self, fact_id: object) -> bool:
        return fact_id in self._facts


def iter_arithmetic_fact_ids() -> Iterator[str]:
    """Ids of the standard catalogue: the ranges the default curriculum draws on."""
    for a in range(0, 13):
        for b in range(0, 13):
            yield fact_id("add", a, b)
    for a in range(0, 21):
        for b in range(0, a + 1):
            yield fact_id("sub", a, b)
    for a in range(0, 21):
        for b in range(0, 21):
            yield fact_id("mult", a, b)
    for n in range(21, 101):
        yield fact_id("mult", n, 2)
    for divisor in range(1, 21):
        for quotient in range(1, 13):
            yield fact_id("div", divisor * quotient, divisor)
    for n in range(2, 201, 2):
        yield fact_id("div", n, 2)


def build_arithmetic_catalogue() -> InMemoryFactStore:
    """Build an in-memory store holding the standard arithmetic catalogue."""
    store = InMemoryFactStore(fact_from_id(value) for value in dict.fromkeys(iter_arithmetic_fact_ids()))
    logger.debug("Built arithmetic catalogue with {} facts", len(store))
    return store
