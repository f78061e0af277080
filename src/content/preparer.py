"""
Content Preparer.

UnitDescriptor -> ReadyUnit. Resolves the unit's facts and asks the
QuestionAssembler for one question per fact at the learner's current
boundary level.

Fact resolution order:
    1. local FactStore
    2. the preparer's fact buffer (filled by warm_facts and earlier fetches)
    3. the remote source, for whatever is still missing (suspension point)

Failures surface immediately. Retrying is the prefetch scheduler's job.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from src.content.assembler import QuestionAssembler
from src.core.errors import PreparationError, PreparationFailed
from src.core.models import Fact, ReadyUnit, UnitDescriptor, UnitStatus
from src.core.result import Err, Ok, Result
from src.facts.fact_store import FactStore, fact_id
from src.facts.remote import RemoteFactSource
from src.mastery.controller import MasteryController

DEFAULT_UNIT_SIZE = 20


# =============================================================================
# Fact id derivation
# =============================================================================


def _numbers(params: Mapping[str, Any]) -> list[int]:
    """Numbers in [min, max] whose last digit is in `endings` (if given)."""
    low, high = int(params.get("min", 1)), int(params.get("max", 10))
    endings = tuple(str(e) for e in params.get("endings", ()))
    return [n for n in range(low, high + 1) if not endings or str(n)[-1] in endings]


def _pairs(params: Mapping[str, Any]) -> list[tuple[int, int]]:
    low, high = int(params.get("min", 0)), int(params.get("max", 10))
    return [(a, b) for a in range(low, high + 1) for b in range(low, high + 1)]


def _addition(params: Mapping[str, Any]) -> list[str]:
    return [fact_id("add", a, b) for a, b in _pairs(params)]


def _subtraction(params: Mapping[str, Any]) -> list[str]:
    return [fact_id("sub", a, b) for a, b in _pairs(params) if b <= a]


def _multiplication(params: Mapping[str, Any]) -> list[str]:
    if "table" in params:
        table = int(params["table"])
        low, high = int(params.get("min", 1)), int(params.get("max", 12))
        return [fact_id("mult", table, n) for n in range(low, high + 1)]
    return [fact_id("mult", a, b) for a, b in _pairs(params)]


def _doubling(params: Mapping[str, Any]) -> list[str]:
    return [fact_id("mult", n, 2) for n in _numbers(params)]


def _halving(params: Mapping[str, Any]) -> list[str]:
    # min/max/endings describe the half, so every dividend is even
    return [fact_id("div", n * 2, 2) for n in _numbers(params)]


def _division(params: Mapping[str, Any]) -> list[str]:
    low = int(params.get("min_product", 1))
    high = int(params.get("max_product", 144))
    divisors = [int(params["divisor"])] if "divisor" in params else list(range(2, 13))
    return [
        fact_id("div", divisor * quotient, divisor)
        for divisor in divisors
        for quotient in range(1, high // divisor + 1)
        if low <= divisor * quotient <= high
    ]


DERIVERS = {
    "addition": _addition,
    "subtraction": _subtraction,
    "multiplication": _multiplication,
    "times_table": _multiplication,
    "doubling": _doubling,
    "halving": _halving,
    "division": _division,
}


class ContentPreparer:
    """Materialises unit descriptors into ready-to-serve units."""

    def __init__(
        self,
        fact_store: FactStore,
        mastery: MasteryController,
        assembler: QuestionAssembler | None = None,
        remote: RemoteFactSource | None = None,
        unit_size: int = DEFAULT_UNIT_SIZE,
    ):
        """
        Initialize the preparer.

        Args:
            fact_store: Local fact lookup
            mastery: Source of the per-(user, fact) boundary level
            assembler: Question builder
            remote: Optional batch source for facts missing locally
            unit_size: Maximum facts (and questions) per unit
        """
        self.fact_store = fact_store
        self.mastery = mastery
        self.assembler = assembler or QuestionAssembler()
        self.remote = remote
        self.unit_size = unit_size
        self.fact_buffer: dict[str, Fact] = {}

    def derive_fact_ids(self, descriptor: UnitDescriptor) -> list[str]:
        """
        Fact ids a unit needs, in question order, capped at the unit size.

        An integer `offset` parameter rotates the list before capping so
        sibling concepts over the same range start at different facts.

        Raises:
            PreparationFailed: Unknown concept type
        """
        derive = DERIVERS.get(descriptor.concept_type)
        if derive is None:
            raise PreparationFailed(
                f"Unknown concept type {descriptor.concept_type!r}", unit_id=descriptor.id
            )
        ids = derive(descriptor.concept_params)
        offset = int(descriptor.concept_params.get("offset", 0))
        if ids and offset:
            offset %= len(ids)
            ids = ids[offset:] + ids[:offset]
        return ids[: self.unit_size]

    async def resolve_facts(self, fact_ids: Sequence[str]) -> dict[str, Fact]:
        """
        Resolve facts locally, then from the buffer, then remotely.

        Returns:
            Resolved facts in the order of fact_ids; unresolvable ids are absent

        Raises:
            RemoteFactLoadError: The remote source failed
        """
        found = self.fact_store.get_many(fact_ids)
        missing: list[str] = []
        for value in fact_ids:
            if value in found:
                continue
            if value in self.fact_buffer:
                found[value] = self.fact_buffer[value]
            else:
                missing.append(value)

        if missing and self.remote is not None:
            fetched = await self.remote.fetch_many(missing)
            self.fact_buffer.update(fetched)
            found.update(fetched)
            logger.debug("Remote source resolved {}/{} missing facts", len(fetched), len(missing))

        return {value: found[value] for value in fact_ids if value in found}

    async def prepare(self, descriptor: UnitDescriptor, user_id: str) -> ReadyUnit:
        """
        Build a loaded ReadyUnit for a user.

        Raises:
            PreparationFailed: No facts resolved
            RemoteFactLoadError: The remote source failed
        """
        fact_ids = self.derive_fact_ids(descriptor)
        facts = await self.resolve_facts(fact_ids)
        if not facts:
            raise PreparationFailed(
                f"No facts resolved for unit {descriptor.id} ({len(fact_ids)} requested)",
                unit_id=descriptor.id,
            )

        template = descriptor.concept_params.get("template")
        questions = tuple(
            self.assembler.build_question(
                fact,
                self.mastery.get_boundary_level(user_id, fact.id),
                question_id=f"{descriptor.id}_q{position}_{fact.id}",
                metadata={
                    "unit_id": descriptor.id,
                    "position": position,
                    "concept_code": descriptor.concept_code,
                },
                template=template,
            )
            for position, fact in enumerate(facts.values(), start=1)
        )

        if len(facts) < len(fact_ids):
            logger.warning(
                "Unit {} prepared with {}/{} facts", descriptor.id, len(facts), len(fact_ids)
            )
        logger.debug("Prepared {} with {} questions for {}", descriptor.id, len(questions), user_id)

        return ReadyUnit(
            descriptor=descriptor,
            facts=facts,
            questions=questions,
            status=UnitStatus.LOADED,
            loaded_at=datetime.now(UTC),
        )

    async def try_prepare(
        self, descriptor: UnitDescriptor, user_id: str
    ) -> Result[ReadyUnit, PreparationError]:
        """prepare() with failures returned as Err instead of raised."""
        try:
            return Ok(await self.prepare(descriptor, user_id))
        except PreparationError as e:
            return Err(e)

    async def warm_facts(self, descriptors: Iterable[UnitDescriptor]) -> int:
        """
        Pull the facts of upcoming units into the fact buffer.

        Returns:
            Number of facts newly buffered

        Raises:
            RemoteFactLoadError: The remote source failed
        """
        wanted: list[str] = []
        for descriptor in descriptors:
            try:
                wanted.extend(self.derive_fact_ids(descriptor))
            except PreparationFailed as e:
                logger.warning("Skipping warm-up for {}: {}", descriptor.id, e.message)

        unique = list(dict.fromkeys(wanted))
        local = self.fact_store.get_many(unique)
        missing = [value for value in unique if value not in local and value not in self.fact_buffer]
        if not missing or self.remote is None:
            return 0

        fetched = await self.remote.fetch_many(missing)
        self.fact_buffer.update(fetched)
        logger.debug("Warmed fact buffer with {} facts", len(fetched))
        return len(fetched)
