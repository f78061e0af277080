"""
Mastery Controller.

Owns the boundary level (1..5) of every (user, fact) pair and moves it one
step at a time in response to answers:

- correct and fast: +1, capped at 5
- incorrect: -1, floored at 1
- correct but slow: unchanged

"Fast" means strictly below the threshold of the pair's current level, so
the bar rises as the learner climbs. The controller works on an in-memory
map only; durable storage is reached through seed() and take_dirty().
"""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from datetime import UTC, datetime

from loguru import logger

from src.core.errors import InvalidBoundaryLevel
from src.core.models import MAX_BOUNDARY_LEVEL, MIN_BOUNDARY_LEVEL, MasteryRecord

DEFAULT_FAST_THRESHOLDS_MS: dict[int, int] = {1: 5000, 2: 4000, 3: 3000, 4: 2500, 5: 2000}


@dataclass(frozen=True)
class BoundaryLevel:
    """Name and meaning of one boundary level."""

    level: int
    name: str
    description: str


BOUNDARY_LEVELS: dict[int, BoundaryLevel] = {
    1: BoundaryLevel(1, "Near Miss", "Distractor is one away from the answer"),
    2: BoundaryLevel(2, "Digit Slip", "Distractor is ten away or has two digits swapped"),
    3: BoundaryLevel(3, "Adjacent Fact", "Distractor answers a neighbouring fact of the same operation"),
    4: BoundaryLevel(4, "Operation Confusion", "Distractor combines the operands with another operation"),
    5: BoundaryLevel(5, "Place Value", "Distractor is the answer shifted by one place value"),
}


def validate_level(level: object) -> int:
    """Return the level if it is an int in 1..5, else raise InvalidBoundaryLevel."""
    if isinstance(level, bool) or not isinstance(level, int):
        raise InvalidBoundaryLevel(level)
    if not MIN_BOUNDARY_LEVEL <= level <= MAX_BOUNDARY_LEVEL:
        raise InvalidBoundaryLevel(level)
    return level


def describe_level(level: int) -> BoundaryLevel:
    return BOUNDARY_LEVELS[validate_level(level)]


def clamp_level(level: int) -> int:
    return max(MIN_BOUNDARY_LEVEL, min(MAX_BOUNDARY_LEVEL, int(level)))


class MasteryController:
    """Per-(user, fact) boundary levels driven by response correctness and latency."""

    def __init__(
        self,
        fast_thresholds_ms: Mapping[int, int] | None = None,
        records: MutableMapping[tuple[str, str], MasteryRecord] | None = None,
    ):
        """
        Initialize the controller.

        Args:
            fast_thresholds_ms: Per-level latency below which a correct
                answer counts as fast (defaults: 5000/4000/3000/2500/2000)
            records: Backing map keyed by (user_id, fact_id)
        """
        thresholds = dict(DEFAULT_FAST_THRESHOLDS_MS)
        thresholds.update(fast_thresholds_ms or {})
        for level in thresholds:
            validate_level(level)
        self.fast_thresholds_ms = thresholds
        self._records = records if records is not None else {}
        self._dirty: dict[str, set[str]] = {}

    def _record(self, user_id: str, fact_id: str) -> MasteryRecord:
        key = (user_id, fact_id)
        record = self._records.get(key)
        if record is None:
            record = MasteryRecord(user_id=user_id, fact_id=fact_id)
            self._records[key] = record
        return record

    def get_boundary_level(self, user_id: str, fact_id: str) -> int:
        """Current level for the pair; unseen pairs start at level 1."""
        return self._record(user_id, fact_id).boundary_level

    def is_fast(self, level: int, latency_ms: float) -> bool:
        return latency_ms < self.fast_thresholds_ms[validate_level(level)]

    def record_response(
        self,
        user_id: str,
        fact_id: str,
        correct: bool,
        latency_ms: float,
    ) -> int:
        """
        Score one answer and move the boundary level by at most one step.

        Args:
            user_id: Learner id
            fact_id: Canonical fact id
            correct: Whether the learner chose the correct answer
            latency_ms: Response time in milliseconds

        Returns:
            The new boundary level

        Raises:
            ValueError: If latency_ms is negative
        """
        if latency_ms < 0:
            raise ValueError(f"latency_ms must be non-negative, got {latency_ms}")

        record = self._record(user_id, fact_id)
        old_level = record.boundary_level

        if not correct:
            new_level = max(MIN_BOUNDARY_LEVEL, old_level - 1)
        elif self.is_fast(old_level, latency_ms):
            new_level = min(MAX_BOUNDARY_LEVEL, old_level + 1)
        else:
            new_level = old_level

        record.boundary_level = new_level
        record.last_updated = datetime.now(UTC)
        self._dirty.setdefault(user_id, set()).add(fact_id)

        if new_level != old_level:
            logger.debug(
                "Boundary level {}/{}: {} -> {} (correct={}, {}ms)",
                user_id,
                fact_id,
                old_level,
                new_level,
                correct,
                latency_ms,
            )
        return new_level

    def seed(self, user_id: str, levels: Mapping[str, int]) -> int:
        """
        Load durable levels for a user, clamped to 1..5.

        Returns:
            Number of facts seeded
        """
        for fact_id, level in levels.items():
            record = self._record(user_id, fact_id)
            record.boundary_level = clamp_level(level)
        if levels:
            logger.info("Seeded {} mastery records for {}", len(levels), user_id)
        return len(levels)

    def records(self, user_id: str) -> list[MasteryRecord]:
        """All records for one user, ordered by fact id."""
        return sorted(
            (record for (uid, _), record in self._records.items() if uid == user_id),
            key=lambda record: record.fact_id,
        )

    def take_dirty(self, user_id: str) -> list[MasteryRecord]:
        """Records changed since the last call, for persistence."""
        fact_ids = self._dirty.pop(user_id, set())
        return [self._records[(user_id, fact_id)] for fact_id in sorted(fact_ids)]

    def level_histogram(self, user_id: str) -> dict[int, int]:
        histogram = {level: 0 for level in BOUNDARY_LEVELS}
        for record in self.records(user_id):
            histogram[record.boundary_level] += 1
        return histogram
