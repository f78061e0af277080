"""
Domain records for the learning engine.

Design:
- Fact, UnitDescriptor, Question and ReadyUnit are frozen: they are replaced
  wholesale, never edited in place.
- MasteryRecord and UserProgress are mutable and owned by a single component
  (MasteryController and LearningEngine respectively).
- TrackState is rebuilt on every cache write so readers never see a torn slot map.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

TRACK_IDS: tuple[int, ...] = (1, 2, 3)
MIN_BOUNDARY_LEVEL = 1
MAX_BOUNDARY_LEVEL = 5


def next_track(track_id: int) -> int:
    """Round-robin successor of a track (1 -> 2 -> 3 -> 1)."""
    return track_id % len(TRACK_IDS) + 1


# =============================================================================
# Facts
# =============================================================================


@dataclass(frozen=True)
class Fact:
    """An atomic arithmetic fact, e.g. mult-7-4 = 28."""

    id: str
    operation: str  # add | sub | mult | div
    operand1: int
    operand2: int
    result: int
    tags: tuple[str, ...] = ()
    difficulty: float = 0.5

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags


@dataclass(frozen=True)
class FactQuery:
    """Filter for FactStore.query."""

    operation: str | None = None
    min_difficulty: float | None = None
    max_difficulty: float | None = None
    tags: tuple[str, ...] = ()
    limit: int = 100
    offset: int = 0

    def matches(self, fact: Fact) -> bool:
        if self.operation and fact.operation != self.operation:
            return False
        if self.min_difficulty is not None and fact.difficulty < self.min_difficulty:
            return False
        if self.max_difficulty is not None and fact.difficulty > self.max_difficulty:
            return False
        return all(fact.has_tag(tag) for tag in self.tags)


# =============================================================================
# Mastery
# =============================================================================


@dataclass
class MasteryRecord:
    """Boundary level of one user for one fact."""

    user_id: str
    fact_id: str
    boundary_level: int = MIN_BOUNDARY_LEVEL
    last_updated: datetime = field(default_factory=lambda: datetime.now(UTC))


# =============================================================================
# Units and Questions
# =============================================================================


@dataclass(frozen=True)
class UnitDescriptor:
    """What a track slot should contain, independent of materialisation."""

    id: str
    concept_type: str
    concept_params: Mapping[str, Any]
    track_id: int
    ordinal_position: int
    concept_code: str = ""


@dataclass(frozen=True)
class Question:
    """A ready-to-serve question with its single distractor."""

    id: str
    text: str
    correct_answer: str
    distractor: str
    fact_id: str
    boundary_level: int
    metadata: Mapping[str, Any] = field(default_factory=dict)


class UnitStatus(str, Enum):
    """Readiness of a ReadyUnit."""

    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


@dataclass(frozen=True)
class ReadyUnit:
    """A descriptor plus its resolved facts and ordered questions."""

    descriptor: UnitDescriptor
    facts: Mapping[str, Fact] = field(default_factory=dict)
    questions: tuple[Question, ...] = ()
    status: UnitStatus = UnitStatus.LOADING
    loaded_at: datetime | None = None
    error: str | None = None

    @classmethod
    def placeholder(cls, descriptor: UnitDescriptor) -> ReadyUnit:
        """A unit whose preparation has been queued but not finished."""
        return cls(descriptor=descriptor, status=UnitStatus.LOADING)

    @classmethod
    def failed(cls, descriptor: UnitDescriptor, error: Exception) -> ReadyUnit:
        return cls(descriptor=descriptor, status=UnitStatus.ERROR, error=str(error))

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def track_id(self) -> int:
        return self.descriptor.track_id

    @property
    def is_loaded(self) -> bool:
        return self.status is UnitStatus.LOADED

    @property
    def question_count(self) -> int:
        return len(self.questions)

    def question_by_id(self, question_id: str) -> Question | None:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None


# =============================================================================
# Tracks
# =============================================================================


class Slot(str, Enum):
    """Readiness stage of a track slot, ordered from most to least ready."""

    LIVE = "live"
    READY = "ready"
    PREPARING = "preparing"


SLOT_ORDER: tuple[Slot, ...] = (Slot.LIVE, Slot.READY, Slot.PREPARING)


@dataclass(frozen=True)
class TrackState:
    """Slot occupancy of one track for one user."""

    track_id: int
    slots: Mapping[Slot, ReadyUnit | None] = field(
        default_factory=lambda: {slot: None for slot in SLOT_ORDER}
    )
    rotation_count: int = 0

    def unit(self, slot: Slot) -> ReadyUnit | None:
        return self.slots.get(slot)

    def empty_slots(self) -> list[Slot]:
        return [slot for slot in SLOT_ORDER if self.slots.get(slot) is None]


# =============================================================================
# Prefetch
# =============================================================================


class TaskKind(str, Enum):
    """Background work types with their default priority."""

    LOAD_LIVE = "load_live"
    LOAD_READY = "load_ready"
    LOAD_PREPARING = "load_preparing"
    WARM_FACTS = "warm_facts"
    WARM_RECIPES = "warm_recipes"
    PERSIST_MASTERY = "persist_mastery"

    @property
    def default_priority(self) -> int:
        return {
            TaskKind.LOAD_LIVE: 1,
            TaskKind.LOAD_READY: 2,
            TaskKind.LOAD_PREPARING: 3,
            TaskKind.WARM_FACTS: 4,
            TaskKind.WARM_RECIPES: 5,
            TaskKind.PERSIST_MASTERY: 5,
        }[self]

    @classmethod
    def for_slot(cls, slot: Slot) -> TaskKind:
        return {
            Slot.LIVE: cls.LOAD_LIVE,
            Slot.READY: cls.LOAD_READY,
            Slot.PREPARING: cls.LOAD_PREPARING,
        }[slot]


@dataclass(frozen=True)
class PrefetchTask:
    """A prioritised unit of background work (1 = most urgent)."""

    priority: int
    target_unit_id: str
    action: Callable[[], Awaitable[None]] = field(compare=False, repr=False)
    kind: TaskKind = TaskKind.LOAD_PREPARING
    retry_count: int = 0

    def __post_init__(self):
        if not 1 <= self.priority <= 5:
            raise ValueError(f"Task priority must be between 1 and 5, got {self.priority}")


# =============================================================================
# Progress
# =============================================================================


@dataclass
class UserProgress:
    """
    Curriculum position of a user across the three tracks.

    queues holds each track's concept keys in serving order (filled on first
    use); completed holds concepts answered perfectly at least once;
    reserved holds concepts whose unit currently occupies a slot.
    """

    user_id: str
    completed: set[str] = field(default_factory=set)
    reserved: set[str] = field(default_factory=set)
    queues: dict[int, list[str]] = field(default_factory=dict)
    last_skip: dict[str, int] = field(default_factory=dict)
    next_ordinal: dict[int, int] = field(
        default_factory=lambda: {track_id: 1 for track_id in TRACK_IDS}
    )

    def is_claimed(self, key: str) -> bool:
        return key in self.completed or key in self.reserved
