"""
Content Populator.

Expands "next unit for track T" into a concrete UnitDescriptor. Each track
keeps a per-user queue of concept keys in serving order, starting in
curriculum order. Nothing is materialised here; the descriptor only says
what a slot should contain.

Spaced repetition:
- A concept answered perfectly (every question correct) moves back in its
  track's queue by a skip number taken from SKIP_SEQUENCE (4, 8, 15, 30,
  100, 1000), one step further each consecutive perfect unit.
- Anything less keeps the concept where it is, so it is served again as
  soon as a slot frees up, and resets its skip to 4.
- Concepts are never retired, so a track never runs dry.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass

from loguru import logger

from src.content.curriculum import Concept, Curriculum, concept_key, default_curriculum
from src.core.errors import NoContentAvailable
from src.core.models import TRACK_IDS, UnitDescriptor, UserProgress

SKIP_SEQUENCE: tuple[int, ...] = (4, 8, 15, 30, 100, 1000)


def unit_id_for(concept: Concept, ordinal: int) -> str:
    return f"t{concept.track_id}-{concept.code}-{ordinal:04d}"


def next_skip(perfect: bool, last_skip: int | None) -> int:
    """Skip number after a unit: advance on a perfect score, otherwise reset."""
    if not perfect or last_skip not in SKIP_SEQUENCE:
        return SKIP_SEQUENCE[0]
    index = SKIP_SEQUENCE.index(last_skip)
    return SKIP_SEQUENCE[min(index + 1, len(SKIP_SEQUENCE) - 1)]


@dataclass(frozen=True)
class RepositionResult:
    """Where a concept went after one of its units was finished."""

    concept_key: str
    correct_count: int
    total_count: int
    skip_number: int
    previous_position: int
    new_position: int

    @property
    def perfect(self) -> bool:
        return self.total_count > 0 and self.correct_count == self.total_count


class ContentPopulator:
    """Assigns the next concept of a track to a user and repositions finished ones."""

    def __init__(self, curriculum: Curriculum | None = None):
        self.curriculum = curriculum if curriculum is not None else default_curriculum()

    def queue_for(self, track_id: int, progress: UserProgress) -> list[str]:
        """The user's serving order for a track (created on first use)."""
        queue = progress.queues.get(track_id)
        if queue is None:
            queue = [concept.key for concept in self.curriculum.track(track_id)]
            progress.queues[track_id] = queue
        return queue

    def _next_concept(self, track_id: int, progress: UserProgress) -> Concept:
        if track_id not in TRACK_IDS:
            raise NoContentAvailable(track_id, "unknown track")

        queue = self.queue_for(track_id, progress)
        if not queue:
            raise NoContentAvailable(track_id, "track has no concepts")

        blocked: list[str] = []
        for key in queue:
            if key in progress.reserved:
                continue
            concept = self.curriculum.get(key)
            if concept is None:
                continue
            unmet = [dep for dep in concept.prerequisites if not progress.is_claimed(dep)]
            if unmet:
                blocked.append(f"{key} waits for {', '.join(unmet)}")
                continue
            return concept

        if blocked:
            raise NoContentAvailable(track_id, blocked[0])
        raise NoContentAvailable(track_id, "every concept is already in a slot")

    def next_unit_for(self, track_id: int, progress: UserProgress) -> UnitDescriptor:
        """
        Reserve the next concept of a track and describe its unit.

        The next concept is the first one in the track's queue that is not
        already in a slot and whose prerequisites are completed or reserved.

        Args:
            track_id: Track 1, 2 or 3
            progress: The user's progress; the concept is added to
                progress.reserved and the track's ordinal advances

        Returns:
            Descriptor of the new unit

        Raises:
            NoContentAvailable: Every concept is in a slot or blocked by
                prerequisites (treat as "track temporarily empty")
        """
        concept = self._next_concept(track_id, progress)
        ordinal = progress.next_ordinal.get(track_id, 1)

        progress.reserved.add(concept.key)
        progress.next_ordinal[track_id] = ordinal + 1

        descriptor = UnitDescriptor(
            id=unit_id_for(concept, ordinal),
            concept_type=concept.concept_type,
            concept_params=dict(concept.params),
            track_id=track_id,
            ordinal_position=ordinal,
            concept_code=concept.code,
        )
        logger.debug("Assigned {} ({}) to {}", descriptor.id, concept.name, progress.user_id)
        return descriptor

    def record_result(
        self,
        progress: UserProgress,
        descriptor: UnitDescriptor,
        correct_count: int,
        total_count: int,
    ) -> RepositionResult:
        """
        Release a finished unit's concept and reposition it by its score.

        Args:
            progress: The user's progress
            descriptor: The unit that was just finished
            correct_count: Questions answered correctly
            total_count: Questions in the unit

        Returns:
            The concept's skip number and old/new 1-based queue positions

        Raises:
            ValueError: If the counts are negative or correct exceeds total
        """
        if total_count < 0 or not 0 <= correct_count <= total_count:
            raise ValueError(f"Invalid score {correct_count}/{total_count}")

        key = concept_key(descriptor.track_id, descriptor.concept_code)
        queue = self.queue_for(descriptor.track_id, progress)
        if key not in queue:
            queue.append(key)
        progress.reserved.discard(key)

        perfect = total_count > 0 and correct_count == total_count
        skip = next_skip(perfect, progress.last_skip.get(key))
        progress.last_skip[key] = skip

        previous_index = queue.index(key)
        new_index = previous_index
        if perfect:
            progress.completed.add(key)
            queue.pop(previous_index)
            new_index = min(previous_index + skip - 1, len(queue))
            queue.insert(new_index, key)

        result = RepositionResult(
            concept_key=key,
            correct_count=correct_count,
            total_count=total_count,
            skip_number=skip,
            previous_position=previous_index + 1,
            new_position=new_index + 1,
        )
        logger.info(
            "{} scored {}/{} on {}: position {} -> {} (skip {})",
            progress.user_id,
            correct_count,
            total_count,
            key,
            result.previous_position,
            result.new_position,
            skip,
        )
        return result

    def preview(self, track_id: int, progress: UserProgress, count: int) -> list[UnitDescriptor]:
        """
        Describe up to `count` upcoming units of a track without reserving them.

        Stops early when every remaining concept is in a slot or blocked.
        """
        scratch = copy.deepcopy(progress)
        upcoming: list[UnitDescriptor] = []
        for _ in range(count):
            try:
                upcoming.append(self.next_unit_for(track_id, scratch))
            except NoContentAvailable:
                break
        return upcoming
