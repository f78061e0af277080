"""
Curriculum.

Ordered, prerequisite-aware concept lists per track.

Default curriculum:
- Track 1: doubling and halving by number ending. Concepts 0001-0007 use
  numbers ending in 0 or 5, 0008-0014 endings 1-4, 0015-0020 endings 6-9.
  Odd codes double, even codes halve.
- Track 2: multiplication tables backwards, 19x (0019) down to 3x (0003).
- Track 3: division facts with clean quotients (1001-1020), shown as
  "□ × d = n". From 1011 on, the 10x table must be reached on track 2.

Concept codes are only unique within a track, so progress is tracked by
Concept.key ("t<track>:<code>").
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from src.core.models import TRACK_IDS


def concept_key(track_id: int, code: str) -> str:
    return f"t{track_id}:{code}"


@dataclass(frozen=True)
class Concept:
    """One schedulable concept of a track."""

    track_id: int
    code: str
    name: str
    concept_type: str
    params: Mapping[str, Any] = field(default_factory=dict)
    prerequisites: tuple[str, ...] = ()

    @property
    def key(self) -> str:
        return concept_key(self.track_id, self.code)


class Curriculum:
    """Concepts of every track, in teaching order."""

    def __init__(self, concepts: Iterable[Concept]):
        self._tracks: dict[int, list[Concept]] = {track_id: [] for track_id in TRACK_IDS}
        self._by_key: dict[str, Concept] = {}
        for concept in concepts:
            if concept.track_id not in self._tracks:
                raise ValueError(f"Unknown track {concept.track_id} for concept {concept.code}")
            if concept.key in self._by_key:
                raise ValueError(f"Duplicate concept {concept.key}")
            self._tracks[concept.track_id].append(concept)
            self._by_key[concept.key] = concept

        for concept in self._by_key.values():
            missing = [key for key in concept.prerequisites if key not in self._by_key]
            if missing:
                raise ValueError(f"Concept {concept.key} has unknown prerequisites {missing}")

    def track(self, track_id: int) -> list[Concept]:
        return list(self._tracks.get(track_id, []))

    def get(self, key: str) -> Concept | None:
        return self._by_key.get(key)

    def __iter__(self) -> Iterator[Concept]:
        for track_id in TRACK_IDS:
            yield from self._tracks[track_id]

    def __len__(self) -> int:
        return len(self._by_key)


ENDING_BANDS: tuple[tuple[range, tuple[str, ...], int, int], ...] = (
    (range(1, 8), ("0", "5"), 5, 100),
    (range(8, 15), ("1", "2", "3", "4"), 11, 49),
    (range(15, 21), ("6", "7", "8", "9"), 16, 49),
)


def _track_one() -> list[Concept]:
    concepts = []
    for numbers, endings, low, high in ENDING_BANDS:
        for position, index in enumerate(numbers):
            concept_type = "doubling" if index % 2 else "halving"
            label = "_".join(endings)
            concepts.append(
                Concept(
                    track_id=1,
                    code=f"{index:04d}",
                    name=f"{concept_type}_{label}_endings_{index}",
                    concept_type=concept_type,
                    params={
                        "min": low,
                        "max": high,
                        "endings": endings,
                        "offset": position * 3,
                    },
                )
            )
    return concepts


def _track_two() -> list[Concept]:
    return [
        Concept(
            track_id=2,
            code=f"{table:04d}",
            name=f"multiplication_{table}x",
            concept_type="times_table",
            params={
                "table": table,
                "min": 1,
                "max": 12,
                "template": "{operand1} × {operand2}",
            },
        )
        for table in range(19, 2, -1)
    ]


def _track_three() -> list[Concept]:
    concepts = []
    for index in range(1, 21):
        divisor = (index - 1) % 11 + 2
        concepts.append(
            Concept(
                track_id=3,
                code=str(1000 + index),
                name=f"division_as_algebra_{index}",
                concept_type="division",
                params={
                    "divisor": divisor,
                    "min_product": 12,
                    "max_product": 144,
                    "template": "□ × {operand2} = {operand1}",
                },
                prerequisites=(concept_key(2, "0010"),) if index > 10 else (),
            )
        )
    return concepts


def default_curriculum() -> Curriculum:
    """The built-in three-track arithmetic curriculum."""
    return Curriculum([*_track_one(), *_track_two(), *_track_three()])
