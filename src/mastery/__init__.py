"""
Mastery Module - boundary levels per (user, fact).

- controller: MasteryController and the level ladder descriptions
- persistence: optional seed/save hooks (in-memory, SQLAlchemy)
"""

from src.mastery.controller import (
    BOUNDARY_LEVELS,
    DEFAULT_FAST_THRESHOLDS_MS,
    BoundaryLevel,
    MasteryController,
    describe_level,
    validate_level,
)
from src.mastery.persistence import (
    InMemoryMasteryPersistence,
    MasteryPersistence,
    SqlMasteryPersistence,
)

__all__ = [
    "BOUNDARY_LEVELS",
    "DEFAULT_FAST_THRESHOLDS_MS",
    "BoundaryLevel",
    "MasteryController",
    "describe_level",
    "validate_level",
    "MasteryPersistence",
    "InMemoryMasteryPersistence",
    "SqlMasteryPersistence",
]
