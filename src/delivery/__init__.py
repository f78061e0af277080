"""
Delivery: buffered question delivery over three rotating tracks.

Components:
- ReadinessCache: LIVE/READY/PREPARING slots per user and track
- RotationController: round-robin track state machine
- PrefetchScheduler: prioritized background loads with bounded retry
- LearningEngine: facade used by the API and CLI
"""

from .engine import (
    AnswerOutcome,
    EngineStatus,
    LearningEngine,
    RotationOutcome,
    create_learning_engine,
)
from .prefetch import PrefetchScheduler, SchedulerStats
from .readiness_cache import ReadinessCache
from .rotation import RotationController, RotationEvent

__all__ = [
    # Cache and rotation
    "ReadinessCache",
    "RotationController",
    "RotationEvent",
    # Scheduling
    "PrefetchScheduler",
    "SchedulerStats",
    # Facade
    "LearningEngine",
    "AnswerOutcome",
    "RotationOutcome",
    "EngineStatus",
    "create_learning_engine",
]
