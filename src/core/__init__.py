"""
Core Module - Shared domain records, errors and wiring.

Components:
- models: Facts, units, questions, slots and prefetch tasks
- errors: StitchStreamError taxonomy with stable codes
- result: Ok / Err values for caller-decided failure handling
- container: ServiceGraph for typed constructor injection
- logging_setup: loguru sink configuration

Design Principle:
Domain packages (src/facts/, src/mastery/, src/content/, src/delivery/)
import shared records from src/core/ rather than redefining them.
"""

from src.core.errors import (
    DependencyResolutionError,
    InvalidBoundaryLevel,
    InvalidFactId,
    NoContentAvailable,
    PreparationError,
    PreparationFailed,
    RemoteFactLoadError,
    SessionStartError,
    SlotNotReady,
    StitchStreamError,
    UnknownQuestion,
    UserNotInitialized,
)
from src.core.models import (
    MAX_BOUNDARY_LEVEL,
    MIN_BOUNDARY_LEVEL,
    SLOT_ORDER,
    TRACK_IDS,
    Fact,
    FactQuery,
    MasteryRecord,
    PrefetchTask,
    Question,
    ReadyUnit,
    Slot,
    TaskKind,
    TrackState,
    UnitDescriptor,
    UnitStatus,
    UserProgress,
    next_track,
)
from src.core.result import Err, Ok, Result

__all__ = [
    # Models
    "Fact",
    "FactQuery",
    "MasteryRecord",
    "UnitDescriptor",
    "Question",
    "ReadyUnit",
    "UnitStatus",
    "Slot",
    "SLOT_ORDER",
    "TrackState",
    "TaskKind",
    "PrefetchTask",
    "UserProgress",
    "TRACK_IDS",
    "MIN_BOUNDARY_LEVEL",
    "MAX_BOUNDARY_LEVEL",
    "next_track",
    # Errors
    "StitchStreamError",
    "NoContentAvailable",
    "PreparationError",
    "PreparationFailed",
    "RemoteFactLoadError",
    "SlotNotReady",
    "InvalidBoundaryLevel",
    "InvalidFactId",
    "SessionStartError",
    "UserNotInitialized",
    "UnknownQuestion",
    "DependencyResolutionError",
    # Result
    "Ok",
    "Err",
    "Result",
]
