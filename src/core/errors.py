"""
Error taxonomy for the learning engine.

Every domain failure derives from StitchStreamError and carries a stable
``code`` so the API and CLI can map it without string matching.

Recoverable:
- NoContentAvailable: a track's curriculum is exhausted or blocked
- SlotNotReady: promotion attempted over a unit that is not loaded
- RemoteFactLoadError: transient remote fact fetch failure

Retried by the scheduler, surfaced after retries are exhausted:
- PreparationFailed: zero facts resolved for a unit

Fatal to session start:
- SessionStartError
"""

from __future__ import annotations


class StitchStreamError(Exception):
    """Base class for all learning engine errors."""

    code = "STITCHSTREAM_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NoContentAvailable(StitchStreamError):
    """The track has no assignable concept right now."""

    code = "NO_CONTENT_AVAILABLE"

    def __init__(self, track_id: int, reason: str):
        super().__init__(f"No content available for track {track_id}: {reason}")
        self.track_id = track_id
        self.reason = reason


class PreparationError(StitchStreamError):
    """Base class for failures while preparing a unit."""

    code = "PREPARATION_ERROR"

    def __init__(self, message: str, unit_id: str | None = None):
        super().__init__(message)
        self.unit_id = unit_id


class PreparationFailed(PreparationError):
    """No facts resolved for a unit."""

    code = "PREPARATION_FAILED"


class RemoteFactLoadError(PreparationError):
    """The remote fact source could not be reached or returned garbage."""

    code = "REMOTE_FACT_LOAD_ERROR"


class SlotNotReady(StitchStreamError):
    """A slot involved in a promotion does not hold a loaded unit."""

    code = "SLOT_NOT_READY"

    def __init__(self, user_id: str, track_id: int, slot: str, status: str | None):
        super().__init__(
            f"Cannot promote track {track_id} for user {user_id}: "
            f"{slot} slot is {status or 'empty'}"
        )
        self.user_id = user_id
        self.track_id = track_id
        self.slot = slot
        self.status = status


class InvalidBoundaryLevel(StitchStreamError):
    """Boundary level outside 1..5."""

    code = "INVALID_BOUNDARY_LEVEL"

    def __init__(self, level: object):
        super().__init__(f"Boundary level must be an integer between 1 and 5, got {level!r}")
        self.level = level


class InvalidFactId(StitchStreamError):
    """Fact id does not follow the '<op>-<a>-<b>' format."""

    code = "INVALID_FACT_ID"

    def __init__(self, fact_id: str):
        super().__init__(f"Invalid fact id: {fact_id!r}")
        self.fact_id = fact_id


class SessionStartError(StitchStreamError):
    """The first LIVE unit could not be loaded for a user."""

    code = "SESSION_START_FAILED"

    def __init__(self, user_id: str, cause: Exception):
        super().__init__(f"Could not start session for user {user_id}: {cause}")
        self.user_id = user_id
        self.cause = cause


class UserNotInitialized(StitchStreamError):
    """An engine call was made before initialize_for_user."""

    code = "USER_NOT_INITIALIZED"

    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} has not been initialized")
        self.user_id = user_id


class UnknownQuestion(StitchStreamError):
    """The answered question is not part of the user's LIVE unit."""

    code = "UNKNOWN_QUESTION"

    def __init__(self, user_id: str, question_id: str):
        super().__init__(f"Question {question_id} is not in the live unit of user {user_id}")
        self.user_id = user_id
        self.question_id = question_id


class DependencyResolutionError(StitchStreamError):
    """The service graph has a missing dependency or a cycle."""

    code = "DEPENDENCY_RESOLUTION_FAILED"
