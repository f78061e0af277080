"""
Rotation Controller.

The three-track state machine. Each user has an active track (initially 1)
and a rotation count (initially 0). A rotation promotes the outgoing
track's pipeline so its next unit is LIVE for its next turn, then hands the
active pointer to the next track round-robin. Content readiness never holds
a rotation back: an outgoing track whose next units are still loading is
promoted later. There is no terminal state.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from loguru import logger

from src.core.errors import SlotNotReady
from src.core.models import TRACK_IDS, Slot, next_track
from src.delivery.readiness_cache import ReadinessCache


@dataclass(frozen=True)
class RotationEvent:
    """Emitted after every rotation."""

    user_id: str
    trigger: str
    previous_track: int
    active_track: int
    rotation_count: int
    emergency_load: bool
    evicted_unit_id: str | None = None
    promotion_deferred: bool = False
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class RotationState:
    active_track: int = TRACK_IDS[0]
    rotation_count: int = 0
    deferred: set[int] = field(default_factory=set)


RotationListener = Callable[[RotationEvent], None]


class RotationController:
    """Round-robin rotation of the three tracks per user."""

    def __init__(self, cache: ReadinessCache):
        self.cache = cache
        self._states: dict[str, RotationState] = {}
        self._listeners: list[RotationListener] = []

    def subscribe(self, listener: RotationListener) -> None:
        self._listeners.append(listener)

    def state(self, user_id: str) -> RotationState:
        return self._states.setdefault(user_id, RotationState())

    def active_track(self, user_id: str) -> int:
        return self.state(user_id).active_track

    def rotation_count(self, user_id: str) -> int:
        return self.state(user_id).rotation_count

    def rotate(self, user_id: str, trigger: str = "session_completed") -> RotationEvent:
        """
        Advance to the next track. Never blocked by content readiness.

        The outgoing track is promoted so its next unit is LIVE for its next
        turn. If one of its moving units is still loading, that shift is
        deferred (see promote_deferred) and the rotation goes ahead anyway.
        Entering a track whose shift is still deferred forces it through.

        Args:
            user_id: Learner id
            trigger: What caused the rotation (recorded on the event)

        Returns:
            The emitted RotationEvent; emergency_load is True when the
            incoming track's LIVE unit is not loaded yet
        """
        state = self.state(user_id)
        outgoing = state.active_track
        incoming = next_track(outgoing)

        evicted = None
        deferred = False
        try:
            evicted = self.cache.promote(user_id, outgoing)
        except SlotNotReady as e:
            state.deferred.add(outgoing)
            deferred = True
            logger.warning("Deferring promotion for {}: {}", user_id, e.message)

        if incoming in state.deferred:
            try:
                self.cache.promote(user_id, incoming)
            except SlotNotReady:
                self.cache.promote(user_id, incoming, force=True)
                logger.warning("Forced promotion of track {} for {}", incoming, user_id)
            state.deferred.discard(incoming)

        state.active_track = incoming
        state.rotation_count += 1

        live = self.cache.get(user_id, incoming, Slot.LIVE)
        event = RotationEvent(
            user_id=user_id,
            trigger=trigger,
            previous_track=outgoing,
            active_track=incoming,
            rotation_count=state.rotation_count,
            emergency_load=live is None or not live.is_loaded,
            evicted_unit_id=evicted.id if evicted else None,
            promotion_deferred=deferred,
        )
        logger.info(
            "Rotation #{} for {}: track {} -> {}{}",
            event.rotation_count,
            user_id,
            outgoing,
            incoming,
            " (emergency load)" if event.emergency_load else "",
        )

        for listener in self._listeners:
            listener(event)
        return event

    def promote_deferred(self, user_id: str) -> list[int]:
        """
        Retry the promotions rotate() had to defer.

        Returns:
            Tracks promoted by this call
        """
        state = self.state(user_id)
        promoted = []
        for track_id in sorted(state.deferred):
            try:
                self.cache.promote(user_id, track_id)
            except SlotNotReady:
                continue
            state.deferred.discard(track_id)
            promoted.append(track_id)
        if promoted:
            logger.debug("Deferred promotion done for {}: tracks {}", user_id, promoted)
        return promoted

    def deferred_tracks(self, user_id: str) -> list[int]:
        return sorted(self.state(user_id).deferred)

    def reset(self, user_id: str) -> None:
        self._states.pop(user_id, None)
