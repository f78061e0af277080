"""
Readiness Cache.

Per user, per track: one LIVE, one READY and one PREPARING slot.

Writers go through set() and promote() only. Both build a fresh TrackState
and swap it in with a single assignment, so a reader holding the old state
never sees a half-applied change.
"""

from __future__ import annotations

from dataclasses import replace

from loguru import logger

from src.core.errors import SlotNotReady
from src.core.models import SLOT_ORDER, TRACK_IDS, ReadyUnit, Slot, TrackState


class ReadinessCache:
    """Three-slot readiness pipeline for every (user, track)."""

    def __init__(self):
        self._states: dict[str, dict[int, TrackState]] = {}

    def _user_states(self, user_id: str) -> dict[int, TrackState]:
        states = self._states.get(user_id)
        if states is None:
            states = {track_id: TrackState(track_id=track_id) for track_id in TRACK_IDS}
            self._states[user_id] = states
        return states

    def track_state(self, user_id: str, track_id: int) -> TrackState:
        if track_id not in TRACK_IDS:
            raise ValueError(f"Unknown track {track_id}")
        return self._user_states(user_id)[track_id]

    def get(self, user_id: str, track_id: int, slot: Slot) -> ReadyUnit | None:
        return self.track_state(user_id, track_id).unit(slot)

    def set(self, user_id: str, track_id: int, slot: Slot, unit: ReadyUnit | None) -> None:
        """
        Replace the occupant of a slot.

        Raises:
            ValueError: If the unit belongs to another track
        """
        if unit is not None and unit.track_id != track_id:
            raise ValueError(f"Unit {unit.id} belongs to track {unit.track_id}, not {track_id}")
        state = self.track_state(user_id, track_id)
        slots = dict(state.slots)
        slots[slot] = unit
        self._user_states(user_id)[track_id] = replace(state, slots=slots)
        logger.debug(
            "Cache {} t{} {} <- {} ({})",
            user_id,
            track_id,
            slot.value,
            unit.id if unit else None,
            unit.status.value if unit else "empty",
        )

    def promote(self, user_id: str, track_id: int, force: bool = False) -> ReadyUnit | None:
        """
        Shift PREPARING -> READY -> LIVE, evicting the current LIVE unit.

        Every unit that moves must be loaded; empty slots move as empty.

        Args:
            user_id: Learner id
            track_id: Track to shift
            force: Shift even if a moving unit is still loading or failed

        Returns:
            The evicted LIVE unit, if any

        Raises:
            SlotNotReady: A moving unit is loading or failed; nothing changes
        """
        state = self.track_state(user_id, track_id)
        ready = state.unit(Slot.READY)
        preparing = state.unit(Slot.PREPARING)

        for slot, unit in ((Slot.READY, ready), (Slot.PREPARING, preparing)):
            if not force and unit is not None and not unit.is_loaded:
                raise SlotNotReady(user_id, track_id, slot.value, unit.status.value)

        evicted = state.unit(Slot.LIVE)
        self._user_states(user_id)[track_id] = replace(
            state,
            slots={Slot.LIVE: ready, Slot.READY: preparing, Slot.PREPARING: None},
            rotation_count=state.rotation_count + 1,
        )
        logger.debug(
            "Promoted {} t{}{}: live={} evicted={}",
            user_id,
            track_id,
            " (forced)" if force else "",
            ready.id if ready else None,
            evicted.id if evicted else None,
        )
        return evicted

    def locate(self, user_id: str, track_id: int, unit_id: str) -> Slot | None:
        """Slot currently holding the unit with this id, if any."""
        state = self.track_state(user_id, track_id)
        for slot in SLOT_ORDER:
            unit = state.unit(slot)
            if unit is not None and unit.id == unit_id:
                return slot
        return None

    def snapshot(self, user_id: str) -> dict[int, TrackState]:
        return dict(self._user_states(user_id))

    def has_user(self, user_id: str) -> bool:
        return user_id in self._states

    def clear_user(self, user_id: str) -> None:
        self._states.pop(user_id, None)
