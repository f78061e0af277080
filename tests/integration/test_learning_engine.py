"""
Integration tests for LearningEngine: cache, rotation, prefetch and content
preparation wired together through create_learning_engine.
"""

import asyncio
import random
from collections.abc import Sequence

import pytest

from src.core.errors import (
    NoContentAvailable,
    RemoteFactLoadError,
    SessionStartError,
    UnknownQuestion,
    UserNotInitialized,
)
from src.core.models import SLOT_ORDER, ReadyUnit, Slot, UnitStatus
from src.delivery.engine import create_learning_engine
from src.facts.fact_store import InMemoryFactStore
from src.facts.remote import ComputedFactSource
from src.mastery.persistence import InMemoryMasteryPersistence


class FlakySource:
    """Computes facts, but fails every batch containing a 19x table fact."""

    def __init__(self):
        self.computed = ComputedFactSource()

    async def fetch_many(self, fact_ids: Sequence[str]):
        if any(value.startswith("mult-19-") for value in fact_ids):
            raise RemoteFactLoadError("service down")
        return await self.computed.fetch_many(fact_ids)


class FailingSource:
    async def fetch_many(self, fact_ids: Sequence[str]):
        raise RemoteFactLoadError("service down")


@pytest.fixture
def engine(settings):
    return create_learning_engine(settings, rng=random.Random(7))


async def started(engine, user_id: str = "u1"):
    await engine.initialize_for_user(user_id)
    await engine.scheduler.drain()
    return engine


def slot_status(engine, track_id: int, slot: Slot, user_id: str = "u1"):
    unit = engine.cache.get(user_id, track_id, slot)
    return unit.status if unit else None


class TestInitialize:
    @pytest.mark.asyncio
    async def test_fresh_user_gets_full_live_unit(self, engine):
        live = await engine.initialize_for_user("u1")

        assert live.is_loaded
        assert live.id == "t1-0001-0001"
        assert live.question_count == 20
        for question in live.questions:
            assert question.correct_answer != question.distractor
            assert int(question.distractor) >= 0
        assert engine.get_live_unit("u1") is live

    @pytest.mark.asyncio
    async def test_other_slots_are_queued_not_loaded(self, engine):
        await engine.initialize_for_user("u1")

        assert slot_status(engine, 1, Slot.READY) is UnitStatus.LOADING
        assert slot_status(engine, 2, Slot.LIVE) is UnitStatus.LOADING
        priorities = [task.priority for task in engine.scheduler.pending()]
        assert priorities == sorted(priorities)
        assert 1 not in priorities
        assert {4, 5} <= set(priorities)

    @pytest.mark.asyncio
    async def test_drain_loads_every_slot(self, engine):
        await started(engine)

        for track_id in (1, 2, 3):
            for slot in (Slot.LIVE, Slot.READY, Slot.PREPARING):
                assert slot_status(engine, track_id, slot) is UnitStatus.LOADED

    @pytest.mark.asyncio
    async def test_initialize_twice_returns_live_unit(self, engine):
        first = await engine.initialize_for_user("u1")
        assert await engine.initialize_for_user("u1") is first

    @pytest.mark.asyncio
    async def test_start_failure_is_wrapped_and_cleaned_up(self, settings):
        engine = create_learning_engine(settings, fact_store=InMemoryFactStore(), remote=FailingSource())

        with pytest.raises(SessionStartError):
            await engine.initialize_for_user("u1")

        assert not engine.is_initialized("u1")
        assert not engine.cache.has_user("u1")

    def test_calls_before_initialize(self, engine):
        with pytest.raises(UserNotInitialized):
            engine.get_live_unit("nobody")


class TestAnswers:
    @pytest.mark.asyncio
    async def test_answer_advances_cursor_and_level(self, engine):
        live = await engine.initialize_for_user("u1")
        first = engine.current_question("u1")
        assert first is live.questions[0]

        outcome = engine.on_answered("u1", first.id, True, 800)

        assert (outcome.previous_level, outcome.new_level) == (1, 2)
        assert outcome.answered == 1
        assert outcome.next_question is live.questions[1]
        assert engine.current_question("u1") is live.questions[1]

    @pytest.mark.asyncio
    async def test_unit_complete_after_last_question(self, engine):
        live = await engine.initialize_for_user("u1")
        for question in live.questions:
            outcome = engine.on_answered("u1", question.id, False, 3000)
        assert outcome.unit_complete
        assert engine.current_question("u1") is None

    @pytest.mark.asyncio
    async def test_unknown_question(self, engine):
        await engine.initialize_for_user("u1")
        with pytest.raises(UnknownQuestion):
            engine.on_answered("u1", "nope", True, 100)

    def test_boundary_level_up_then_down(self, engine):
        assert engine.mastery.record_response("u1", "add-2-3", True, 800) == 2
        assert engine.mastery.record_response("u1", "add-2-3", False, 800) == 1


class TestRotation:
    @pytest.mark.asyncio
    async def test_complete_session_rotates_to_next_track(self, engine):
        await started(engine)

        outcome = await engine.complete_session("u1")

        assert outcome.active_track == 2
        assert not outcome.emergency_load
        assert not outcome.promotion_deferred
        assert outcome.live_unit.id == "t2-0019-0001"
        assert outcome.event.evicted_unit_id == "t1-0001-0001"
        assert engine.cache.get("u1", 1, Slot.LIVE).id == "t1-0002-0002"
        # Nothing was answered, so the first concept comes straight back
        refill = engine.cache.get("u1", 1, Slot.PREPARING)
        assert refill.id == "t1-0001-0004"
        assert engine.scheduler.is_pending(refill.id)

    @pytest.mark.asyncio
    async def test_tracks_cycle(self, engine):
        await started(engine)
        tracks = []
        for _ in range(6):
            tracks.append((await engine.complete_session("u1")).active_track)
            await engine.scheduler.drain()
        assert tracks == [2, 3, 1, 2, 3, 1]
        assert engine.get_live_unit("u1").id == "t1-0003-0003"

    @pytest.mark.asyncio
    async def test_new_live_unit_resets_cursor(self, engine):
        live = await engine.initialize_for_user("u1")
        await engine.scheduler.drain()
        engine.on_answered("u1", live.questions[0].id, True, 100)

        await engine.complete_session("u1")

        assert engine.status("u1").cursor == 0
        assert engine.current_question("u1") is engine.get_live_unit("u1").questions[0]

    @pytest.mark.asyncio
    async def test_rotation_goes_ahead_while_lookahead_is_loading(self, engine):
        await started(engine)
        preparing = engine.cache.get("u1", 1, Slot.PREPARING)
        engine.cache.set("u1", 1, Slot.PREPARING, ReadyUnit.placeholder(preparing.descriptor))

        outcome = await engine.complete_session("u1")

        assert outcome.active_track == 2
        assert outcome.promotion_deferred
        assert not outcome.emergency_load
        assert outcome.live_unit.id == "t2-0019-0001"
        assert engine.current_question("u1") is outcome.live_unit.questions[0]
        assert engine.status("u1").deferred_tracks == [1]
        assert engine.cache.get("u1", 1, Slot.LIVE).id == "t1-0001-0001"
        assert engine.scheduler.is_pending(preparing.id)

        await engine.scheduler.drain()

        assert engine.rotation.active_track("u1") == 2
        assert engine.status("u1").deferred_tracks == []
        assert engine.cache.get("u1", 1, Slot.LIVE).id == "t1-0002-0002"
        assert engine.cache.get("u1", 1, Slot.READY).id == preparing.id
        assert slot_status(engine, 1, Slot.PREPARING) is UnitStatus.LOADED

    @pytest.mark.asyncio
    async def test_complete_session_before_any_background_load(self, engine):
        await engine.initialize_for_user("u1")

        outcome = await engine.complete_session("u1")

        assert outcome.active_track == 2
        assert outcome.promotion_deferred
        assert outcome.emergency_load
        first = engine.scheduler.pending()[0]
        assert (first.priority, first.target_unit_id) == (1, "t2-0019-0001")

        await engine.scheduler.drain()

        assert engine.get_live_unit("u1").is_loaded
        assert engine.cache.get("u1", 1, Slot.LIVE).id == "t1-0002-0002"
        assert engine.status("u1").deferred_tracks == []

    @pytest.mark.asyncio
    async def test_returning_to_a_deferred_track_forces_the_shift(self, engine):
        await started(engine)
        ready = engine.cache.get("u1", 1, Slot.READY)
        engine.cache.set("u1", 1, Slot.READY, ReadyUnit.placeholder(ready.descriptor))

        first = await engine.complete_session("u1")
        await engine.complete_session("u1")
        outcome = await engine.complete_session("u1")

        assert first.promotion_deferred
        assert outcome.active_track == 1
        assert outcome.emergency_load
        assert outcome.live_unit.id == ready.id
        assert outcome.live_unit.status is UnitStatus.LOADING
        assert engine.status("u1").deferred_tracks == []
        task = engine.scheduler.pending()[0]
        assert (task.priority, task.target_unit_id) == (1, ready.id)

        await engine.scheduler.drain()
        assert engine.get_live_unit("u1").is_loaded

    @pytest.mark.asyncio
    async def test_emergency_load_when_incoming_live_is_not_ready(self, engine):
        await started(engine)
        incoming = engine.cache.get("u1", 2, Slot.LIVE)
        engine.cache.set("u1", 2, Slot.LIVE, ReadyUnit.placeholder(incoming.descriptor))

        outcome = await engine.complete_session("u1")

        assert not outcome.promotion_deferred
        assert outcome.emergency_load
        assert outcome.live_unit.status is UnitStatus.LOADING
        assert engine.current_question("u1") is None
        first = engine.scheduler.pending()[0]
        assert (first.priority, first.target_unit_id) == (1, incoming.id)

        await engine.scheduler.drain()
        assert engine.get_live_unit("u1").is_loaded

    @pytest.mark.asyncio
    async def test_empty_live_slot(self, engine):
        await started(engine)
        engine.cache.set("u1", 1, Slot.LIVE, None)
        with pytest.raises(NoContentAvailable):
            engine.get_live_unit("u1")


class TestSpacedRepetition:
    @pytest.mark.asyncio
    async def test_status_counts_answers(self, engine):
        live = (await started(engine)).get_live_unit("u1")
        for question, correct in zip(live.questions, (True, False, True)):
            engine.on_answered("u1", question.id, correct, 900)

        status = engine.status("u1")
        assert (status.answered, status.correct) == (3, 2)

        await engine.complete_session("u1")
        assert engine.status("u1").answered == 0

    @pytest.mark.asyncio
    async def test_missed_concept_is_served_again(self, engine):
        live = (await started(engine)).get_live_unit("u1")
        for question in live.questions:
            engine.on_answered("u1", question.id, False, 4000)

        outcome = await engine.complete_session("u1")

        assert not outcome.reposition.perfect
        assert (outcome.reposition.correct_count, outcome.reposition.total_count) == (0, 20)
        assert outcome.reposition.skip_number == 4
        assert outcome.reposition.new_position == outcome.reposition.previous_position == 1
        assert engine.cache.get("u1", 1, Slot.PREPARING).descriptor.concept_code == "0001"

        for _ in range(2):
            await engine.scheduler.drain()
            await engine.complete_session("u1")
        await engine.scheduler.drain()

        assert engine.rotation.active_track("u1") == 1
        codes = [engine.cache.get("u1", 1, slot).descriptor.concept_code for slot in SLOT_ORDER]
        assert codes == ["0002", "0003", "0001"]

    @pytest.mark.asyncio
    async def test_perfect_unit_moves_concept_back(self, engine):
        live = (await started(engine)).get_live_unit("u1")
        for question in live.questions:
            engine.on_answered("u1", question.id, True, 900)

        outcome = await engine.complete_session("u1")

        assert outcome.reposition.perfect
        assert outcome.reposition.concept_key == "t1:0001"
        assert outcome.reposition.skip_number == 4
        assert (outcome.reposition.previous_position, outcome.reposition.new_position) == (1, 4)
        assert engine.cache.get("u1", 1, Slot.PREPARING).id == "t1-0004-0004"

    @pytest.mark.asyncio
    async def test_score_comes_from_the_current_live_unit(self, engine):
        await started(engine)
        outcome = await engine.complete_session("u1")
        for question in outcome.live_unit.questions[:5]:
            engine.on_answered("u1", question.id, True, 900)

        nxt = await engine.complete_session("u1")

        assert nxt.reposition.concept_key == "t2:0019"
        assert nxt.reposition.correct_count == 5


class TestBackgroundLoads:
    @pytest.mark.asyncio
    async def test_stale_load_is_skipped(self, engine):
        await engine.initialize_for_user("u1")
        engine.cache.set("u1", 3, Slot.PREPARING, None)

        await engine.scheduler.drain()

        assert engine.cache.get("u1", 3, Slot.PREPARING) is None
        assert engine.scheduler.stats().dropped == 0

    @pytest.mark.asyncio
    async def test_dropped_load_leaves_error_unit(self, settings):
        engine = create_learning_engine(settings, fact_store=InMemoryFactStore(), remote=FlakySource())
        await engine.initialize_for_user("u1")

        for _ in range(settings.max_task_retries):
            await engine.scheduler.drain()

        failed = engine.cache.get("u1", 2, Slot.LIVE)
        assert failed.status is UnitStatus.ERROR
        assert "service down" in failed.error
        assert engine.scheduler.stats().dropped == 1
        assert slot_status(engine, 2, Slot.READY) is UnitStatus.LOADED

    @pytest.mark.asyncio
    async def test_background_loop_fills_pipeline(self, engine):
        engine.start()
        try:
            await engine.initialize_for_user("u1")
            for _ in range(200):
                if all(
                    slot_status(engine, t, s) is UnitStatus.LOADED
                    for t in (1, 2, 3)
                    for s in (Slot.LIVE, Slot.READY, Slot.PREPARING)
                ):
                    break
                await asyncio.sleep(0.01)
            else:
                pytest.fail("pipeline was not filled in the background")
        finally:
            await engine.shutdown()

    @pytest.mark.asyncio
    async def test_recipe_buffer_warmup(self, engine):
        await started(engine)
        upcoming = engine.status("u1").upcoming
        assert set(upcoming) == {1, 2, 3}
        assert upcoming[1][0] == "t1-0004-0004"
        assert len(upcoming[2]) == engine.lookahead_units


class TestPersistence:
    @pytest.mark.asyncio
    async def test_levels_are_seeded_and_saved(self, settings):
        persistence = InMemoryMasteryPersistence({"u1": {"mult-5-2": 4}})
        engine = create_learning_engine(settings, persistence=persistence, rng=random.Random(1))

        await started(engine)
        live = engine.get_live_unit("u1")
        first = live.questions[0]
        assert first.fact_id == "mult-5-2"
        assert first.boundary_level == 4

        engine.on_answered("u1", first.id, True, 100)
        await engine.complete_session("u1")
        await engine.scheduler.drain()

        assert persistence.load_levels("u1")["mult-5-2"] == 5
