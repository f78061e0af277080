"""
Unit tests for ContentPreparer: fact derivation, resolution and unit building.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.content.assembler import QuestionAssembler
from src.content.curriculum import default_curriculum
from src.content.populator import ContentPopulator
from src.content.preparer import ContentPreparer
from src.core.errors import PreparationFailed, RemoteFactLoadError
from src.core.models import UnitDescriptor, UnitStatus, UserProgress
from src.core.result import Err, Ok
from src.facts.fact_store import InMemoryFactStore, fact_from_id
from src.facts.remote import ComputedFactSource
from src.mastery.controller import MasteryController


@pytest.fixture
def mastery():
    return MasteryController()


@pytest.fixture
def preparer(catalogue, mastery, rng):
    return ContentPreparer(catalogue, mastery, QuestionAssembler(rng))


def concept_descriptor(track_id: int, code: str) -> UnitDescriptor:
    concept = default_curriculum().get(f"t{track_id}:{code}")
    return UnitDescriptor(
        id=f"t{track_id}-{code}-0001",
        concept_type=concept.concept_type,
        concept_params=dict(concept.params),
        track_id=track_id,
        ordinal_position=1,
        concept_code=code,
    )


class TestDeriveFactIds:
    def test_times_table(self, preparer, times_table_descriptor):
        ids = preparer.derive_fact_ids(times_table_descriptor)
        assert ids == [f"mult-7-{n}" for n in range(1, 13)]

    def test_doubling_numbers_ending_in_zero_or_five(self, preparer):
        ids = preparer.derive_fact_ids(concept_descriptor(1, "0001"))
        assert len(ids) == 20
        assert ids[0] == "mult-5-2"
        assert ids[-1] == "mult-100-2"

    def test_offset_rotates_before_capping(self, preparer):
        ids = preparer.derive_fact_ids(concept_descriptor(1, "0003"))
        assert ids[0] == "mult-35-2"
        assert len(ids) == 20

    def test_halving_uses_even_dividends(self, preparer):
        ids = preparer.derive_fact_ids(concept_descriptor(1, "0002"))
        assert ids[0] == "div-40-2"
        assert all(int(value.split("-")[1]) % 2 == 0 for value in ids)

    def test_division_with_fixed_divisor(self, preparer):
        ids = preparer.derive_fact_ids(concept_descriptor(3, "1001"))
        assert ids[0] == "div-12-2"
        assert ids[-1] == "div-50-2"

    def test_unit_size_caps(self, catalogue, mastery, times_table_descriptor):
        preparer = ContentPreparer(catalogue, mastery, unit_size=5)
        assert len(preparer.derive_fact_ids(times_table_descriptor)) == 5

    def test_unknown_concept_type(self, preparer, times_table_descriptor):
        descriptor = UnitDescriptor(
            id="x", concept_type="fractions", concept_params={}, track_id=1, ordinal_position=1
        )
        with pytest.raises(PreparationFailed):
            preparer.derive_fact_ids(descriptor)

    def test_every_default_concept_yields_a_full_unit(self, preparer):
        progress = UserProgress(user_id="u1")
        populator = ContentPopulator()
        for track_id in (1, 2, 3):
            for descriptor in populator.preview(track_id, progress, 25):
                assert len(preparer.derive_fact_ids(descriptor)) >= 12


class TestPrepare:
    @pytest.mark.asyncio
    async def test_builds_loaded_unit(self, preparer, times_table_descriptor):
        unit = await preparer.prepare(times_table_descriptor, "u1")

        assert unit.status is UnitStatus.LOADED
        assert unit.loaded_at is not None
        assert unit.question_count == 12
        first = unit.questions[0]
        assert first.id == "t2-0007-0001_q1_mult-7-1"
        assert first.text == "7 × 1"
        assert first.correct_answer == "7"
        assert first.distractor != first.correct_answer
        assert first.metadata["position"] == 1
        assert first.metadata["concept_code"] == "0007"

    @pytest.mark.asyncio
    async def test_questions_use_current_boundary_level(self, preparer, mastery, times_table_descriptor):
        mastery.seed("u1", {"mult-7-3": 4})
        unit = await preparer.prepare(times_table_descriptor, "u1")
        levels = {q.fact_id: q.boundary_level for q in unit.questions}
        assert levels["mult-7-3"] == 4
        assert levels["mult-7-4"] == 1

    @pytest.mark.asyncio
    async def test_no_facts_fails(self, mastery, times_table_descriptor):
        preparer = ContentPreparer(InMemoryFactStore(), mastery)
        with pytest.raises(PreparationFailed):
            await preparer.prepare(times_table_descriptor, "u1")

    @pytest.mark.asyncio
    async def test_partial_unit_when_facts_are_scarce(self, mastery, times_table_descriptor):
        store = InMemoryFactStore(fact_from_id(f"mult-7-{n}") for n in (1, 2, 3))
        unit = await ContentPreparer(store, mastery).prepare(times_table_descriptor, "u1")
        assert unit.question_count == 3

    @pytest.mark.asyncio
    async def test_local_facts_resolved_in_one_batch(self, catalogue, mastery, times_table_descriptor):
        store = MagicMock(wraps=catalogue)
        store.get_by_id.side_effect = AssertionError("facts should be fetched in one batch")

        unit = await ContentPreparer(store, mastery).prepare(times_table_descriptor, "u1")

        assert unit.question_count == 12
        store.get_many.assert_called_once()
        assert list(store.get_many.call_args.args[0]) == [f"mult-7-{n}" for n in range(1, 13)]

    @pytest.mark.asyncio
    async def test_remote_fills_missing_facts_and_buffers_them(self, mastery, times_table_descriptor):
        preparer = ContentPreparer(InMemoryFactStore(), mastery, remote=ComputedFactSource())

        unit = await preparer.prepare(times_table_descriptor, "u1")

        assert unit.question_count == 12
        assert "mult-7-12" in preparer.fact_buffer

        preparer.remote = AsyncMock()
        await preparer.prepare(times_table_descriptor, "u2")
        preparer.remote.fetch_many.assert_not_called()

    @pytest.mark.asyncio
    async def test_remote_failure_surfaces(self, mastery, times_table_descriptor):
        remote = AsyncMock()
        remote.fetch_many.side_effect = RemoteFactLoadError("service down")
        preparer = ContentPreparer(InMemoryFactStore(), mastery, remote=remote)

        with pytest.raises(RemoteFactLoadError):
            await preparer.prepare(times_table_descriptor, "u1")


class TestTryPrepare:
    @pytest.mark.asyncio
    async def test_ok(self, preparer, times_table_descriptor):
        result = await preparer.try_prepare(times_table_descriptor, "u1")
        assert isinstance(result, Ok)
        assert result.is_ok
        assert result.unwrap().question_count == 12

    @pytest.mark.asyncio
    async def test_err_instead_of_raise(self, mastery, times_table_descriptor):
        preparer = ContentPreparer(InMemoryFactStore(), mastery)
        result = await preparer.try_prepare(times_table_descriptor, "u1")

        assert isinstance(result, Err)
        assert not result.is_ok
        assert isinstance(result.error, PreparationFailed)
        with pytest.raises(PreparationFailed):
            result.unwrap()


class TestWarmFacts:
    @pytest.mark.asyncio
    async def test_buffers_missing_facts_once(self, mastery, times_table_descriptor):
        preparer = ContentPreparer(InMemoryFactStore(), mastery, remote=ComputedFactSource())

        assert await preparer.warm_facts([times_table_descriptor]) == 12
        assert await preparer.warm_facts([times_table_descriptor]) == 0

    @pytest.mark.asyncio
    async def test_nothing_to_do_without_remote(self, mastery, times_table_descriptor):
        preparer = ContentPreparer(InMemoryFactStore(), mastery)
        assert await preparer.warm_facts([times_table_descriptor]) == 0
