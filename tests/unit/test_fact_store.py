"""
Unit tests for fact ids, computed facts and the in-memory FactStore.
"""

import pytest

from src.core.errors import InvalidFactId
from src.core.models import FactQuery
from src.facts.fact_store import (
    FactStore,
    InMemoryFactStore,
    difficulty_band,
    estimate_difficulty,
    fact_from_id,
    fact_id,
    parse_fact_id,
)


class TestFactIds:
    def test_round_trip(self):
        assert fact_id("mult", 7, 4) == "mult-7-4"
        assert parse_fact_id("mult-7-4") == ("mult", 7, 4)

    @pytest.mark.parametrize("value", ["pow-2-3", "mult-7", "mult-a-b", "", "add-1-2-3"])
    def test_malformed_ids(self, value):
        with pytest.raises(InvalidFactId):
            parse_fact_id(value)


class TestFactFromId:
    def test_results(self):
        assert fact_from_id("add-2-3").result == 5
        assert fact_from_id("sub-9-4").result == 5
        assert fact_from_id("mult-7-4").result == 28
        assert fact_from_id("div-56-7").result == 8

    @pytest.mark.parametrize("value", ["div-7-2", "div-5-0", "sub-3-5"])
    def test_no_whole_non_negative_result(self, value):
        with pytest.raises(InvalidFactId):
            fact_from_id(value)

    def test_doubling_and_halving_tags(self):
        doubling = fact_from_id("mult-7-2")
        assert doubling.has_tag("multiplication")
        assert doubling.has_tag("doubling")
        assert doubling.has_tag("two-times-table")
        assert fact_from_id("div-56-2").has_tag("halving")
        assert not fact_from_id("mult-7-4").has_tag("doubling")

    def test_difficulty_band_tag(self):
        fact = fact_from_id("mult-9-8")
        assert difficulty_band(fact.difficulty) in fact.tags


class TestDifficulty:
    def test_easy_multiplication(self):
        assert estimate_difficulty("mult", 0, 5) == 0.1
        assert estimate_difficulty("mult", 1, 9) == 0.15
        assert estimate_difficulty("mult", 10, 3) == 0.2

    def test_crossing_ten_is_harder(self):
        assert estimate_difficulty("add", 7, 5) > estimate_difficulty("add", 3, 4)

    def test_bounds(self, catalogue):
        assert all(0.1 <= fact.difficulty <= 0.9 for fact in catalogue)

    def test_bands(self):
        assert difficulty_band(0.1) == "level-1"
        assert difficulty_band(0.45) == "level-3"
        assert difficulty_band(0.85) == "level-5"


class TestInMemoryFactStore:
    def test_satisfies_protocol(self):
        assert isinstance(InMemoryFactStore(), FactStore)

    def test_get_by_id(self, catalogue):
        assert catalogue.get_by_id("mult-7-4").result == 28
        assert catalogue.get_by_id("mult-99-99") is None

    def test_get_many_skips_unknown_ids(self, catalogue):
        facts = catalogue.get_many(["mult-7-4", "mult-99-99", "div-56-7"])
        assert list(facts) == ["mult-7-4", "div-56-7"]
        assert facts["div-56-7"].result == 8
        assert catalogue.get_many([]) == {}

    def test_catalogue_covers_default_curriculum_ranges(self, catalogue):
        for value in ("mult-100-2", "div-200-2", "mult-19-12", "div-144-12", "add-12-12"):
            assert value in catalogue
        assert len(catalogue) > 1000

    def test_query_by_operation_and_tag(self, catalogue):
        facts = catalogue.query(FactQuery(operation="div", tags=("halving",), limit=500))
        assert facts
        assert all(f.operation == "div" and f.operand2 == 2 for f in facts)
        assert [f.difficulty for f in facts] == sorted(f.difficulty for f in facts)

    def test_query_difficulty_band_and_pagination(self, catalogue):
        query = FactQuery(operation="mult", max_difficulty=0.2, limit=5)
        first = catalogue.query(query)
        second = catalogue.query(FactQuery(operation="mult", max_difficulty=0.2, limit=5, offset=5))
        assert len(first) == 5
        assert all(f.difficulty <= 0.2 for f in first + second)
        assert not {f.id for f in first} & {f.id for f in second}

    def test_add_replaces(self):
        store = InMemoryFactStore([fact_from_id("add-1-1")])
        store.add(fact_from_id("add-1-1"))
        assert len(store) == 1
        assert [f.id for f in store] == ["add-1-1"]
