"""
Integration tests for the FastAPI service (in-memory SQLite, computed facts).
"""

import time

import pytest
from fastapi.testclient import TestClient

from src.api.main import create_app

BASE = "/api/learners"


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def wait_until_loaded(client, user_id: str = "u1", timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        status = client.get(f"{BASE}/{user_id}/status").json()
        states = [
            slot["status"]
            for track in status["slots"].values()
            for slot in track.values()
            if slot is not None
        ]
        if len(states) == 9 and all(state == "loaded" for state in states):
            return status
        if time.monotonic() > deadline:
            raise AssertionError(f"pipeline not loaded: {states}")
        time.sleep(0.02)


class TestHealth:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "stitchstream"

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["components"]["database"] == "ok"
        assert body["components"]["fact_api"] == "computed"
        assert body["components"]["scheduler"] == "running"


class TestLearnerFlow:
    def test_initialize_returns_loaded_live_unit(self, client):
        response = client.post(f"{BASE}/u1/initialize")

        assert response.status_code == 200
        body = response.json()
        assert body["unit_id"] == "t1-0001-0001"
        assert body["track_id"] == 1
        assert body["status"] == "loaded"
        assert body["emergency_load"] is False
        assert len(body["questions"]) == 20

    def test_question_and_answer(self, client):
        client.post(f"{BASE}/u1/initialize")
        question = client.get(f"{BASE}/u1/question").json()

        response = client.post(
            f"{BASE}/u1/answers",
            json={"question_id": question["id"], "correct": True, "latency_ms": 900},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["fact_id"] == question["fact_id"]
        assert (body["previous_level"], body["new_level"]) == (1, 2)
        assert body["level_name"] == "Digit Slip"
        assert body["answered"] == 1
        assert body["next_question"]["id"] != question["id"]

        mastery = client.get(f"{BASE}/u1/mastery").json()
        assert mastery["levels"][question["fact_id"]] == 2

    def test_session_complete_rotates(self, client):
        client.post(f"{BASE}/u1/initialize")
        wait_until_loaded(client)
        question = client.get(f"{BASE}/u1/question").json()
        client.post(
            f"{BASE}/u1/answers",
            json={"question_id": question["id"], "correct": True, "latency_ms": 900},
        )

        response = client.post(f"{BASE}/u1/session-complete", json={"trigger": "timeout"})

        assert response.status_code == 200
        body = response.json()
        assert body["promotion_deferred"] is False
        assert body["emergency_load"] is False
        assert body["reposition"] == {
            "concept": "t1:0001",
            "correct": 1,
            "total": 20,
            "perfect": False,
            "skip_number": 4,
            "previous_position": 1,
            "new_position": 1,
        }
        assert body["active_track"] == 2
        assert body["rotation_count"] == 1
        assert body["live_unit"]["unit_id"] == "t2-0019-0001"

    def test_status(self, client):
        client.post(f"{BASE}/u1/initialize")
        status = wait_until_loaded(client)

        assert status["active_track"] == 1
        assert status["rotation_count"] == 0
        assert status["deferred_tracks"] == []
        assert (status["answered"], status["correct"]) == (0, 0)
        assert status["slots"]["1"]["live"]["unit_id"] == "t1-0001-0001"
        assert status["scheduler"]["running"] is True


class TestErrors:
    def test_uninitialized_user(self, client):
        response = client.get(f"{BASE}/ghost/live-unit")
        assert response.status_code == 404
        assert response.json()["error"] == "USER_NOT_INITIALIZED"

    def test_unknown_question(self, client):
        client.post(f"{BASE}/u1/initialize")
        response = client.post(
            f"{BASE}/u1/answers",
            json={"question_id": "nope", "correct": True, "latency_ms": 100},
        )
        assert response.status_code == 404
        assert response.json()["error"] == "UNKNOWN_QUESTION"

    def test_negative_latency_rejected(self, client):
        client.post(f"{BASE}/u1/initialize")
        question = client.get(f"{BASE}/u1/question").json()
        response = client.post(
            f"{BASE}/u1/answers",
            json={"question_id": question["id"], "correct": True, "latency_ms": -5},
        )
        assert response.status_code == 422
