"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import pytest
import random
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings  # noqa: E402
from src.core.models import Fact, UnitDescriptor  # noqa: E402
from src.facts.fact_store import build_arithmetic_catalogue, fact_from_id  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (SQLite, engine wiring, API)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def db_url():
    """Get database URL from environment, defaulting to in-memory SQLite."""
    import os
    return os.environ.get("STITCHSTREAM_TEST_DATABASE_URL", "sqlite://")


@pytest.fixture(scope="session")
def catalogue():
    """The standard arithmetic catalogue (built once, read-only)."""
    return build_arithmetic_catalogue()


@pytest.fixture
def settings():
    """Settings with no remote fact service and no .env influence."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        fact_api_url=None,
        retry_delay_seconds=0.0,
        log_level="WARNING",
    )


@pytest.fixture
def rng():
    """Seeded random source for reproducible distractors."""
    return random.Random(1234)


@pytest.fixture
def seven_times_four() -> Fact:
    """Provide mult-7-4 = 28."""
    return fact_from_id("mult-7-4")


@pytest.fixture
def times_table_descriptor() -> UnitDescriptor:
    """Provide a descriptor for the 7x table (7 x 1 .. 7 x 12)."""
    return UnitDescriptor(
        id="t2-0007-0001",
        concept_type="times_table",
        concept_params={"table": 7, "min": 1, "max": 12, "template": "{operand1} × {operand2}"},
        track_id=2,
        ordinal_position=1,
        concept_code="0007",
    )
