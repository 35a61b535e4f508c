"""
Root pytest configuration for backend tests.

Provides:
- backend/ on sys.path
- A fresh SQLite catalog store per test (schema created)
- A fake monotonic clock whose sleep() advances time instantly
"""

import sys
from pathlib import Path

# Add backend directory to Python path so imports like
# `from db.sql import ...` and `from utils.normalize import ...` work
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

import pytest


class FakeClock:
    """Monotonic clock for deterministic delay tests; sleeping advances it."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(tmp_path):
    """Engine on a throwaway SQLite file."""
    from db.engine import dispose_engines, get_engine

    engine = get_engine(f"sqlite:///{tmp_path / 'catalog.db'}")
    yield engine
    dispose_engines()


@pytest.fixture
def session(engine):
    """Session on a store with the full schema."""
    from db.engine import get_session_factory
    from db.schema import create_schema

    session = get_session_factory(engine)()
    create_schema(session)
    yield session
    session.close()
