"""Shared fixtures for graphledger tests."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from graphledger.context import ANONYMOUS, reset_actor, set_actor
from graphledger.restore import RestoreEngine
from graphledger.store import GraphStore


class FakeClock:
    """Strictly increasing clock; every call advances by ``step``."""

    def __init__(
        self,
        start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc),
        step: timedelta = timedelta(seconds=1),
    ) -> None:
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        self.current += self.step
        return self.current


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db_path(data_dir):
    return data_dir / "graph.db"


@pytest.fixture
def store(db_path, clock):
    """Graph store on a fresh file with a deterministic clock."""
    graph = GraphStore(db_path, clock=clock)
    yield graph
    graph.close()


@pytest.fixture
def restorer(store):
    return RestoreEngine(store)


@pytest.fixture(autouse=True)
def anonymous_actor():
    """Keep actor context from leaking between tests."""
    token = set_actor(ANONYMOUS)
    yield
    reset_actor(token)
