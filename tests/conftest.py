"""Shared fixtures: fake clock and a queue store on a temp database."""

from pathlib import Path

import pytest

from relay.queue import QueueStore


class FakeClock:
    """Manually advanced wall clock for visibility timeout tests."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "queue.db"


@pytest.fixture
async def store(db_path: Path, clock: FakeClock) -> QueueStore:
    s = QueueStore(
        db_path=db_path,
        default_queue="orders",
        max_receive_count=3,
        poll_interval=0.05,
        clock=clock,
    )
    yield s
    await s.close()
