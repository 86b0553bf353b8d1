from pathlib import Path

import pytest

from csg.core.db import make_engine
from csg.core.storage import LocalStorage
from csg.modules.series.service import SeriesStore


class FakeClock:
    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{(tmp_path / 'app.db').as_posix()}"


@pytest.fixture
def storage(db_url: str) -> LocalStorage:
    return LocalStorage(make_engine(db_url))


@pytest.fixture
def store(storage: LocalStorage, clock: FakeClock) -> SeriesStore:
    return SeriesStore(storage, clock=clock)
