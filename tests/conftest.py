import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Allow `import linkvault` without installing the package.
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from linkvault.origin import OriginStorage  # noqa: E402
from linkvault.persistence import Persistence  # noqa: E402
from linkvault.store import EntityStore  # noqa: E402


class StepClock:
    """Deterministic clock: every call is one second after the previous one."""

    def __init__(self, start: datetime = datetime(2025, 10, 18, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "origin.sqlite"


@pytest.fixture
def origin(db_path: Path):
    with OriginStorage(db_path) as o:
        yield o


@pytest.fixture
def persistence(origin):
    return Persistence(origin)


@pytest.fixture
def store(persistence, clock):
    s = EntityStore(persistence, clock=clock)
    s.load_from_storage()
    return s


@pytest.fixture(autouse=True)
def _block_network(monkeypatch):
    """Tests must never reach the network."""

    def _blocked(*_args, **_kwargs):
        raise AssertionError("network access attempted during tests")

    import httpx

    monkeypatch.setattr(httpx.Client, "send", _blocked)
