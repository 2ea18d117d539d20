import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Ensure project root on sys.path
_THIS_DIR = Path(__file__).resolve().parent
_PROJECT_ROOT = _THIS_DIR.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from vouchbot.core import Config, Database, QueryCache, VouchStore  # noqa: E402

DAY = "2026-03-14"


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture()
def cfg():
    return Config({
        "free_carries": {"min_messages": 5},
        "paid_helpers": {"vouches_for_access": 3},
    })


@pytest.fixture()
def db_path(tmp_path):
    return str(tmp_path / "vouchbot_test.sqlite3")


@pytest.fixture()
def clock():
    return FakeClock()


def build_store(db_path: str, cfg: Config, clock=None) -> VouchStore:
    cache = QueryCache(ttl=60, clock=clock) if clock else QueryCache(ttl=60)
    return VouchStore(Database(db_path), cache, cfg)


@pytest_asyncio.fixture()
async def store(db_path, cfg, clock):
    s = build_store(db_path, cfg, clock)
    await s.connect()
    try:
        yield s
    finally:
        await s.close()


async def make_ticket(store: VouchStore, number: str, **fields):
    values = {
        "ticket_number": number,
        "user_id": "u-100",
        "user_tag": "requester#0001",
        "channel_id": f"chan-{number}",
        "contact": "in ticket",
        "game": "als",
        "gamemode": "raids",
        "goal": "clear act 3",
    }
    values.update(fields)
    return await store.create_ticket(**values)
