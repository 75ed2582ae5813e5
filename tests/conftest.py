"""Shared fixtures: deterministic random sources and stores."""

from contextlib import contextmanager
from pathlib import Path

import pytest

from daily_requests.errors import StorageError
from daily_requests.storage import SQLiteStore

PROJECT_ROOT = Path(__file__).parent.parent

SESSION_TEMPLATE = (
    "POST /session HTTP/1.1\n"
    "Host: api.example.com\n"
    "\n"
    "token={event_token}&time={time_spent}&level={level_name}"
)


class StubRandom:
    """Random source returning a fixed jitter and remainder."""

    def __init__(self, jitter: int = 0, remainder: int = 0):
        self.jitter = jitter
        self.remainder = remainder
        self.calls = 0

    def choice(self, seq):
        assert self.jitter in seq
        self.calls += 1
        return self.jitter

    def randrange(self, start, stop=None, step=1):
        assert start <= self.remainder < stop
        return self.remainder


class FakeStore:
    """In-memory implementation of the scheduler's read interface."""

    def __init__(self, accounts=(), levels=(), level_progress=(), purchase_events=(), purchase_progress=()):
        self.accounts = {a.id: a for a in accounts}
        self.levels = list(levels)
        self.level_progress = list(level_progress)
        self.purchase_events = list(purchase_events)
        self.purchase_progress = list(purchase_progress)
        self.fail_on: set[str] = set()
        self.sessions = 0
        self.in_session = False

    @contextmanager
    def session(self):
        self.sessions += 1
        self.in_session = True
        try:
            yield self
        finally:
            self.in_session = False

    def _check(self, name: str) -> None:
        assert self.in_session, f"{name} called outside a session"
        if name in self.fail_on:
            raise StorageError("disk I/O error")

    def get_account(self, account_id):
        self._check("get_account")
        return self.accounts.get(account_id)

    def get_levels_by_game(self, game_id):
        self._check("get_levels_by_game")
        return [l for l in self.levels if l.game_id == game_id]

    def get_account_level_progress(self, account_id):
        self._check("get_account_level_progress")
        return [p for p in self.level_progress if p.account_id == account_id]

    def get_purchase_events_by_game(self, game_id):
        self._check("get_purchase_events_by_game")
        return [e for e in self.purchase_events if e.game_id == game_id]

    def get_account_purchase_event_progress(self, account_id):
        self._check("get_account_purchase_event_progress")
        return [p for p in self.purchase_progress if p.account_id == account_id]


@pytest.fixture
def store():
    """Empty in-memory SQLite store with the schema created."""
    s = SQLiteStore()
    s.init_schema()
    yield s
    s.close()


@pytest.fixture
def game_store(store):
    """Store holding one game with three levels, two purchase events and one account."""
    game_id = store.create_game("Idle Quest")
    store.create_level(game_id, "lvl01_day0", "L1", 0, 30)
    store.create_level(game_id, "lvl02_day2", "L2", 2, 50)
    store.create_level(game_id, "tutorial_day2", "-", 2, 10)
    store.create_purchase_event(game_id, "starter_pack", is_restricted=True, max_days_offset=7)
    store.create_purchase_event(game_id, "gem_bundle")
    store.create_account(game_id, "alice", "2025-01-01", "09:00", SESSION_TEMPLATE)
    return store
