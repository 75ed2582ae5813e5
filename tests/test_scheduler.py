"""Tests for daily request computation."""

from datetime import date
from random import Random

import pytest

from daily_requests.config import SchedulerConfig
from daily_requests.durations import PurchaseDurationMode
from daily_requests.errors import (
    AccountNotFound,
    DateBeforeStart,
    InvalidDateFormat,
    UpstreamLookupFailure,
)
from daily_requests.models import (
    Account,
    AccountLevelProgress,
    AccountPurchaseEventProgress,
    Level,
    PurchaseEvent,
    RequestType,
)
from daily_requests.scheduler import DailyRequestScheduler, compute_daily_requests
from daily_requests.templates import RenderMode

from conftest import FakeStore, SESSION_TEMPLATE, StubRandom


def make_account(start_date: str = "2025-01-01") -> Account:
    return Account(
        id=1,
        game_id=1,
        name="alice",
        start_date=start_date,
        start_time="09:00",
        request_template=SESSION_TEMPLATE,
    )


LEVEL_L1 = Level(id=1, game_id=1, event_token="lvl01_day0", level_name="L1", days_offset=0, time_spent=30)


def make_store(**kwargs) -> FakeStore:
    kwargs.setdefault("accounts", [make_account()])
    kwargs.setdefault("levels", [LEVEL_L1])
    return FakeStore(**kwargs)


class TestScenarios:
    """End-to-end scenarios against an in-memory store."""

    def test_single_level_on_start_day(self):
        """Start day with one open level yields a session and an event record."""
        response = compute_daily_requests(make_store(), 1, "2025-01-01", rng=Random(1))

        assert response.days_passed == 0
        assert [r.request_type for r in response.requests] == [RequestType.SESSION, RequestType.EVENT]
        for record in response.requests:
            assert 29000 <= record.time_spent <= 31999
            assert record.event_token == "lvl01"
        assert response.requests[0].time_spent == response.requests[1].time_spent

    @pytest.mark.parametrize("seed", range(20))
    def test_duration_bounds_across_seeds(self, seed):
        response = compute_daily_requests(make_store(), 1, "2025-01-01", rng=Random(seed))
        assert all(29000 <= r.time_spent <= 31999 for r in response.requests)

    def test_completed_level_yields_nothing(self):
        store = make_store(
            level_progress=[AccountLevelProgress(account_id=1, level_id=1, is_completed=True)]
        )
        response = compute_daily_requests(store, 1, "2025-01-01", rng=StubRandom())

        assert response.requests == []
        assert response.to_dict()["requests"] == []

    def test_dangling_purchase_progress_yields_nothing(self):
        """A progress row for a missing purchase event is skipped without error."""
        store = make_store(
            levels=[],
            purchase_progress=[
                AccountPurchaseEventProgress(account_id=1, purchase_event_id=42, days_offset=5, time_spent=40)
            ],
        )
        response = compute_daily_requests(store, 1, "2025-01-06", rng=StubRandom())

        assert response.days_passed == 5
        assert response.requests == []

    def test_level_off_its_day_yields_nothing(self):
        for target in ("2025-01-02", "2025-01-10"):
            response = compute_daily_requests(make_store(), 1, target, rng=StubRandom())
            assert response.requests == []

    @pytest.mark.parametrize("target", ["2025-01-01", "2025-01-04"])
    def test_negative_offsets_and_durations_are_never_due(self, target):
        """Rows with negative offsets or durations are skipped without error."""
        store = make_store(
            levels=[Level(id=1, game_id=1, event_token="lvl00_day0", level_name="L0", days_offset=-1, time_spent=-5)],
            purchase_events=[PurchaseEvent(id=5, game_id=1, event_token="starter_pack")],
            purchase_progress=[
                AccountPurchaseEventProgress(account_id=1, purchase_event_id=5, days_offset=-3, time_spent=40)
            ],
        )
        response = compute_daily_requests(store, 1, target, rng=StubRandom())

        assert response.requests == []


class TestDailyRequestScheduler:
    """Tests for scheduler options and error mapping."""

    def test_response_shape(self):
        scheduler = DailyRequestScheduler(make_store(), rng=StubRandom(jitter=0, remainder=250))
        data = scheduler.compute_daily_requests(1, "2025-01-01").to_dict()

        assert data["account_id"] == 1
        assert data["account_name"] == "alice"
        assert data["target_date"] == "2025-01-01"
        assert data["days_passed"] == 0
        assert [r["request_type"] for r in data["requests"]] == ["session", "event"]
        assert data["requests"][0]["time_spent"] == 30250

    def test_levels_before_purchase_events(self):
        store = make_store(
            purchase_events=[PurchaseEvent(id=5, game_id=1, event_token="starter_pack")],
            purchase_progress=[
                AccountPurchaseEventProgress(account_id=1, purchase_event_id=5, days_offset=0, time_spent=40)
            ],
        )
        scheduler = DailyRequestScheduler(store, rng=StubRandom())
        tokens = [r.event_token for r in scheduler.compute_daily_requests(1, "2025-01-01").requests]

        assert tokens == ["lvl01", "lvl01", "starter_pack", "starter_pack"]

    def test_stored_purchase_durations(self):
        store = make_store(
            levels=[],
            purchase_events=[PurchaseEvent(id=5, game_id=1, event_token="starter_pack")],
            purchase_progress=[
                AccountPurchaseEventProgress(account_id=1, purchase_event_id=5, days_offset=2, time_spent=40)
            ],
        )
        scheduler = DailyRequestScheduler(
            store, rng=StubRandom(jitter=1), purchase_duration=PurchaseDurationMode.STORED
        )
        response = scheduler.compute_daily_requests(1, "2025-01-03")

        assert [r.time_spent for r in response.requests] == [40, 40]

    def test_legacy_render_mode(self):
        scheduler = DailyRequestScheduler(
            make_store(), rng=StubRandom(), render_mode=RenderMode.LEGACY, legacy_host="legacy.test"
        )
        session = scheduler.compute_daily_requests(1, "2025-01-01").requests[0]

        assert "Host: legacy.test" in session.content
        assert "environment=production&event_token=lvl01&time_spent=30000" in session.content

    def test_short_start_date_uses_today(self):
        store = make_store(accounts=[make_account(start_date="01-Jan")])
        scheduler = DailyRequestScheduler(store, rng=StubRandom(), today=lambda: date(2025, 6, 1))

        assert scheduler.compute_daily_requests(1, "2025-01-01").days_passed == 0

    def test_account_not_found(self):
        with pytest.raises(AccountNotFound) as exc_info:
            compute_daily_requests(make_store(), 99, "2025-01-01")

        assert str(exc_info.value) == "Account with ID 99 not found"

    def test_target_before_start(self):
        with pytest.raises(DateBeforeStart):
            compute_daily_requests(make_store(), 1, "2024-12-31")

    def test_invalid_target_date(self):
        with pytest.raises(InvalidDateFormat):
            compute_daily_requests(make_store(), 1, "01/01/2025")

    @pytest.mark.parametrize("method,operation", [
        ("get_account", "get account"),
        ("get_levels_by_game", "get levels"),
        ("get_account_level_progress", "get level progress"),
        ("get_purchase_events_by_game", "get purchase events"),
        ("get_account_purchase_event_progress", "get purchase event progress"),
    ])
    def test_storage_failures_become_upstream_failures(self, method, operation):
        store = make_store()
        store.fail_on.add(method)

        with pytest.raises(UpstreamLookupFailure) as exc_info:
            compute_daily_requests(store, 1, "2025-01-01")

        assert exc_info.value.operation == operation
        assert str(exc_info.value).startswith(f"Failed to {operation}:")

    def test_reads_happen_in_one_session(self):
        store = make_store()
        compute_daily_requests(store, 1, "2025-01-01", rng=StubRandom())
        assert store.sessions == 1

    def test_from_config(self):
        config = SchedulerConfig({
            "database": {"path": ":memory:"},
            "scheduler": {"seed": 3, "purchase_duration": "stored", "render_mode": "legacy", "legacy_host": "h"},
            "output": {"format": "jsonl"},
        })
        scheduler = DailyRequestScheduler.from_config(make_store(), config)

        assert scheduler.durations.purchase_mode == PurchaseDurationMode.STORED
        assert scheduler.renderer.mode == RenderMode.LEGACY
        assert scheduler.renderer.legacy_host == "h"

    def test_seeded_runs_are_reproducible(self):
        config = SchedulerConfig({"database": {"path": ":memory:"}, "output": {"format": "jsonl"}})
        first = DailyRequestScheduler.from_config(make_store(), config, seed=11)
        second = DailyRequestScheduler.from_config(make_store(), config, seed=11)

        assert (
            first.compute_daily_requests(1, "2025-01-01").to_dict()
            == second.compute_daily_requests(1, "2025-01-01").to_dict()
        )
