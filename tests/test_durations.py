"""Tests for duration synthesis and time-spent interpolation."""

from random import Random

import pytest

from daily_requests.durations import (
    DurationSynthesizer,
    PurchaseDurationMode,
    interpolate_time_spent,
    synthesize_duration,
)
from daily_requests.models import Level

from conftest import StubRandom


def level(days_offset: int, time_spent: int) -> Level:
    return Level(
        id=days_offset,
        game_id=1,
        event_token=f"lvl_day{days_offset}",
        level_name=f"L{days_offset}",
        days_offset=days_offset,
        time_spent=time_spent,
    )


class TestSynthesizeDuration:
    """Tests for the randomized duration formula."""

    def test_bounds_for_extreme_draws(self):
        assert synthesize_duration(30, StubRandom(jitter=-1, remainder=0)) == 29000
        assert synthesize_duration(30, StubRandom(jitter=0, remainder=500)) == 30500
        assert synthesize_duration(30, StubRandom(jitter=1, remainder=999)) == 31999

    @pytest.mark.parametrize("base", [0, 1, 30, 3600])
    def test_always_within_range(self, base):
        """Durations stay in [1000*(base-1), 1000*(base+1)+999]."""
        rng = Random(7)
        for _ in range(500):
            duration = synthesize_duration(base, rng)
            assert 1000 * (base - 1) <= duration <= 1000 * (base + 1) + 999

    def test_seeded_generator_is_deterministic(self):
        rng_a, rng_b = Random(42), Random(42)
        first = [synthesize_duration(30, rng_a) for _ in range(5)]
        second = [synthesize_duration(30, rng_b) for _ in range(5)]
        assert first == second


class TestDurationSynthesizer:
    """Tests for per-kind duration modes."""

    def test_levels_always_jitter(self):
        synth = DurationSynthesizer(StubRandom(jitter=1, remainder=3), purchase_mode=PurchaseDurationMode.STORED)
        assert synth.for_level(10) == 11003

    def test_purchase_events_jitter_by_default(self):
        synth = DurationSynthesizer(StubRandom(jitter=-1, remainder=7))
        assert synth.for_purchase_event(40) == 39007

    def test_stored_purchase_durations(self):
        rng = StubRandom()
        synth = DurationSynthesizer(rng, purchase_mode="stored")

        assert synth.for_purchase_event(40) == 40
        assert rng.calls == 0


class TestInterpolateTimeSpent:
    """Tests for time-spent interpolation from levels."""

    LEVELS = [level(2, 30), level(6, 70), level(10, 80)]

    def test_no_levels(self):
        assert interpolate_time_spent(3, []) == 0

    def test_exact_match(self):
        assert interpolate_time_spent(6, self.LEVELS) == 70

    def test_before_first_level_grows_linearly(self):
        # 30 / (2 + 1) = 10 per day
        assert interpolate_time_spent(0, self.LEVELS) == 10
        assert interpolate_time_spent(1, self.LEVELS) == 20

    def test_between_levels(self):
        assert interpolate_time_spent(4, self.LEVELS) == 50
        assert interpolate_time_spent(7, self.LEVELS) == 73  # 72.5 rounds half up

    def test_after_last_level_keeps_value(self):
        assert interpolate_time_spent(30, self.LEVELS) == 80

    def test_unsorted_input(self):
        assert interpolate_time_spent(4, list(reversed(self.LEVELS))) == 50
