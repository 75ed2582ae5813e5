"""Randomized duration synthesis and time-spent interpolation."""

import math
from enum import Enum
from random import Random
from typing import Iterable, Optional, Protocol

from .models import Level

JITTER_CHOICES = (-1, 0, 1)
SCALE = 1000


class RandomSource(Protocol):
    """Subset of `random.Random` used for duration synthesis."""

    def choice(self, seq): ...

    def randrange(self, start, stop=None, step=1): ...


class PurchaseDurationMode(str, Enum):
    """How purchase-event durations are produced."""
    JITTER = "jitter"  # same formula as levels
    STORED = "stored"  # progress.time_spent used as-is


def synthesize_duration(base: int, rng: RandomSource) -> int:
    """Synthesize a randomized duration from a base duration.

    The base is shifted by a jitter drawn from {-1, 0, +1}, scaled by 1000,
    and a random remainder in [0, 1000) is added, so the result lies in
    ``[1000 * (base - 1), 1000 * (base + 1) + 999]``.
    """
    jitter = rng.choice(JITTER_CHOICES)
    return (base + jitter) * SCALE + rng.randrange(0, SCALE)


class DurationSynthesizer:
    """Produces durations for due items from an injected random source."""

    def __init__(
        self,
        rng: Optional[RandomSource] = None,
        purchase_mode: PurchaseDurationMode = PurchaseDurationMode.JITTER,
    ):
        self.rng = rng if rng is not None else Random()
        self.purchase_mode = PurchaseDurationMode(purchase_mode)

    def for_level(self, base: int) -> int:
        return synthesize_duration(base, self.rng)

    def for_purchase_event(self, base: int) -> int:
        if self.purchase_mode == PurchaseDurationMode.STORED:
            return base
        return synthesize_duration(base, self.rng)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def interpolate_time_spent(day: int, levels: Iterable[Level]) -> int:
    """Estimate a base time spent for `day` from a game's levels.

    Exact matches return the level's value. Days before the first level grow
    linearly from zero, days between two levels are interpolated linearly,
    and days after the last level keep its value. Returns 0 when there are no
    levels.
    """
    ordered = sorted(levels, key=lambda l: l.days_offset)
    if not ordered:
        return 0

    for level in ordered:
        if level.days_offset == day:
            return level.time_spent

    prev_level = next((l for l in reversed(ordered) if l.days_offset < day), None)
    next_level = next((l for l in ordered if l.days_offset > day), None)

    if next_level is not None and prev_level is None:
        if next_level.days_offset < 0:
            return next_level.time_spent
        increment = next_level.time_spent / (next_level.days_offset + 1)
        return _round_half_up((day + 1) * increment)

    if prev_level is not None and next_level is not None:
        ratio = (day - prev_level.days_offset) / (next_level.days_offset - prev_level.days_offset)
        return _round_half_up(
            prev_level.time_spent + ratio * (next_level.time_spent - prev_level.time_spent)
        )

    return prev_level.time_spent
