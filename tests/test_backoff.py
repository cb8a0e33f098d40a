"""Tests for the reconnect delay policy."""

import random

import pytest

from syncthing_status.backoff import Backoff


class TestBaseDelay:
    def test_geometric_growth(self):
        b = Backoff(minimum=1, maximum=60, factor=2, jitter=0)
        assert [b.delay(n) for n in range(1, 6)] == [1, 2, 4, 8, 16]

    def test_capped_at_maximum(self):
        b = Backoff(minimum=1, maximum=10, factor=2, jitter=0, max_attempts=20)
        assert b.delay(10) == 10

    def test_attempts_beyond_max_use_max_attempts(self):
        b = Backoff(minimum=1, maximum=1000, factor=2, jitter=0, max_attempts=4)
        assert b.delay(9) == b.delay(4) == 8

    def test_attempt_below_one_clamped(self):
        b = Backoff(minimum=3, jitter=0)
        assert b.delay(0) == 3

    def test_capped_flag_forces_maximum(self):
        b = Backoff(minimum=1, maximum=45, jitter=0)
        assert b.delay(1, capped=True) == 45


class TestCap:
    def test_cap(self):
        b = Backoff(max_attempts=5)
        assert b.cap(0) == 1
        assert b.cap(3) == 3
        assert b.cap(99) == 5


class TestJitter:
    def test_within_bounds(self):
        b = Backoff(minimum=10, maximum=1000, factor=1, jitter=0.2, rng=random.Random(1))
        delays = [b.delay(1) for _ in range(200)]
        assert all(8 <= d <= 12 for d in delays)
        assert len(set(delays)) > 1

    def test_never_exceeds_maximum(self):
        b = Backoff(minimum=1, maximum=30, jitter=0.5, rng=random.Random(7))
        assert all(b.delay(8) <= 30 for _ in range(200))

    @pytest.mark.parametrize("seed", [1, 2, 3])
    def test_seeded_rng_is_reproducible(self, seed):
        a = Backoff(rng=random.Random(seed))
        b = Backoff(rng=random.Random(seed))
        assert [a.delay(n) for n in range(1, 5)] == [b.delay(n) for n in range(1, 5)]
