"""Token-bucket limiter: per-key budgets and refill."""

import unittest

from pgdesk.core.ratelimit import RateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestRateLimiter(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.limiter = RateLimiter(limit=3, per_seconds=60, clock=self.clock)

    def test_budget_is_per_key(self) -> None:
        self.assertEqual([self.limiter.allow("auth:login:ip:a") for _ in range(4)], [True, True, True, False])
        self.assertTrue(self.limiter.allow("auth:login:ip:b"))

    def test_refills_over_time(self) -> None:
        for _ in range(3):
            self.limiter.allow("k")
        self.assertFalse(self.limiter.allow("k"))
        self.clock.now += 20
        self.assertTrue(self.limiter.allow("k"))
        self.assertFalse(self.limiter.allow("k"))

    def test_disabled_always_allows(self) -> None:
        limiter = RateLimiter(limit=1, per_seconds=60, enabled=False, clock=self.clock)
        self.assertTrue(all(limiter.allow("k") for _ in range(10)))

    def test_retry_after(self) -> None:
        self.assertEqual(self.limiter.retry_after(), 20)
