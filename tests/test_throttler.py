"""
Throttler / ExponentialBackoff.

TESTS:
    1. Requests under the limit never wait.
    2. The request over the limit waits until the window frees up.
    3. Unknown limit ids are not throttled.
    4. Backoff grows exponentially and respects the cap.
"""

import pytest

from vnconnector.net import ExponentialBackoff, RateLimit, Throttler


class _FakeTime:

    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_time():
    return _FakeTime()


class TestThrottler:

    def test_under_limit_no_wait(self, fake_time):
        t = Throttler({"data_api": RateLimit(3, 1.0)}, clock=fake_time.clock, sleep=fake_time.sleep)

        waits = [t.acquire("data_api") for _ in range(3)]

        assert waits == [0.0, 0.0, 0.0]
        assert fake_time.sleeps == []

    def test_over_limit_waits_for_window(self, fake_time):
        t = Throttler({"data_api": RateLimit(2, 1.0)}, clock=fake_time.clock, sleep=fake_time.sleep)
        t.acquire("data_api")
        fake_time.now += 0.25
        t.acquire("data_api")

        waited = t.acquire("data_api")

        assert waited == pytest.approx(0.75)
        assert fake_time.sleeps == [pytest.approx(0.75)]

    def test_window_expiry_frees_capacity(self, fake_time):
        t = Throttler({"data_api": RateLimit(1, 1.0)}, clock=fake_time.clock, sleep=fake_time.sleep)
        t.acquire("data_api")
        fake_time.now += 1.5

        assert t.acquire("data_api") == 0.0

    def test_unknown_limit_not_throttled(self, fake_time):
        t = Throttler({}, clock=fake_time.clock, sleep=fake_time.sleep)
        assert all(t.acquire("trading_api") == 0.0 for _ in range(100))


class TestBackoff:

    def test_exponential_without_jitter(self):
        b = ExponentialBackoff(base=1.0, multiplier=2.0, max_delay=30.0, jitter=False)
        assert [b.next_delay(i) for i in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self):
        b = ExponentialBackoff(base=1.0, multiplier=2.0, max_delay=5.0, jitter=False)
        assert b.next_delay(10) == 5.0

    def test_jitter_within_25_percent(self):
        b = ExponentialBackoff(base=4.0, multiplier=1.0, max_delay=30.0, jitter=True)
        for _ in range(50):
            assert 3.0 <= b.next_delay(0) <= 5.0
