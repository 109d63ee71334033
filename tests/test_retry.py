"""
Tests for backoff delays, Retry-After parsing and the retry loop.
"""

import random
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from ingestor.ingestion.config import RetryPolicy
from ingestor.ingestion.retry import backoff_delay, parse_retry_after, retry_with_backoff
from tests.fixtures.provider import VirtualClock


class TestBackoffDelay:
    def test_exponential_without_jitter(self):
        policy = RetryPolicy(base_delay=5.0, max_delay=120.0, jitter=0.0)

        delays = [backoff_delay(policy, k) for k in range(6)]

        assert delays == [5.0, 10.0, 20.0, 40.0, 80.0, 120.0]

    def test_jitter_stays_within_bounds(self):
        policy = RetryPolicy(base_delay=5.0, max_delay=120.0, jitter=0.2)
        rng = random.Random(1234)

        for k in range(7):
            nominal = 5.0 * 2**k
            for _ in range(50):
                delay = backoff_delay(policy, k, rng)
                assert delay <= 120.0
                assert delay >= min(nominal * 0.8, 120.0)
                assert delay <= nominal * 1.2

    def test_cap_applies_after_jitter(self):
        policy = RetryPolicy(base_delay=100.0, max_delay=110.0, jitter=0.2)

        class High:
            def uniform(self, a, b):
                return b

        assert backoff_delay(policy, 0, High()) == 110.0

    def test_max_below_base_rejected(self):
        with pytest.raises(ValidationError):
            RetryPolicy(base_delay=10.0, max_delay=5.0)


class TestParseRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("30") == 30.0

    def test_fractional_seconds(self):
        assert parse_retry_after(" 1.5 ") == 1.5

    def test_http_date(self):
        now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        header = "Wed, 01 May 2024 12:00:45 GMT"

        assert parse_retry_after(header, now=now) == 45.0

    @pytest.mark.parametrize("value", [None, "", "soon", "0", "-3", "nan"])
    def test_unusable_values(self, value):
        assert parse_retry_after(value) is None

    def test_past_http_date(self):
        now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        header = (now - timedelta(minutes=1)).strftime("%a, %d %b %Y %H:%M:%S GMT")

        assert parse_retry_after(header, now=now) is None


class TestRetryWithBackoff:
    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        clock = VirtualClock()
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("reset")
            return "ok"

        policy = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=10.0, jitter=0.0)
        result = await retry_with_backoff(
            flaky, policy, retry_on=(ConnectionError,), sleep=clock.sleep
        )

        assert result == "ok"
        assert len(calls) == 3
        assert clock.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_reraises_when_exhausted(self):
        clock = VirtualClock()

        async def always_down():
            raise ConnectionError("down")

        policy = RetryPolicy(max_attempts=2, base_delay=1.0, max_delay=10.0, jitter=0.0)
        with pytest.raises(ConnectionError):
            await retry_with_backoff(
                always_down, policy, retry_on=(ConnectionError,), sleep=clock.sleep
            )
        assert clock.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        clock = VirtualClock()
        calls = []

        async def broken():
            calls.append(1)
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await retry_with_backoff(
                broken, RetryPolicy(), retry_on=(ConnectionError,), sleep=clock.sleep
            )
        assert len(calls) == 1
        assert clock.sleeps == []
