"""
Unit tests for bounded polling.
"""

import itertools

import pytest

from core.retry import backoff_delays, poll_until


def test_backoff_delays_are_capped():
    delays = list(itertools.islice(backoff_delays(2, 2, 10), 6))
    assert delays == [2, 4, 8, 10, 10, 10]


def test_constant_delays():
    delays = list(itertools.islice(backoff_delays(10, 1, 10), 3))
    assert delays == [10, 10, 10]


class TestPollUntil:
    """Test poll_until with a fake clock."""

    @pytest.mark.asyncio
    async def test_immediate_success_never_sleeps(self, fake_clock):
        async def check():
            return True

        assert await poll_until(check, timeout=60, sleep=fake_clock.sleep, clock=fake_clock) is True
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_succeeds_after_backoff(self, fake_clock):
        results = iter([False, False, True])

        async def check():
            return next(results)

        ok = await poll_until(check, timeout=60, sleep=fake_clock.sleep, clock=fake_clock)

        assert ok is True
        assert fake_clock.sleeps == [2, 4]

    @pytest.mark.asyncio
    async def test_budget_is_never_exceeded(self, fake_clock):
        async def check():
            return False

        start = fake_clock.now
        ok = await poll_until(check, timeout=10, sleep=fake_clock.sleep, clock=fake_clock)

        assert ok is False
        assert fake_clock.sleeps == [2, 4, 4]
        assert fake_clock.now - start == 10

    @pytest.mark.asyncio
    async def test_max_attempts(self, fake_clock):
        calls = []

        async def check():
            calls.append(1)
            return False

        ok = await poll_until(check, timeout=600, max_attempts=3, sleep=fake_clock.sleep, clock=fake_clock)

        assert ok is False
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_retry_on_exceptions(self, fake_clock):
        results = iter([ConnectionError("refused"), True])

        async def check():
            result = next(results)
            if isinstance(result, Exception):
                raise result
            return result

        ok = await poll_until(
            check, timeout=30, retry_on=(ConnectionError,), sleep=fake_clock.sleep, clock=fake_clock
        )
        assert ok is True

    @pytest.mark.asyncio
    async def test_unexpected_exception_propagates(self, fake_clock):
        async def check():
            raise KeyError("boom")

        with pytest.raises(KeyError):
            await poll_until(check, timeout=30, retry_on=(ConnectionError,), sleep=fake_clock.sleep, clock=fake_clock)
