"""
Unit tests for the sliding-window rate limiter
Time is driven by the FakeClock fixture, so nothing here really waits
"""
import asyncio

import pytest

from backend.app.core.rate_limiter import GeminiRateLimiter, RateLimitPolicy


def recorder(executed, clock):
    """Build zero-argument coroutine functions that log (index, time) when run"""
    def make_call(index):
        async def call():
            executed.append((index, clock.now))
            return index
        return call
    return make_call


@pytest.mark.unit
@pytest.mark.fast
class TestRateLimitPolicy:

    def test_defaults(self):
        policy = RateLimitPolicy()
        assert policy.requests_per_minute == 15
        assert policy.tokens_per_minute == 1_000_000
        assert policy.requests_per_day == 1500

    def test_rejects_non_positive_limits(self):
        with pytest.raises(ValueError):
            RateLimitPolicy(requests_per_minute=0)


@pytest.mark.unit
@pytest.mark.fast
class TestGeminiRateLimiter:

    @pytest.mark.asyncio
    async def test_ceiling_holds_within_first_minute(self, fake_clock):
        limiter = GeminiRateLimiter(clock=fake_clock, sleep=fake_clock.sleep)
        rpm = limiter.policy.requests_per_minute
        executed = []
        make_call = recorder(executed, fake_clock)
        start = fake_clock.now

        results = await asyncio.gather(*(limiter.throttle(make_call(i)) for i in range(rpm + 5)))

        assert results == list(range(rpm + 5))
        within_first_minute = [t for _, t in executed if t - start < 60]
        assert len(within_first_minute) <= rpm
        # The first call beyond the ceiling waits for the oldest to leave the window
        assert executed[rpm][1] >= executed[0][1] + 60

    @pytest.mark.asyncio
    async def test_fifo_order(self, fake_clock):
        limiter = GeminiRateLimiter(clock=fake_clock, sleep=fake_clock.sleep)
        executed = []
        make_call = recorder(executed, fake_clock)

        await asyncio.gather(*(limiter.throttle(make_call(i)) for i in range(8)))

        assert [index for index, _ in executed] == list(range(8))

    @pytest.mark.asyncio
    async def test_gap_between_queued_calls(self, fake_clock):
        limiter = GeminiRateLimiter(clock=fake_clock, sleep=fake_clock.sleep)
        executed = []
        make_call = recorder(executed, fake_clock)

        await asyncio.gather(*(limiter.throttle(make_call(i)) for i in range(3)))

        times = [t for _, t in executed]
        assert times[1] - times[0] == pytest.approx(0.2)
        assert times[2] - times[1] == pytest.approx(0.2)
        # No trailing gap once the queue is empty
        assert fake_clock.sleeps == [pytest.approx(0.2), pytest.approx(0.2)]

    @pytest.mark.asyncio
    async def test_one_call_in_flight_at_a_time(self, fake_clock):
        limiter = GeminiRateLimiter(clock=fake_clock, sleep=fake_clock.sleep)
        in_flight = {"now": 0, "max": 0}

        async def slow_call():
            in_flight["now"] += 1
            in_flight["max"] = max(in_flight["max"], in_flight["now"])
            await fake_clock.sleep(1)
            in_flight["now"] -= 1

        await asyncio.gather(*(limiter.throttle(slow_call) for _ in range(5)))

        assert in_flight["max"] == 1

    @pytest.mark.asyncio
    async def test_exception_propagates_to_caller_only(self, fake_clock):
        limiter = GeminiRateLimiter(clock=fake_clock, sleep=fake_clock.sleep)

        async def failing():
            raise ValueError("boom")

        async def succeeding():
            return "ok"

        results = await asyncio.gather(
            limiter.throttle(failing),
            limiter.throttle(succeeding),
            return_exceptions=True
        )

        assert isinstance(results[0], ValueError)
        assert results[1] == "ok"

    @pytest.mark.asyncio
    async def test_status_snapshot(self, fake_clock):
        limiter = GeminiRateLimiter(clock=fake_clock, sleep=fake_clock.sleep)
        executed = []
        make_call = recorder(executed, fake_clock)

        assert limiter.get_status() == {
            "queue_length": 0,
            "requests_in_last_minute": 0,
            "requests_per_minute": 15,
        }

        await asyncio.gather(*(limiter.throttle(make_call(i)) for i in range(3)))
        assert limiter.get_status()["requests_in_last_minute"] == 3

        fake_clock.now += 61
        assert limiter.get_status()["requests_in_last_minute"] == 0

    @pytest.mark.asyncio
    async def test_sequential_callers_restart_the_loop(self, fake_clock):
        limiter = GeminiRateLimiter(clock=fake_clock, sleep=fake_clock.sleep)

        async def call():
            return 1

        assert await limiter.throttle(call) == 1
        assert await limiter.throttle(call) == 1
        assert limiter.get_status()["requests_in_last_minute"] == 2

    @pytest.mark.asyncio
    async def test_close_cancels_waiting_callers(self, fake_clock):
        limiter = GeminiRateLimiter(clock=fake_clock, sleep=fake_clock.sleep)
        never = asyncio.Event()

        async def blocked():
            await never.wait()

        task = asyncio.ensure_future(limiter.throttle(blocked))
        for _ in range(3):
            await asyncio.sleep(0)

        await limiter.close()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert limiter.get_status()["queue_length"] == 0
