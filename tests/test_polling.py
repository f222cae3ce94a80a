"""
Tests for the bounded polling loop.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from zkevm_harness.config import PollPolicy
from zkevm_harness.exceptions import OperationCancelledError, TransientError, WaitTimeoutError
from zkevm_harness.polling import WaitLoop


class TestPollPolicy:
    def test_defaults(self):
        policy = PollPolicy()

        assert policy.interval == 1.0
        assert policy.timeout == 60.0

    @pytest.mark.parametrize("interval,timeout", [(0, 1), (-1, 1), (1, 0), (1, -5)])
    def test_rejects_non_positive(self, interval, timeout):
        with pytest.raises(ValueError):
            PollPolicy(interval=interval, timeout=timeout)


class TestWaitUntil:
    """Test WaitLoop.wait_until on a simulated clock."""

    @pytest.mark.asyncio
    async def test_first_probe_is_immediate(self, wait_loop, clock):
        """Should not sleep when the condition already holds."""
        probe = AsyncMock(return_value=True)

        await wait_loop.wait_until(probe, PollPolicy(interval=1, timeout=10))

        assert probe.await_count == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_polls_until_true(self, wait_loop, clock):
        probe = AsyncMock(side_effect=[False, False, False, True])

        await wait_loop.wait_until(probe, PollPolicy(interval=2, timeout=60))

        assert probe.await_count == 4
        assert clock.now == 6

    @pytest.mark.asyncio
    async def test_timeout_within_bounds(self, wait_loop, clock):
        """Should time out no earlier than the deadline and no later than deadline + interval."""
        probe = AsyncMock(return_value=False)
        policy = PollPolicy(interval=1, timeout=2.5)

        with pytest.raises(WaitTimeoutError) as exc_info:
            await wait_loop.wait_until(probe, policy, description="nothing")

        assert policy.timeout <= clock.now <= policy.timeout + policy.interval
        assert exc_info.value.details["attempts"] == probe.await_count
        assert "nothing" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_last_pause_is_clamped(self, wait_loop, clock):
        probe = AsyncMock(return_value=False)

        with pytest.raises(WaitTimeoutError):
            await wait_loop.wait_until(probe, PollPolicy(interval=1, timeout=2.5))

        assert clock.sleeps == [1, 1, 0.5]

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, wait_loop):
        probe = AsyncMock(side_effect=[TransientError("connection refused"), False, True])

        await wait_loop.wait_until(probe, PollPolicy(interval=1, timeout=10))

        assert probe.await_count == 3

    @pytest.mark.asyncio
    async def test_transient_error_reported_on_timeout(self, wait_loop):
        probe = AsyncMock(side_effect=TransientError("connection refused"))

        with pytest.raises(WaitTimeoutError) as exc_info:
            await wait_loop.wait_until(probe, PollPolicy(interval=1, timeout=3))

        assert "connection refused" in exc_info.value.details["last_error"]

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, wait_loop, clock):
        probe = AsyncMock(side_effect=RuntimeError("bad response"))

        with pytest.raises(RuntimeError):
            await wait_loop.wait_until(probe, PollPolicy(interval=1, timeout=10))

        assert probe.await_count == 1
        assert clock.now == 0

    @pytest.mark.asyncio
    async def test_custom_transient_errors(self, clock):
        loop = WaitLoop(clock=clock.time, sleep=clock.sleep, transient_errors=(ConnectionError,))
        probe = AsyncMock(side_effect=[ConnectionError(), True])

        await loop.wait_until(probe, PollPolicy(interval=1, timeout=10))

        assert probe.await_count == 2


class TestWaitFor:
    @pytest.mark.asyncio
    async def test_returns_first_accepted_value(self, wait_loop):
        probe = AsyncMock(side_effect=[None, None, {"blockNumber": "0x64"}])

        value = await wait_loop.wait_for(probe, PollPolicy(interval=1, timeout=10))

        assert value == {"blockNumber": "0x64"}

    @pytest.mark.asyncio
    async def test_custom_accept(self, wait_loop):
        probe = AsyncMock(side_effect=[1, 5, 12])

        value = await wait_loop.wait_for(
            probe, PollPolicy(interval=1, timeout=10), accept=lambda height: height >= 10
        )

        assert value == 12


class TestCancellation:
    """Test the shared cancellation signal."""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, clock):
        event = asyncio.Event()
        event.set()
        loop = WaitLoop(cancel_event=event, clock=clock.time, sleep=clock.sleep)
        probe = AsyncMock(return_value=True)

        with pytest.raises(OperationCancelledError):
            await loop.wait_until(probe, PollPolicy(interval=1, timeout=10))

        probe.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_interrupts_pause(self, clock):
        """Should abort mid-pause instead of waiting out the interval."""
        event = asyncio.Event()

        async def long_sleep(delay):
            await asyncio.sleep(3600)

        loop = WaitLoop(cancel_event=event, clock=clock.time, sleep=long_sleep)
        probe = AsyncMock(return_value=False)
        asyncio.get_running_loop().call_later(0.01, event.set)

        with pytest.raises(OperationCancelledError):
            await asyncio.wait_for(
                loop.wait_until(probe, PollPolicy(interval=3600, timeout=7200)),
                timeout=5,
            )

        assert probe.await_count == 1

    @pytest.mark.asyncio
    async def test_uncancelled_event_does_not_interfere(self, clock):
        event = asyncio.Event()
        loop = WaitLoop(cancel_event=event, clock=clock.time, sleep=clock.sleep)
        probe = AsyncMock(side_effect=[False, False, True])

        await loop.wait_until(probe, PollPolicy(interval=1, timeout=10))

        assert clock.now == 2

    @pytest.mark.asyncio
    async def test_cancelled_error_reports_cancel(self, clock):
        event = asyncio.Event()
        loop = WaitLoop(cancel_event=event, clock=clock.time, sleep=clock.sleep)

        async def probe():
            event.set()
            return False

        with pytest.raises(OperationCancelledError) as exc_info:
            await loop.wait_until(probe, PollPolicy(interval=1, timeout=10))

        assert exc_info.value.error_code == "CANCELLED"
