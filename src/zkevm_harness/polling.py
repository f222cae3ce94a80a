"""
Bounded polling primitive.

WaitLoop repeatedly probes a condition at a fixed interval until it holds,
the deadline elapses, or the caller's cancellation signal fires:

- The first probe runs immediately, without sleeping
- Transient probe failures count as "not yet satisfied"
- Any other probe failure propagates at once
- Timeout is reported no earlier than the deadline and no later than
  deadline + interval

Clock and sleep are injectable so the loop can run on a simulated clock.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .config import PollPolicy
from .exceptions import OperationCancelledError, TransientError, WaitTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Probe = Callable[[], Awaitable[T]]
Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]


def _loop_time() -> float:
    return asyncio.get_running_loop().time()


class WaitLoop:
    """
    Polls a probe until it is satisfied or the policy's deadline elapses.

    One WaitLoop may be shared by every wait of a batch so that a single
    cancel_event aborts all of them.
    """

    def __init__(
        self,
        cancel_event: Optional[asyncio.Event] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleep] = None,
        transient_errors: Tuple[Type[BaseException], ...] = (TransientError,),
    ):
        self._cancel_event = cancel_event
        self._clock = clock or _loop_time
        self._sleep = sleep or asyncio.sleep
        self._transient_errors = transient_errors

    @property
    def cancel_event(self) -> Optional[asyncio.Event]:
        return self._cancel_event

    @property
    def cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def now(self) -> float:
        return self._clock()

    def check_cancelled(self, operation: str = "operation") -> None:
        """Raise OperationCancelledError if the cancellation signal is set."""
        if self.cancelled:
            raise OperationCancelledError(f"{operation} cancelled")

    async def wait_until(
        self,
        predicate: Probe[bool],
        policy: PollPolicy,
        description: str = "condition",
    ) -> None:
        """
        Wait until predicate() returns True.

        Args:
            predicate: Async callable returning whether the condition holds
            policy: Interval and timeout
            description: Used in logs and error messages

        Raises:
            WaitTimeoutError: If the condition did not hold before the deadline
            OperationCancelledError: If the cancellation signal fired
        """
        await self.wait_for(predicate, policy, accept=bool, description=description)

    async def wait_for(
        self,
        probe: Probe[T],
        policy: PollPolicy,
        accept: Callable[[T], bool] = lambda value: value is not None,
        description: str = "value",
    ) -> T:
        """
        Wait until probe() returns a value accepted by `accept`, and return it.

        Raises:
            WaitTimeoutError: If no acceptable value appeared before the deadline
            OperationCancelledError: If the cancellation signal fired
        """
        start = self._clock()
        attempts = 0
        last_error: Optional[BaseException] = None

        while True:
            self.check_cancelled(f"Waiting for {description}")

            attempts += 1
            try:
                value = await probe()
            except self._transient_errors as e:
                last_error = e
                logger.debug(f"Transient error while waiting for {description}: {e}")
            else:
                if accept(value):
                    logger.debug(f"{description} satisfied after {attempts} attempt(s)")
                    return value

            elapsed = self._clock() - start
            remaining = policy.timeout - elapsed
            if remaining <= 0:
                details = {"timeout_seconds": policy.timeout, "attempts": attempts}
                if last_error is not None:
                    details["last_error"] = str(last_error)
                raise WaitTimeoutError(
                    f"Timed out after {policy.timeout}s waiting for {description}",
                    details=details,
                )

            await self._pause(min(policy.interval, remaining))

    async def _pause(self, delay: float) -> None:
        """Sleep for `delay`, waking early if the cancellation signal fires."""
        if self._cancel_event is None:
            await self._sleep(delay)
            return

        sleeper = asyncio.ensure_future(self._sleep(delay))
        waiter = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                if not task.done():
                    task.cancel()
            await asyncio.gather(sleeper, waiter, return_exceptions=True)

        if waiter in done:
            raise OperationCancelledError("Wait cancelled")
        if sleeper.exception() is not None:
            raise sleeper.exception()
