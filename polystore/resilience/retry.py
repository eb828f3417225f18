"""
Retry executor.

Runs an async operation under a RetryPolicy on top of tenacity's
AsyncRetrying. The delay between attempts comes from a pluggable
DelayStrategy (fixed by default, exponential with BackoffPolicy) and a
wait can be cut short by a cancel event or an overall deadline.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from tenacity import AsyncRetrying, RetryCallState
from tenacity import RetryError as TenacityRetryError
from tenacity import retry_if_exception_type

from polystore.core.exceptions import RetryAborted, RetryExhausted
from polystore.resilience.backoff import BackoffPolicy, DelayStrategy, FixedDelay

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    How often and how patiently to retry.

    Attributes:
        max_attempts: Total invocations allowed, including the first
        delay: Fixed wait in seconds, used when no strategy is given
        strategy: Optional delay strategy, e.g. a BackoffPolicy
        retry_on: Exception types worth retrying; others propagate at once
    """

    max_attempts: int = 3
    delay: float = 0.1
    strategy: Optional[DelayStrategy] = None
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay < 0:
            raise ValueError("delay must be non-negative")

    @property
    def delay_strategy(self) -> DelayStrategy:
        return self.strategy if self.strategy is not None else FixedDelay(self.delay)


DEFAULT_POLICY = RetryPolicy()


def _name(operation: Callable[..., object]) -> str:
    return getattr(operation, "__name__", repr(operation))


class RetryExecutor:
    """
    Executes fallible async operations with retries.

    Waiting suspends only the calling task. Pass ``sleep`` to substitute
    the wait primitive (tests use it to record delays).

    Example:
        >>> executor = RetryExecutor()
        >>> rows = await executor.execute(
        ...     lambda: conn.query("SELECT 1"),
        ...     RetryPolicy(max_attempts=5, strategy=BackoffPolicy()),
        ... )
    """

    def __init__(self, sleep: Optional[SleepFunc] = None) -> None:
        self._sleep: SleepFunc = sleep or asyncio.sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
        *,
        cancel: Optional[asyncio.Event] = None,
        deadline: Optional[float] = None,
    ) -> T:
        """
        Run ``operation`` until it succeeds or the policy gives up.

        Args:
            operation: Zero-argument coroutine function
            policy: Retry policy (defaults to 3 attempts, 100 ms apart)
            cancel: Event that aborts a pending wait once set
            deadline: Seconds from now after which no further wait starts

        Returns:
            The operation's result

        Raises:
            RetryExhausted: Every attempt failed; carries the last cause
            RetryAborted: A wait was cancelled or would cross the deadline
        """
        policy = policy or DEFAULT_POLICY
        strategy = policy.delay_strategy
        started = time.monotonic()
        expires = started + deadline if deadline is not None else None
        # (attempts, cause) of the last failed attempt; tenacity resets its
        # RetryCallState before sleeping
        last_failure: list = [0, None]

        def stop(retry_state: RetryCallState) -> bool:
            if retry_state.attempt_number >= policy.max_attempts:
                return True
            # Backoff carries its own elapsed-time limit
            return isinstance(strategy, BackoffPolicy) and strategy.is_elapsed(started)

        def wait(retry_state: RetryCallState) -> float:
            return strategy.next_interval(retry_state.attempt_number - 1)

        def before_sleep(retry_state: RetryCallState) -> None:
            cause = retry_state.outcome.exception() if retry_state.outcome else None
            last_failure[:] = [retry_state.attempt_number, cause]
            seconds = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                f"Retry {retry_state.attempt_number}/{policy.max_attempts} for "
                f"{_name(operation)} due to {cause!r}. Sleeping {seconds:.2f}s"
            )

        def aborted(reason: str) -> RetryAborted:
            attempts, cause = last_failure
            logger.info(f"Retry of {_name(operation)} aborted ({reason})")
            return RetryAborted(attempts=attempts, last_cause=cause, reason=reason)

        async def sleep(seconds: float) -> None:
            if expires is not None and time.monotonic() + seconds > expires:
                raise aborted("deadline")
            if cancel is None:
                await self._sleep(seconds)
                return
            if cancel.is_set():
                raise aborted("cancelled")

            sleeper = asyncio.ensure_future(self._sleep(seconds))
            waiter = asyncio.ensure_future(cancel.wait())
            try:
                done, _ = await asyncio.wait(
                    {sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                for task in (sleeper, waiter):
                    task.cancel()
                await asyncio.gather(sleeper, waiter, return_exceptions=True)
            if waiter in done:
                raise aborted("cancelled")

        retrying = AsyncRetrying(
            stop=stop,
            wait=wait,
            retry=retry_if_exception_type(policy.retry_on),
            sleep=sleep,
            before_sleep=before_sleep,
            reraise=False,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    result = await operation()
        except TenacityRetryError as e:
            last = e.last_attempt
            cause = last.exception()
            logger.error(
                f"Max retries reached for {_name(operation)} "
                f"after {last.attempt_number} attempt(s): {cause!r}"
            )
            raise RetryExhausted(attempts=last.attempt_number, last_cause=cause) from cause
        return result


async def retry_call(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    cancel: Optional[asyncio.Event] = None,
    deadline: Optional[float] = None,
) -> T:
    """Run ``operation`` with a default RetryExecutor."""
    return await RetryExecutor().execute(operation, policy, cancel=cancel, deadline=deadline)
