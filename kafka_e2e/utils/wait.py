"""
Wait conditions and polling utilities for eventually consistent state.

``wait_for`` evaluates a check at a fixed interval until it reports ready
or the deadline passes. The final evaluation is told it is the last one so
it can log diagnostic state before the timeout is raised.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar, Union

from kafka_e2e.exceptions import WaitTimeoutError
from kafka_e2e.models.messaging import ConditionOutcome

logger = logging.getLogger(__name__)

T = TypeVar('T')

CheckResult = Tuple[bool, Any]
Check = Callable[[bool], Union[CheckResult, Awaitable[CheckResult]]]


@dataclass(frozen=True)
class WaitConfig:
    """Configuration for wait conditions"""
    timeout: float = 30.0
    poll_interval: float = 1.0


async def wait_for(
    label: str,
    poll_interval: float,
    timeout: float,
    check: Check,
) -> Any:
    """
    Wait until ``check`` reports ready.

    Args:
        label: Description for logging and the timeout error
        poll_interval: Seconds to sleep between evaluations
        timeout: Seconds after which the next evaluation is the last one
        check: ``check(is_last_attempt) -> (ready, value)``, sync or async

    Returns:
        The value produced by the first ready evaluation

    Raises:
        WaitTimeoutError: carrying the last observed value
        Any error raised by ``check``, immediately
    """
    start = time.monotonic()
    deadline = start + timeout
    attempt = 0

    logger.debug(f"waiting for {label} (interval: {poll_interval}s, timeout: {timeout}s)")

    while True:
        attempt += 1
        is_last = time.monotonic() >= deadline

        outcome = check(is_last)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        ready, value = outcome

        if ready:
            logger.info(f"{label} ready after {time.monotonic() - start:.2f}s (attempt {attempt})")
            return value

        if is_last:
            elapsed = time.monotonic() - start
            logger.error(f"timeout after {elapsed:.2f}s waiting for {label} ({attempt} attempts)")
            raise WaitTimeoutError(label, value, elapsed, timeout)

        remaining = deadline - time.monotonic()
        await asyncio.sleep(min(poll_interval, max(remaining, 0.0)))


async def wait_until(
    predicate: Callable[[], Union[bool, Awaitable[bool]]],
    config: Optional[WaitConfig] = None,
    description: str = "condition"
) -> None:
    """
    Wait until a boolean predicate holds.

    Args:
        predicate: Function that returns True when the condition is met
        config: Wait configuration (timeout, interval)
        description: Description for logging

    Raises:
        WaitTimeoutError: if the predicate never held
    """
    if config is None:
        config = WaitConfig()

    async def _check(is_last: bool) -> CheckResult:
        result = predicate()
        if inspect.isawaitable(result):
            result = await result
        return ConditionOutcome(bool(result), result)

    await wait_for(description, config.poll_interval, config.timeout, _check)
