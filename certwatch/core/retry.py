"""
Bounded polling with exponential backoff.

Every wait on external state (container health, certificate issuance)
goes through poll_until so budgets and delays are enforced in one place.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]
ClockFunc = Callable[[], float]


def backoff_delays(initial_delay: float, multiplier: float, max_delay: float):
    """Yield an endless sequence of delays: initial, initial*m, ... capped at max_delay."""
    delay = min(initial_delay, max_delay)
    while True:
        yield delay
        delay = min(delay * multiplier, max_delay)


async def poll_until(
    check: Callable[[], Awaitable[bool]],
    *,
    timeout: float,
    initial_delay: float = 2.0,
    multiplier: float = 2.0,
    max_delay: float = 10.0,
    max_attempts: int | None = None,
    retry_on: tuple[type[BaseException], ...] = (),
    sleep: SleepFunc = asyncio.sleep,
    clock: ClockFunc = time.monotonic,
    description: str = "condition",
) -> bool:
    """
    Poll an async check until it succeeds or the budget runs out.

    Args:
        check: Async callable returning truthy when the condition holds
        timeout: Total time budget in seconds, measured with clock
        initial_delay: First delay between polls
        multiplier: Growth factor applied after each delay
        max_delay: Upper bound for a single delay
        max_attempts: Optional cap on the number of checks
        retry_on: Exceptions from check treated as "not yet"
        sleep: Async sleep function
        clock: Monotonic clock function
        description: Label used in log messages

    Returns:
        True if the check succeeded within budget, False otherwise
    """
    start = clock()
    delays = backoff_delays(initial_delay, multiplier, max_delay)
    attempt = 0

    while True:
        attempt += 1
        try:
            if await check():
                logger.debug(f"{description} satisfied after {attempt} check(s)")
                return True
        except retry_on as e:
            logger.debug(f"{description} check {attempt} raised {type(e).__name__}: {e}")

        elapsed = clock() - start
        remaining = timeout - elapsed
        if remaining <= 0 or (max_attempts is not None and attempt >= max_attempts):
            logger.debug(f"{description} not satisfied after {attempt} check(s), {elapsed:.0f}s elapsed")
            return False

        delay = min(next(delays), remaining)
        logger.debug(f"Waiting for {description}... ({elapsed:.0f}s/{timeout:.0f}s, next check in {delay:.0f}s)")
        await sleep(delay)
