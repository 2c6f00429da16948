"""Minimal retry/backoff utilities for transient failures."""

from __future__ import annotations

import random
import time
from typing import TYPE_CHECKING, TypeVar

from xanthus.logging import logger

if TYPE_CHECKING:  # imported only for type checking
    from collections.abc import Callable

T = TypeVar("T")


# pylint: disable=too-many-arguments
def retry(
    func: Callable[[], T],
    *,
    attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 5.0,
    jitter: float = 0.1,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Retry a zero-arg callable with exponential backoff and jitter.

    Args:
        func (Callable[[], T]): Callable with no arguments to execute.
        attempts (int): Total attempts including the first try.
        base_delay (float): Initial delay in seconds.
        max_delay (float): Maximum delay cap in seconds.
        jitter (float): Proportional jitter to add/subtract from delay.
        retry_on (tuple[type[Exception], ...]): Exception types to retry on.
        sleep (Callable[[float], None]): Sleep function, replaceable in tests.

    Returns:
        T: The return value from ``func`` when it succeeds.

    Raises:
        Exception: The last exception raised by ``func`` once attempts are
            exhausted, unchanged so callers can still tell error kinds apart.
        ValueError: If ``attempts`` is less than one.
    """
    if attempts < 1:
        msg = "retry: attempts must be >= 1"
        raise ValueError(msg)
    for i in range(attempts):
        try:
            return func()
        except retry_on as e:
            if i == attempts - 1:
                raise
            delay = min(max_delay, base_delay * (2**i))
            jitter_amt = delay * jitter
            logger.debug("Attempt %d/%d failed: %s; retrying in %.2fs", i + 1, attempts, e, delay)
            # Use random.random(); suppress security lint as this is non-crypto usage
            sleep(max(0.0, delay + (random.random() * 2 - 1) * jitter_amt))  # noqa: S311
    msg = "retry: exhausted attempts without result"
    raise RuntimeError(msg)
