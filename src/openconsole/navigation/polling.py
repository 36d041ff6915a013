"""Bounded polling against a monotonic deadline."""

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from openconsole.exceptions import StepTimeoutError

T = TypeVar('T')

DEFAULT_POLL_INTERVAL_MS = 100


async def poll_until(
    predicate: Callable[[], T | Awaitable[T]],
    timeout_ms: float,
    *,
    interval_ms: float = DEFAULT_POLL_INTERVAL_MS,
    step: str = 'poll',
    selector: str | None = None,
    message: str | None = None,
    error_cls: type[StepTimeoutError] = StepTimeoutError,
) -> T:
    """Re-evaluate ``predicate`` until it returns a truthy value or the deadline passes.

    The predicate is evaluated at least once, even with a zero timeout. It may be
    a plain function or a coroutine function.

    Args:
        predicate: Condition to check. Its truthy result is returned.
        timeout_ms: Overall bound in milliseconds.
        interval_ms: Pause between evaluations.
        step: Step name carried by the timeout error.
        selector: Selector carried by the timeout error, if any.
        message: Message of the timeout error.
        error_cls: ``StepTimeoutError`` subclass raised on expiry.

    Raises:
        StepTimeoutError: Or ``error_cls``, once the deadline passes.
    """
    deadline = time.monotonic() + timeout_ms / 1000
    interval = interval_ms / 1000

    while True:
        result: Any = predicate()
        if inspect.isawaitable(result):
            result = await result
        if result:
            return result

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise error_cls(
                message or f'Condition not met within {timeout_ms:g}ms',
                step=step,
                timeout_ms=timeout_ms,
                selector=selector,
            )
        await asyncio.sleep(min(interval, remaining))
