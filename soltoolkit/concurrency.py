"""
Racing helpers.

Both helpers leave losing tasks running: they are detached, not cancelled.
A losing network call may therefore still complete (or fail) after its
result has been discarded. Detached tasks are referenced here until they
finish so they are not garbage collected mid-flight, and their outcome is
logged at debug level.
"""

import asyncio
import time
from typing import Awaitable, Iterable, Optional, Type, TypeVar

from .errors import OperationTimeout, TransportError
from .log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_detached: set[asyncio.Task] = set()


def _reap(task: asyncio.Task) -> None:
    _detached.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Detached task finished with %r", exc)


def detach(task: asyncio.Task) -> None:
    """Let a task run to completion in the background."""
    if task.done():
        _reap(task)
        return
    _detached.add(task)
    task.add_done_callback(_reap)


async def race_timer(aw: Awaitable[T], timeout: Optional[float], endpoint: Optional[str] = None) -> T:
    """Await ``aw`` unless ``timeout`` seconds pass first.

    On timeout raises OperationTimeout carrying the elapsed milliseconds and
    abandons the operation.
    """
    if timeout is None:
        return await aw

    task = asyncio.ensure_future(aw)
    start = time.monotonic()
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if task in done:
        return task.result()

    detach(task)
    raise OperationTimeout((time.monotonic() - start) * 1000.0, endpoint=endpoint)


async def first_success(
    aws: Iterable[Awaitable[T]],
    retry_on: tuple[Type[BaseException], ...] = (TransportError,),
) -> T:
    """Return the first successful result among ``aws``.

    Failures matching ``retry_on`` are tolerated while other awaitables are
    still pending; if all of them fail that way, the last such error is
    raised. Any other exception is raised immediately. Losers are detached.
    """
    pending = {asyncio.ensure_future(aw) for aw in aws}
    if not pending:
        raise ValueError("first_success() needs at least one awaitable")

    last_error: Optional[BaseException] = None
    done: set[asyncio.Future] = set()
    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            # a terminal error wins over a success finishing in the same wake-up
            outcomes = [(task, task.exception()) for task in done]
            for _, exc in outcomes:
                if exc is not None and not isinstance(exc, retry_on):
                    raise exc
            for task, exc in outcomes:
                if exc is None:
                    return task.result()
                last_error = exc
    finally:
        for task in pending | done:
            detach(task)

    assert last_error is not None
    raise last_error
