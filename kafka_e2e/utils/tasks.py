"""
Task composition primitives: join with fail-fast cancellation and a
first-completion race against a timer.
"""

import asyncio
from typing import Any, Awaitable, Iterable, List


async def cancel_and_wait(tasks: Iterable[asyncio.Future]) -> None:
    """Cancel ``tasks`` and wait until every one of them has finished"""
    tasks = list(tasks)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


async def join_all(*aws: Awaitable[Any]) -> List[Any]:
    """
    Run awaitables concurrently and return their results in order.

    Completes only when all of them complete. If one fails, the others are
    cancelled and the failure is raised. Cancelling the caller cancels all
    of them.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    if not tasks:
        return []

    try:
        _, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except BaseException:
        await cancel_and_wait(tasks)
        raise

    if pending:
        await cancel_and_wait(pending)

    for task in tasks:
        if task.done() and not task.cancelled() and task.exception() is not None:
            raise task.exception()

    return [task.result() for task in tasks]


async def race_with_timeout(aw: Awaitable[Any], timeout: float) -> Any:
    """
    Race ``aw`` against a timer; both start at the same instant.

    Returns:
        The result of ``aw`` if it completes first (the timer is cancelled)

    Raises:
        asyncio.TimeoutError: if the timer fires first (``aw`` is cancelled)
    """
    work = asyncio.ensure_future(aw)
    timer = asyncio.ensure_future(asyncio.sleep(timeout))

    try:
        done, _ = await asyncio.wait({work, timer}, return_when=asyncio.FIRST_COMPLETED)
    except BaseException:
        await cancel_and_wait([work, timer])
        raise

    if work in done:
        await cancel_and_wait([timer])
        return work.result()

    await cancel_and_wait([work])
    raise asyncio.TimeoutError(f"timer of {timeout}s fired first")
