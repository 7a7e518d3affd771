"""Async helpers for running blocking GitHub and file-system calls off the event loop."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Module-level semaphore bounding concurrent GitHub requests, set at startup
_semaphore: asyncio.Semaphore | None = None


def init_semaphore(max_parallel: int = 5) -> None:
    """Initialize the request semaphore. Call once at server startup."""
    global _semaphore
    _semaphore = asyncio.Semaphore(max_parallel)
    logger.info(
        "GitHub request semaphore initialized: max_parallel=%d",
        max_parallel,
    )


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a worker thread.

    Used for local file I/O, which is not bounded by the request
    semaphore.

    Example:
        content = await run_sync(vault.read_binary, "notes/a.md")
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def run_sync_limited(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a worker thread, bounded by the semaphore.

    Falls back to unbounded if the semaphore is not initialized.
    """
    if _semaphore is None:
        return await asyncio.to_thread(func, *args, **kwargs)
    async with _semaphore:
        return await asyncio.to_thread(func, *args, **kwargs)


async def gather_limited(
    coros: Sequence[Awaitable[T]],
) -> list[T]:
    """Run awaitables concurrently and join them.

    Each coroutine should go through ``run_sync_limited`` for its network
    calls, which is where the bound is applied.  Results keep input
    order; the first exception propagates once all others have finished
    so no task is left running in the background.
    """
    results = await asyncio.gather(*coros, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)  # type: ignore[arg-type]
