"""Thread-pool helpers for running blocking entity syncs concurrently."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Shared bound on concurrent entity syncs; None means unbounded.
_semaphore: asyncio.Semaphore | None = None


def init_semaphore(max_parallel: int = 4) -> None:
    """Bound concurrent ``run_in_thread`` calls on the running event loop."""
    global _semaphore
    if max_parallel < 1:
        raise ValueError(f"max_parallel must be at least 1, got {max_parallel}")
    _semaphore = asyncio.Semaphore(max_parallel)
    logger.debug("Sync semaphore initialized: max_parallel=%d", max_parallel)


async def run_in_thread(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Call a blocking function in the default thread pool.

    Waits for a semaphore slot first when ``init_semaphore`` has run.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)
    """
    if _semaphore is None:
        return await asyncio.to_thread(func, *args, **kwargs)
    async with _semaphore:
        return await asyncio.to_thread(func, *args, **kwargs)


async def gather_ordered(aws: Iterable[Awaitable[T]]) -> list[T]:
    """Await all *aws* concurrently; results keep input order.

    The first exception propagates, so callers that must keep going
    catch inside each awaitable.
    """
    return list(await asyncio.gather(*aws))
