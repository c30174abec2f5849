"""Event loop handling for adapter coroutines called from Celery tasks."""

import asyncio
import threading
from collections.abc import Coroutine
from typing import Any, TypeVar

T = TypeVar("T")

_local = threading.local()


def _worker_loop() -> asyncio.AbstractEventLoop:
    loop: asyncio.AbstractEventLoop | None = getattr(_local, "loop", None)
    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        _local.loop = loop
    return loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run an adapter coroutine to completion from synchronous task code.

    Each worker thread keeps one loop for its lifetime, so consecutive publish
    and metrics calls do not pay for a new loop each time.

    Args:
        coro: The coroutine to execute.

    Returns:
        The result of the coroutine.

    Raises:
        RuntimeError: If called from inside a running event loop.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return _worker_loop().run_until_complete(coro)
    coro.close()
    raise RuntimeError("run_async cannot be used inside a running event loop; await instead")


def close_worker_loop() -> None:
    """Close the calling thread's loop, if one was created."""
    loop: asyncio.AbstractEventLoop | None = getattr(_local, "loop", None)
    if loop is not None and not loop.is_closed():
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()
    _local.loop = None
