"""Bridge from synchronous job handlers to the async adapters."""

import asyncio
import threading
from collections.abc import Coroutine
from typing import Any, TypeVar

T = TypeVar("T")

_local = threading.local()


def _thread_loop() -> asyncio.AbstractEventLoop:
    loop: asyncio.AbstractEventLoop | None = getattr(_local, "loop", None)
    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        _local.loop = loop
    return loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine to completion from synchronous code.

    Handlers run in Celery worker processes and in the API threadpool, so
    each thread keeps one private event loop for its lifetime. Must not be
    called from a thread that is already running a loop.

    Args:
        coro: The coroutine to execute.

    Returns:
        The result of the coroutine.
    """
    return _thread_loop().run_until_complete(coro)
