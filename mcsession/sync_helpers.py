"""Synchronous helpers for the async auth core.

Desktop UI code usually runs on its own thread without an event loop.
These helpers submit coroutines to one persistent background loop so the
session manager's locks and HTTP connection pool always live on the same
loop, whichever thread the call comes from.
"""

from __future__ import annotations

import asyncio
import threading
import time

from typing import TYPE_CHECKING, Any, TypeVar


if TYPE_CHECKING:
    import concurrent.futures

    from collections.abc import Coroutine


T = TypeVar("T")


class _BackgroundLoopHolder:
    """Holder for the background event loop to avoid global statement."""

    loop: asyncio.AbstractEventLoop | None = None
    thread: threading.Thread | None = None


_holder = _BackgroundLoopHolder()
_holder_lock = threading.Lock()


def get_background_loop() -> asyncio.AbstractEventLoop:
    """Get or create the background event loop.

    The loop runs in a daemon thread and persists across calls.
    """
    with _holder_lock:
        if _holder.loop is not None and _holder.loop.is_running():
            return _holder.loop

        loop = asyncio.new_event_loop()
        _holder.loop = loop

        def run_loop() -> None:
            asyncio.set_event_loop(loop)
            loop.run_forever()

        _holder.thread = threading.Thread(target=run_loop, name="mcsession-loop", daemon=True)
        _holder.thread.start()

        for _ in range(50):  # 500ms max wait
            if loop.is_running():
                break
            time.sleep(0.01)

        return loop


def run_async(coro: Coroutine[Any, Any, T], timeout: float | None = 60.0) -> T:
    """Run a coroutine on the background loop and block for its result.

    Must not be called from a coroutine running on the background loop
    itself; that would deadlock.

    Parameters
    ----------
    coro : Coroutine
        The coroutine to run.
    timeout : float, optional
        Timeout in seconds. Default is 60.0.

    Returns
    -------
    T
        The result of the coroutine.

    Raises
    ------
    TimeoutError
        If the operation times out.
    RuntimeError
        If called from the background loop.
    """
    loop = get_background_loop()

    try:
        running_loop = asyncio.get_running_loop()
    except RuntimeError:
        running_loop = None

    if running_loop is loop:
        coro.close()
        raise RuntimeError(
            "run_async() cannot be called from the background loop. Use 'await' directly instead."
        )

    future = asyncio.run_coroutine_threadsafe(coro, loop)
    return future.result(timeout=timeout)


def run_async_fire_and_forget(coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future[Any]:
    """Schedule a coroutine on the background loop without waiting.

    Parameters
    ----------
    coro : Coroutine
        The coroutine to run.

    Returns
    -------
    concurrent.futures.Future
        Future for callers that do want to observe completion.
    """
    return asyncio.run_coroutine_threadsafe(coro, get_background_loop())
