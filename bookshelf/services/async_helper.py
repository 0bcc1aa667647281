"""
Async helper utilities.

Async/sync bridge for calling the async services from sync Flask views and
scripts. All coroutines run on one long-lived background event loop, so the
Redis connection pool (bound to the loop it was first used on) is shared
across requests.
"""

import asyncio
import threading
from functools import wraps
from typing import Any, Optional

_loop: Optional[asyncio.AbstractEventLoop] = None
_thread: Optional[threading.Thread] = None
_lock = threading.Lock()


def _get_loop() -> asyncio.AbstractEventLoop:
    global _loop, _thread
    with _lock:
        if _loop is None or _loop.is_closed():
            _loop = asyncio.new_event_loop()
            _thread = threading.Thread(target=_loop.run_forever, name='bookshelf-async', daemon=True)
            _thread.start()
        return _loop


def run_async(coro_or_func) -> Any:
    """
    Run an async coroutine synchronously or convert an async function to sync.

    Usage:
    - run_async(async_method(args)) - runs a coroutine directly
    - run_async(async_function) - returns a sync wrapper function

    Raises:
        RuntimeError: If called from the bridge loop itself (it would deadlock)
        TypeError: If the argument is neither a coroutine nor callable
    """
    if hasattr(coro_or_func, '__await__'):
        loop = _get_loop()
        if threading.current_thread() is _thread:
            if hasattr(coro_or_func, 'close'):
                coro_or_func.close()
            raise RuntimeError("run_async cannot be called from inside the async bridge loop; await instead")
        future = asyncio.run_coroutine_threadsafe(coro_or_func, loop)
        return future.result()

    elif callable(coro_or_func):
        @wraps(coro_or_func)
        def wrapper(*args, **kwargs):
            return run_async(coro_or_func(*args, **kwargs))
        return wrapper

    else:
        raise TypeError(f"Expected coroutine or callable, got {type(coro_or_func)}")


def shutdown_loop() -> None:
    """Stop the background loop (tests, process shutdown)."""
    global _loop, _thread
    with _lock:
        loop, thread = _loop, _thread
        _loop = _thread = None
    if loop is not None and loop.is_running():
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout=5)
    if loop is not None and not loop.is_closed() and not loop.is_running():
        loop.close()
