"""Helpers for calling sync or async callables from the event loop."""

import asyncio
import contextvars
import inspect
from collections.abc import Callable
from typing import Any


def is_async_callable(fn: Any) -> bool:
    """True if calling ``fn`` returns an awaitable coroutine."""
    if inspect.iscoroutinefunction(fn):
        return True
    call = getattr(fn, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


async def call_maybe_async(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Await ``fn`` if it is async, otherwise run it in the default thread pool.

    Context variables (correlation id, etc.) are copied into the worker thread.
    """
    if is_async_callable(fn):
        return await fn(*args, **kwargs)

    ctx = contextvars.copy_context()

    def _run_sync() -> Any:
        return fn(*args, **kwargs)

    result = await asyncio.get_running_loop().run_in_executor(None, ctx.run, _run_sync)
    if inspect.isawaitable(result):
        return await result
    return result
