"""Cooperative cancellation tokens.

A ``CancellationTokenSource`` owns the right to cancel; the ``CancellationToken``
it hands out can only observe. Executors poll ``token.is_cancelled`` or call
``token.raise_if_cancelled()`` at safe points, and can use ``token.sleep()``
to wait in a way that wakes up on cancellation.

Tokens are usable from worker threads: state is guarded by a lock, and
waiters on event loops are woken with ``call_soon_threadsafe``.
"""

import asyncio
import contextlib
import threading
from collections.abc import Callable
from typing import Any

from visionflow.core.exceptions import OperationCancelledError
from visionflow.core.logging import get_logger

logger = get_logger(__name__)

Callback = Callable[[], Any]


class CancellationToken:
    """Read-only view of a cancellation request."""

    __slots__ = ("_source",)

    def __init__(self, source: "CancellationTokenSource") -> None:
        self._source = source

    @classmethod
    def none(cls) -> "CancellationToken":
        """A token that is never cancelled."""
        return CancellationTokenSource().token

    @property
    def is_cancelled(self) -> bool:
        return self._source.is_cancelled

    def raise_if_cancelled(self) -> None:
        """Raise ``OperationCancelledError`` if cancellation was requested."""
        if self._source.is_cancelled:
            raise OperationCancelledError()

    def register(self, callback: Callback) -> Callable[[], None]:
        """Call ``callback`` once when cancelled (immediately if already cancelled).

        Returns a function that unregisters the callback.
        """
        return self._source._register(callback)

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        if self.is_cancelled:
            return
        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()

        def _wake() -> None:
            loop.call_soon_threadsafe(_resolve)

        def _resolve() -> None:
            if not future.done():
                future.set_result(None)

        unregister = self.register(_wake)
        try:
            await future
        finally:
            unregister()

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, raising early if cancelled.

        Raises
        ------
        OperationCancelledError
            If cancellation is requested before or during the sleep
        """
        self.raise_if_cancelled()
        waiter = asyncio.ensure_future(self.wait())
        try:
            await asyncio.wait_for(asyncio.shield(waiter), timeout=delay)
        except TimeoutError:
            return
        finally:
            if not waiter.done():
                waiter.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await waiter
        self.raise_if_cancelled()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancelled})"


class CancellationTokenSource:
    """Owner of a cancellation flag.

    Examples
    --------
    >>> source = CancellationTokenSource()
    >>> token = source.token
    >>> token.is_cancelled
    False
    >>> source.cancel()
    >>> token.is_cancelled
    True
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._lock = threading.Lock()
        self._callbacks: list[Callback] = []
        self._timer: asyncio.TimerHandle | None = None
        self._links: list[Callable[[], None]] = []
        self.token = CancellationToken(self)

    @classmethod
    def linked(cls, *tokens: CancellationToken | None) -> "CancellationTokenSource":
        """A source that is also cancelled when any of ``tokens`` is cancelled."""
        source = cls()
        for token in tokens:
            if token is not None:
                source._links.append(token.register(source.cancel))
        return source

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Request cancellation. Idempotent; callbacks run once, in registration order."""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            callbacks, self._callbacks = self._callbacks, []
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning("Cancellation callback {cb} failed: {error}", cb=callback, error=e)

    def cancel_after(self, seconds: float) -> None:
        """Schedule ``cancel()`` on the running event loop after ``seconds``."""
        if seconds <= 0:
            self.cancel()
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(seconds, self.cancel)

    def close(self) -> None:
        """Detach from linked parent tokens and drop any pending timer."""
        for unregister in self._links:
            unregister()
        self._links.clear()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _register(self, callback: Callback) -> Callable[[], None]:
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)

                def unregister() -> None:
                    with self._lock, contextlib.suppress(ValueError):
                        self._callbacks.remove(callback)

                return unregister
        callback()
        return lambda: None

    def __repr__(self) -> str:
        return f"CancellationTokenSource(cancelled={self.is_cancelled})"
