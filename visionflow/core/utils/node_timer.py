"""Elapsed-time helper for node and wave execution."""

import time
from collections.abc import Generator
from contextlib import contextmanager


class Timer:
    """Tracks elapsed milliseconds from construction.

    Examples
    --------
    >>> with node_timer() as t:
    ...     pass
    >>> t.duration_ms >= 0
    True
    """

    __slots__ = ("_start",)

    def __init__(self) -> None:
        self._start = time.perf_counter()

    @property
    def duration_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000

    @property
    def duration_str(self) -> str:
        return f"{self.duration_ms:.2f}"


@contextmanager
def node_timer() -> Generator[Timer, None, None]:
    """Yield a Timer whose ``duration_ms`` reads the elapsed time at any point."""
    yield Timer()
