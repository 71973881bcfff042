"""Shape-keyed pool of reusable image buffers.

Image operators allocate large pixel arrays on every invocation. The pool
keeps a bounded number of idle numpy arrays per ``BufferShape`` and hands
them out again, zero-filled, instead of allocating fresh ones.

Each shape owns a shard with its own lock so that renting 640x480 frames
never contends with renting 1920x1080 frames. A separate lock guards shard
creation only.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from visionflow.core.exceptions import ValidationError
from visionflow.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_PER_SHAPE = 10


@dataclass(frozen=True, slots=True)
class BufferShape:
    """Pool key: array dimensions plus element type.

    Examples
    --------
    >>> BufferShape.image(640, 480)
    BufferShape(dims=(480, 640, 3), dtype='uint8')
    >>> BufferShape.image(640, 480, channels=1).dims
    (480, 640)
    """

    dims: tuple[int, ...]
    dtype: str = "uint8"

    def __post_init__(self) -> None:
        dims = tuple(int(d) for d in self.dims)
        if not dims or any(d <= 0 for d in dims):
            raise ValidationError("dims", "must be a non-empty tuple of positive sizes", self.dims)
        object.__setattr__(self, "dims", dims)
        object.__setattr__(self, "dtype", np.dtype(self.dtype).name)

    @classmethod
    def image(
        cls, width: int, height: int, channels: int = 3, dtype: str = "uint8"
    ) -> "BufferShape":
        """Shape of a ``height x width`` image with ``channels`` planes."""
        if channels == 1:
            return cls((height, width), dtype)
        return cls((height, width, channels), dtype)

    @classmethod
    def of(cls, array: np.ndarray) -> "BufferShape":
        return cls(tuple(array.shape), array.dtype.name)

    @property
    def nbytes(self) -> int:
        return int(np.prod(self.dims)) * np.dtype(self.dtype).itemsize


@dataclass(frozen=True, slots=True)
class PoolStatistics:
    """Point-in-time counters of a BufferPool."""

    idle_count: int
    rent_count: int
    return_count: int
    create_count: int
    discard_count: int
    hit_rate: float
    distinct_shapes: int
    checked_out_count: int


@dataclass(slots=True)
class _Shard:
    lock: threading.Lock = field(default_factory=threading.Lock)
    idle: list[np.ndarray] = field(default_factory=list)
    # id(buffer) -> buffer; holding the reference keeps the id from being reused
    checked_out: dict[int, np.ndarray] = field(default_factory=dict)
    rents: int = 0
    returns: int = 0
    creates: int = 0
    discards: int = 0


class BufferPool:
    """Thread-safe pool of numpy buffers keyed by ``BufferShape``.

    Invariants
    ----------
    - A buffer is either checked out or idle, never both.
    - At most ``max_per_shape`` idle buffers are kept per shape; surplus
      returns are discarded.
    - ``create_count <= rent_count``.

    Examples
    --------
    >>> pool = BufferPool(max_per_shape=2)
    >>> buf = pool.rent(BufferShape.image(4, 4))
    >>> pool.return_buffer(buf)
    True
    >>> pool.return_buffer(buf)
    False
    """

    def __init__(self, max_per_shape: int = DEFAULT_MAX_PER_SHAPE) -> None:
        if isinstance(max_per_shape, bool) or not isinstance(max_per_shape, int):
            raise ValidationError("max_per_shape", "must be an integer", max_per_shape)
        if max_per_shape <= 0:
            raise ValidationError("max_per_shape", "must be positive", max_per_shape)
        self.max_per_shape = max_per_shape
        self._shards: dict[BufferShape, _Shard] = {}
        self._shards_lock = threading.Lock()

    def _shard(self, shape: BufferShape) -> _Shard:
        shard = self._shards.get(shape)
        if shard is None:
            with self._shards_lock:
                shard = self._shards.setdefault(shape, _Shard())
        return shard

    def rent(self, shape: BufferShape) -> np.ndarray:
        """Check out a zero-filled buffer of ``shape``.

        Reuses an idle buffer when one exists, otherwise allocates. Never blocks
        waiting for a return.
        """
        shard = self._shard(shape)
        with shard.lock:
            shard.rents += 1
            if shard.idle:
                buffer = shard.idle.pop()
                buffer.fill(0)
            else:
                shard.creates += 1
                buffer = np.zeros(shape.dims, dtype=shape.dtype)
            shard.checked_out[id(buffer)] = buffer
        return buffer

    def return_buffer(self, buffer: Any) -> bool:
        """Give a rented buffer back to the pool.

        Returns
        -------
        bool
            False if ``buffer`` is not currently checked out from this pool
            (foreign object or double return); True otherwise, including when
            the shape's idle list is full and the buffer is discarded.
        """
        if not isinstance(buffer, np.ndarray):
            return False
        shard = self._shards.get(BufferShape.of(buffer))
        if shard is None:
            return False
        with shard.lock:
            if shard.checked_out.get(id(buffer)) is not buffer:
                return False
            del shard.checked_out[id(buffer)]
            shard.returns += 1
            if len(shard.idle) < self.max_per_shape:
                shard.idle.append(buffer)
                return True
            shard.discards += 1
        logger.debug("Discarded surplus buffer {shape}", shape=buffer.shape)
        return True

    def is_checked_out(self, buffer: Any) -> bool:
        if not isinstance(buffer, np.ndarray):
            return False
        shard = self._shards.get(BufferShape.of(buffer))
        if shard is None:
            return False
        with shard.lock:
            return shard.checked_out.get(id(buffer)) is buffer

    @contextmanager
    def lease(self, shape: BufferShape) -> Iterator[np.ndarray]:
        """Rent a buffer for the duration of a ``with`` block."""
        buffer = self.rent(shape)
        try:
            yield buffer
        finally:
            self.return_buffer(buffer)

    def idle_count(self, shape: BufferShape | None = None) -> int:
        """Number of idle buffers for ``shape``, or across all shapes."""
        if shape is not None:
            shard = self._shards.get(shape)
            return len(shard.idle) if shard else 0
        return sum(len(shard.idle) for shard in list(self._shards.values()))

    def get_statistics(self) -> PoolStatistics:
        shards = list(self._shards.values())
        rents = returns = creates = discards = idle = out = 0
        for shard in shards:
            with shard.lock:
                rents += shard.rents
                returns += shard.returns
                creates += shard.creates
                discards += shard.discards
                idle += len(shard.idle)
                out += len(shard.checked_out)
        return PoolStatistics(
            idle_count=idle,
            rent_count=rents,
            return_count=returns,
            create_count=creates,
            discard_count=discards,
            hit_rate=(rents - creates) / rents if rents else 0.0,
            distinct_shapes=len(shards),
            checked_out_count=out,
        )

    def clear(self) -> None:
        """Drop every idle buffer. Checked-out buffers and counters are kept."""
        dropped = 0
        for shard in list(self._shards.values()):
            with shard.lock:
                dropped += len(shard.idle)
                shard.idle.clear()
        logger.debug("Buffer pool cleared ({count} idle buffers dropped)", count=dropped)

    def __repr__(self) -> str:
        return f"BufferPool(max_per_shape={self.max_per_shape}, shapes={len(self._shards)})"
