"""Buffer pooling for image data."""

from visionflow.core.pool.buffer_pool import (
    DEFAULT_MAX_PER_SHAPE,
    BufferPool,
    BufferShape,
    PoolStatistics,
)

__all__ = ["DEFAULT_MAX_PER_SHAPE", "BufferPool", "BufferShape", "PoolStatistics"]
