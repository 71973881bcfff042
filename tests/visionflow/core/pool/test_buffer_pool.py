"""Tests for BufferPool and BufferShape."""

import threading

import numpy as np
import pytest

from visionflow.core.exceptions import ValidationError
from visionflow.core.pool import BufferPool, BufferShape


class TestBufferShape:
    """Test BufferShape construction."""

    def test_image_shape_is_height_major(self):
        assert BufferShape.image(640, 480).dims == (480, 640, 3)

    def test_single_channel_drops_plane_axis(self):
        assert BufferShape.image(640, 480, channels=1).dims == (480, 640)

    def test_dtype_is_normalised(self):
        assert BufferShape((2, 2), np.float32).dtype == "float32"

    def test_of_array(self):
        shape = BufferShape.of(np.zeros((3, 5), dtype=np.uint16))
        assert shape == BufferShape((3, 5), "uint16")

    def test_nbytes(self):
        assert BufferShape((4, 4), "uint16").nbytes == 32

    @pytest.mark.parametrize("dims", [(), (0, 4), (4, -1)])
    def test_invalid_dims(self, dims):
        with pytest.raises(ValidationError):
            BufferShape(dims)

    def test_shapes_are_hashable_keys(self):
        assert {BufferShape.image(4, 4): 1}[BufferShape((4, 4, 3))] == 1


class TestBufferPool:
    """Test renting and returning buffers."""

    @pytest.fixture
    def shape(self) -> BufferShape:
        return BufferShape.image(640, 480)

    def test_surplus_returns_are_discarded(self, shape):
        pool = BufferPool(max_per_shape=2)
        buffers = [pool.rent(shape) for _ in range(3)]
        for buffer in buffers:
            assert pool.return_buffer(buffer) is True

        stats = pool.get_statistics()
        assert stats.create_count == 3
        assert stats.rent_count == 3
        assert stats.return_count == 3
        assert stats.discard_count == 1
        assert stats.idle_count == 2
        assert stats.checked_out_count == 0

    def test_rented_buffers_are_zeroed_and_reused(self, shape):
        pool = BufferPool()
        first = pool.rent(shape)
        first.fill(200)
        pool.return_buffer(first)

        second = pool.rent(shape)

        assert second is first
        assert not second.any()
        stats = pool.get_statistics()
        assert stats.create_count == 1
        assert stats.hit_rate == 0.5

    def test_rented_buffer_matches_shape(self):
        pool = BufferPool()
        buffer = pool.rent(BufferShape((2, 3), "float32"))
        assert buffer.shape == (2, 3)
        assert buffer.dtype == np.float32

    def test_double_return_is_rejected(self, shape):
        pool = BufferPool()
        buffer = pool.rent(shape)
        assert pool.return_buffer(buffer) is True
        assert pool.return_buffer(buffer) is False
        assert pool.get_statistics().return_count == 1

    def test_foreign_buffers_are_rejected(self, shape):
        pool = BufferPool()
        pool.rent(shape)
        assert pool.return_buffer(np.zeros(shape.dims, dtype=np.uint8)) is False
        assert pool.return_buffer(np.zeros((7, 7), dtype=np.uint8)) is False
        assert pool.return_buffer("not a buffer") is False

    def test_is_checked_out(self, shape):
        pool = BufferPool()
        buffer = pool.rent(shape)
        assert pool.is_checked_out(buffer)
        pool.return_buffer(buffer)
        assert not pool.is_checked_out(buffer)

    def test_lease_returns_on_exit(self, shape):
        pool = BufferPool()
        with pytest.raises(RuntimeError):
            with pool.lease(shape) as buffer:
                assert pool.is_checked_out(buffer)
                raise RuntimeError("boom")
        assert pool.idle_count(shape) == 1
        assert pool.get_statistics().checked_out_count == 0

    def test_shapes_are_pooled_separately(self):
        pool = BufferPool()
        small, large = BufferShape.image(4, 4), BufferShape.image(8, 8)
        pool.return_buffer(pool.rent(small))
        pool.return_buffer(pool.rent(large))
        pool.return_buffer(pool.rent(large))

        assert pool.idle_count(small) == 1
        assert pool.idle_count(large) == 1
        assert pool.idle_count() == 2
        assert pool.get_statistics().distinct_shapes == 2

    def test_clear_drops_idle_buffers(self, shape):
        pool = BufferPool()
        held = pool.rent(shape)
        pool.return_buffer(pool.rent(shape))

        pool.clear()

        stats = pool.get_statistics()
        assert stats.idle_count == 0
        assert stats.checked_out_count == 1
        assert pool.return_buffer(held) is True

    def test_empty_pool_statistics(self):
        stats = BufferPool().get_statistics()
        assert stats.rent_count == 0
        assert stats.hit_rate == 0.0

    @pytest.mark.parametrize("value", [0, -1, 2.5, True, "3"])
    def test_invalid_capacity(self, value):
        with pytest.raises(ValidationError):
            BufferPool(max_per_shape=value)

    def test_concurrent_rent_and_return(self, shape):
        pool = BufferPool(max_per_shape=4)

        def worker():
            for _ in range(50):
                pool.return_buffer(pool.rent(shape))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        stats = pool.get_statistics()
        assert stats.rent_count == stats.return_count == 400
        assert stats.create_count <= stats.rent_count
        assert stats.idle_count <= 4
        assert stats.checked_out_count == 0
