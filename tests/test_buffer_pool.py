"""Unit tests for PixelBuffer and PixelBufferPool."""

import threading

import numpy as np
import pytest

from fancycam.capture.buffer_pool import PixelBuffer, PixelBufferPool
from fancycam.core.errors import BufferReleaseError


class TestPixelBuffer:

    def test_from_bgr_sets_opaque_alpha(self, frame):
        buffer = PixelBuffer.from_bgr(frame)
        assert buffer.data.shape == (frame.shape[0], frame.shape[1], 4)
        assert np.array_equal(buffer.data[:, :, :3], frame)
        assert np.all(buffer.data[:, :, 3] == 255)
        assert buffer.pixel_format == "BGRA"
        assert buffer.bytes_per_row == frame.shape[1] * 4

    def test_rejects_mismatched_data(self):
        with pytest.raises(ValueError):
            PixelBuffer(4, 4, np.zeros((4, 4, 3), dtype=np.uint8))

    def test_snapshot_is_independent(self, pixel_buffer):
        copy = pixel_buffer.snapshot()
        pixel_buffer.data[:] = 0
        assert copy.any()

    def test_unpooled_double_release_raises(self, pixel_buffer):
        pixel_buffer.release()
        with pytest.raises(BufferReleaseError):
            pixel_buffer.release()

    def test_unpooled_retain_after_release_raises(self, pixel_buffer):
        pixel_buffer.release()
        with pytest.raises(BufferReleaseError):
            pixel_buffer.retain()


class TestPixelBufferPool:

    def test_acquire_until_threshold(self):
        pool = PixelBufferPool(8, 6, allocation_threshold=2)
        a = pool.acquire()
        b = pool.acquire()
        assert a is not None and b is not None
        assert pool.outstanding == 2
        assert pool.acquire() is None
        assert pool.exhausted_count == 1

    def test_buffers_have_pool_format(self):
        pool = PixelBufferPool(8, 6)
        buffer = pool.acquire()
        assert buffer.data.shape == (6, 8, 4)
        assert buffer.pool is pool
        assert buffer.ref_count == 1

    def test_release_returns_buffer_for_reuse(self):
        pool = PixelBufferPool(8, 6, allocation_threshold=1)
        first = pool.acquire()
        first.release()
        assert pool.outstanding == 0
        assert pool.idle == 1
        assert pool.acquire() is first

    def test_retain_defers_return(self):
        pool = PixelBufferPool(8, 6, allocation_threshold=1)
        buffer = pool.acquire()
        buffer.retain()
        buffer.release()
        assert pool.outstanding == 1
        buffer.release()
        assert pool.outstanding == 0

    def test_double_release_raises(self):
        pool = PixelBufferPool(8, 6)
        buffer = pool.acquire()
        buffer.release()
        with pytest.raises(BufferReleaseError):
            buffer.release()
        assert pool.outstanding == 0

    def test_flush_drops_idle_buffers(self):
        pool = PixelBufferPool(8, 6)
        pool.acquire().release()
        pool.flush()
        assert pool.idle == 0
        assert pool.available == pool.allocation_threshold

    def test_concurrent_acquire_never_exceeds_threshold(self):
        pool = PixelBufferPool(8, 6, allocation_threshold=3)
        peak = []
        lock = threading.Lock()

        def worker():
            for _ in range(200):
                buffer = pool.acquire()
                if buffer is None:
                    continue
                with lock:
                    peak.append(pool.outstanding)
                buffer.release()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert max(peak) <= 3
        assert pool.outstanding == 0
