"""
Pixel Buffer Pool.

Supports:
- Fixed-format BGRA buffer allocation with an in-flight threshold
- Reference-counted ownership (retain/release)
- Reuse of released buffers
"""

from __future__ import annotations

import threading
from typing import List, Optional

import numpy as np
from numpy.typing import NDArray
from loguru import logger

from fancycam.core.contracts import (
    BYTES_PER_PIXEL,
    PIXEL_FORMAT_BGRA,
    POOL_ALLOCATION_THRESHOLD,
    ResolutionTier,
)
from fancycam.core.errors import BufferReleaseError


class PixelBuffer:
    """
    A packed 32-bit BGRA image buffer.

    Buffers drawn from a pool start with one reference. The holder that
    drops the last reference returns the buffer to its pool. Buffers
    created with pool=None (e.g. straight from a capture device) are
    simply discarded on their last release.
    """

    def __init__(
        self,
        width: int,
        height: int,
        data: Optional[NDArray[np.uint8]] = None,
        pool: Optional[PixelBufferPool] = None,
    ):
        if data is None:
            data = np.zeros((height, width, BYTES_PER_PIXEL), dtype=np.uint8)
        if data.shape != (height, width, BYTES_PER_PIXEL):
            raise ValueError(
                f"Buffer data shape {data.shape} does not match {width}x{height} BGRA"
            )
        self.width = width
        self.height = height
        self.data = data
        self._pool = pool
        self._ref_count = 1

    @classmethod
    def from_bgr(cls, frame: NDArray[np.uint8]) -> PixelBuffer:
        """Wrap a BGR frame (e.g. from cv2.VideoCapture) as an unpooled buffer."""
        h, w = frame.shape[:2]
        data = np.empty((h, w, BYTES_PER_PIXEL), dtype=np.uint8)
        data[:, :, :3] = frame
        data[:, :, 3] = 255
        return cls(w, h, data)

    @property
    def pixel_format(self) -> str:
        return PIXEL_FORMAT_BGRA

    @property
    def bytes_per_row(self) -> int:
        return self.width * BYTES_PER_PIXEL

    @property
    def ref_count(self) -> int:
        return self._ref_count

    @property
    def pool(self) -> Optional[PixelBufferPool]:
        return self._pool

    def snapshot(self) -> NDArray[np.uint8]:
        """Owned copy of the pixel data."""
        return self.data.copy()

    def retain(self) -> PixelBuffer:
        if self._pool is not None:
            self._pool._retain(self)
        else:
            if self._ref_count <= 0:
                raise BufferReleaseError("Cannot retain a released buffer")
            self._ref_count += 1
        return self

    def release(self) -> None:
        if self._pool is not None:
            self._pool._release(self)
        else:
            if self._ref_count <= 0:
                raise BufferReleaseError("Buffer released more than once")
            self._ref_count -= 1

    def __repr__(self) -> str:
        return f"PixelBuffer({self.width}x{self.height}, refs={self._ref_count})"


class PixelBufferPool:
    """
    Fixed-format reusable buffer allocator.

    Guarantees:
    - Allocation is atomic per request (one lock guards all bookkeeping)
    - Never more than allocation_threshold buffers in flight
    - Exhaustion returns None and logs; it never blocks
    """

    def __init__(
        self,
        width: int = ResolutionTier.HI.width,
        height: int = ResolutionTier.HI.height,
        allocation_threshold: int = POOL_ALLOCATION_THRESHOLD,
    ):
        """
        Initialize buffer pool.

        Args:
            width: Buffer width in pixels
            height: Buffer height in pixels
            allocation_threshold: Maximum buffers in flight at once
        """
        self.width = width
        self.height = height
        self.allocation_threshold = allocation_threshold

        self._free: List[PixelBuffer] = []
        self._outstanding = 0
        self._exhausted_count = 0
        self._lock = threading.Lock()

    def acquire(self) -> Optional[PixelBuffer]:
        """
        Draw a buffer from the pool.

        Returns:
            A buffer holding one reference, or None if the pool is exhausted
        """
        with self._lock:
            if self._outstanding >= self.allocation_threshold:
                self._exhausted_count += 1
                logger.warning(
                    f"Out of pixel buffers ({self._outstanding}/{self.allocation_threshold} in flight)"
                )
                return None

            if self._free:
                buffer = self._free.pop()
            else:
                buffer = PixelBuffer(self.width, self.height, pool=self)
            buffer._ref_count = 1
            self._outstanding += 1
            return buffer

    def _retain(self, buffer: PixelBuffer) -> None:
        with self._lock:
            if buffer._ref_count <= 0:
                raise BufferReleaseError("Cannot retain a buffer already returned to the pool")
            buffer._ref_count += 1

    def _release(self, buffer: PixelBuffer) -> None:
        with self._lock:
            if buffer._ref_count <= 0:
                raise BufferReleaseError("Buffer released more than once")
            buffer._ref_count -= 1
            if buffer._ref_count == 0:
                self._outstanding -= 1
                self._free.append(buffer)

    def flush(self) -> None:
        """Drop all idle buffers."""
        with self._lock:
            count = len(self._free)
            self._free.clear()
        logger.debug(f"Pixel buffer pool flushed ({count} idle buffers)")

    @property
    def outstanding(self) -> int:
        """Buffers currently in flight."""
        with self._lock:
            return self._outstanding

    @property
    def available(self) -> int:
        """Buffers that can still be drawn before exhaustion."""
        with self._lock:
            return self.allocation_threshold - self._outstanding

    @property
    def idle(self) -> int:
        with self._lock:
            return len(self._free)

    @property
    def exhausted_count(self) -> int:
        return self._exhausted_count
