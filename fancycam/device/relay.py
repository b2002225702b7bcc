"""
Virtual Device Relay.

Moves frames between the device's two streams:
- While no client is pushing frames, an idle timer publishes a black
  frame with a bouncing white stripe on the source stream
- Frames pushed into the sink are stamped and republished on the source
- enqueue() renders finished pipeline frames into pooled buffers and
  queues them on the sink

Every pooled buffer is released exactly once, by whoever holds it last.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np
from numpy.typing import NDArray
from loguru import logger

from fancycam.capture.buffer_pool import PixelBuffer, PixelBufferPool
from fancycam.core.contracts import (
    WHITE_STRIPE_HEIGHT,
    SampleBuffer,
    ScheduledOutput,
    host_time_ns,
)
from fancycam.device.streams import SinkStream, SourceStream


@dataclass
class RelayStats:
    idle_frames: int = 0
    enqueued: int = 0
    forwarded: int = 0
    dropped_queue_full: int = 0
    dropped_pool_exhausted: int = 0
    dropped_render_failed: int = 0


class StripeAnimator:
    """
    Position of the idle-frame stripe.

    Starts at row 0 moving down, turns around once the stripe touches
    the bottom edge and again when it is back at row 0.
    """

    def __init__(self, height: int, stripe_height: int = WHITE_STRIPE_HEIGHT):
        self.height = height
        self.stripe_height = stripe_height
        self.start_row = 0
        self.ascending = False

    def next_row(self) -> int:
        """Row to draw now; moves the stripe one step for next time."""
        row = self.start_row
        if self.ascending:
            self.start_row = row - 1
            self.ascending = self.start_row > 0
        else:
            self.start_row = row + 1
            self.ascending = self.start_row >= self.height - self.stripe_height
        return row

    def render(self, data: NDArray[np.uint8]) -> int:
        row = self.next_row()
        data[:] = 0
        data[row:row + self.stripe_height] = 255
        return row


class VirtualDeviceRelay:
    """
    Owns the idle timer and the sink consume loop.

    Both loops are asyncio tasks on the same event loop as the pipeline.
    They are started and stopped by the stream lifecycle managers through
    source_started/source_stopped and sink_started/sink_stopped.
    """

    def __init__(
        self,
        source: SourceStream,
        sink: SinkStream,
        pool: PixelBufferPool,
        frame_rate: int = 60,
        mirror: bool = False,
    ):
        """
        Initialize relay.

        Args:
            source: Stream frames are published on
            sink: Stream clients push frames into
            pool: Shared buffer pool (idle frames and enqueued frames)
            frame_rate: Idle timer rate (30-60)
            mirror: Flip enqueued frames horizontally
        """
        self.source = source
        self.sink = sink
        self.pool = pool
        self.frame_rate = frame_rate
        self.mirror = mirror

        self.stripe = StripeAnimator(pool.height)
        self.stats = RelayStats()

        self._sequence = 0
        self._source_streaming = False
        self._idle_task: Optional[asyncio.Task] = None
        self._consume_task: Optional[asyncio.Task] = None
        self._stop_consuming: Optional[asyncio.Event] = None

    # ============================================================
    # LIFECYCLE HOOKS
    # ============================================================

    def source_started(self) -> None:
        self._source_streaming = True
        if self._idle_task is None or self._idle_task.done():
            self._idle_task = asyncio.get_running_loop().create_task(self._idle_loop())
            logger.debug(f"Idle timer armed at {self.frame_rate} fps")

    def source_stopped(self) -> None:
        self._source_streaming = False
        if self._idle_task is not None:
            self._idle_task.cancel()
            self._idle_task = None
            logger.debug("Idle timer cancelled")

    def sink_started(self) -> None:
        if self.is_consuming:
            return
        self._stop_consuming = asyncio.Event()
        self._consume_task = asyncio.get_running_loop().create_task(
            self._consume_loop(self._stop_consuming)
        )

    def sink_stopped(self) -> None:
        if self._stop_consuming is not None:
            self._stop_consuming.set()

    @property
    def is_consuming(self) -> bool:
        return (
            self._consume_task is not None
            and not self._consume_task.done()
            and not self._stop_consuming.is_set()
        )

    @property
    def idle_timer_running(self) -> bool:
        return self._idle_task is not None and not self._idle_task.done()

    # ============================================================
    # IDLE FRAMES
    # ============================================================

    def tick_idle(self) -> bool:
        """
        Publish one idle frame.

        Returns:
            True if a frame was sent; False while the sink is being
            consumed or when the pool is exhausted
        """
        if self.is_consuming:
            return False

        buffer = self.pool.acquire()
        if buffer is None:
            self.stats.dropped_pool_exhausted += 1
            return False

        try:
            self.stripe.render(buffer.data)
            now = host_time_ns()
            self._sequence += 1
            sample = SampleBuffer(buffer, now, self._sequence, host_time_ns=now)
            self.source.send(sample)
            self.stats.idle_frames += 1
        finally:
            buffer.release()
        return True

    async def _idle_loop(self) -> None:
        loop = asyncio.get_running_loop()
        period = 1.0 / self.frame_rate
        deadline = loop.time()
        while True:
            self.tick_idle()
            deadline += period
            delay = deadline - loop.time()
            if delay < 0:
                # Fell behind; skip the missed ticks instead of bursting
                deadline = loop.time()
                delay = 0
            await asyncio.sleep(delay)

    # ============================================================
    # SINK SIDE
    # ============================================================

    def enqueue(self, image: NDArray[np.uint8]) -> bool:
        """
        Queue a finished frame on the sink.

        Args:
            image: BGR (or BGRA) frame of any size

        Returns:
            True if the frame was queued; False if it was dropped
        """
        if self.sink.is_full:
            self.stats.dropped_queue_full += 1
            logger.debug(f"Sink queue full ({self.sink.queue_capacity}), dropping frame")
            return False

        buffer = self.pool.acquire()
        if buffer is None:
            self.stats.dropped_pool_exhausted += 1
            return False

        try:
            self._render(image, buffer)
        except (cv2.error, ValueError) as e:
            buffer.release()
            self.stats.dropped_render_failed += 1
            logger.warning(f"Could not render frame into pixel buffer: {e}")
            return False

        self._sequence += 1
        sample = SampleBuffer(buffer, host_time_ns(), self._sequence)
        if not self.sink.put_nowait(sample):
            buffer.release()
            self.stats.dropped_queue_full += 1
            return False

        self.stats.enqueued += 1
        return True

    def _render(self, image: NDArray[np.uint8], buffer: PixelBuffer) -> None:
        if image.ndim != 3 or image.shape[2] not in (3, 4):
            raise ValueError(f"Unsupported frame shape {image.shape}")

        if image.shape[:2] != (buffer.height, buffer.width):
            image = cv2.resize(image, (buffer.width, buffer.height), interpolation=cv2.INTER_LINEAR)
        if self.mirror:
            image = cv2.flip(image, 1)

        if image.shape[2] == 4:
            buffer.data[:] = image
        else:
            buffer.data[:, :, :3] = image
            buffer.data[:, :, 3] = 255

    async def _consume_loop(self, stop: asyncio.Event) -> None:
        logger.info("Sink consume loop started")
        forwarded_any = False
        try:
            while not stop.is_set():
                if forwarded_any and self.sink.depth == 0:
                    self.sink.underrun_count += 1

                get_task = asyncio.ensure_future(self.sink.get())
                stop_task = asyncio.ensure_future(stop.wait())
                try:
                    done, _ = await asyncio.wait(
                        {get_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
                    )
                finally:
                    stop_task.cancel()
                    if not get_task.done():
                        get_task.cancel()

                # A dequeue that already completed is still forwarded
                if get_task in done:
                    self._forward(get_task.result())
                    forwarded_any = True
        finally:
            self._release_queued()
            logger.info("Sink consume loop stopped")

    def _forward(self, sample: SampleBuffer) -> None:
        try:
            now = host_time_ns()
            sample.host_time_ns = now
            if self._source_streaming:
                self.source.send(sample)
                self.stats.forwarded += 1
            self.sink.notify_scheduled_output(ScheduledOutput(sample.sequence_number, now))
        finally:
            sample.pixel_buffer.release()

    def _release_queued(self) -> None:
        for sample in self.sink.drain():
            sample.pixel_buffer.release()

    # ============================================================
    # SHUTDOWN
    # ============================================================

    async def aclose(self) -> None:
        """Stop both loops and return every queued buffer to the pool."""
        tasks = [t for t in (self._idle_task, self._consume_task) if t is not None]
        self.source_stopped()
        self.sink_stopped()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._release_queued()
        logger.info(
            f"Relay closed: {self.stats.idle_frames} idle, {self.stats.forwarded} forwarded, "
            f"{self.stats.dropped_queue_full + self.stats.dropped_pool_exhausted} dropped"
        )
