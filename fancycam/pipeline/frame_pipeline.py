"""
Frame Processing Pipeline.

Processes each captured frame in strict order:

1. Convert the pixel buffer to a working BGR image
2. Pass the raw image through when the effect is none
3. Segment the subject
4. Soften the mask
5. Pick the background (animation frame or live image)
6. Optionally cut the subject out of the background
7. Convert the mask to alpha
8. Apply the effect to the background (or advance the animation)
9. Blend foreground over background
10. Hand the finished frame to the device relay

Only the newest frame is processed: submitting a frame cancels the one
in flight. A cancelled or failed frame leaves no trace; the last good
frame stays on display.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Set

import cv2
import numpy as np
from numpy.typing import NDArray
from loguru import logger

from fancycam.capture.buffer_pool import PixelBuffer
from fancycam.core.cancellation import CANCELLED, CancellationToken, is_cancelled
from fancycam.core.contracts import (
    AnimationFrames,
    BackgroundEffect,
    EffectConfig,
    PipelineStats,
)
from fancycam.segmentation.segmenter import BaseSegmenter
from fancycam.transforms.animation import AnimationState
from fancycam.transforms.compositor import EffectCompositor


# Receives each finished frame; returns whether it was accepted
FrameSink = Callable[[NDArray[np.uint8]], bool]

_task_ids = itertools.count(1)


@dataclass
class FrameTask:
    """
    One processing attempt for one captured frame.

    Everything the task reads is copied in at creation, so nothing the
    event loop changes afterwards can leak into it.
    """
    pixels: NDArray[np.uint8]
    config: EffectConfig
    animation_frames: Optional[AnimationFrames] = None
    animation_index: int = 0
    timestamp_ms: Optional[float] = None
    token: CancellationToken = field(default_factory=CancellationToken)
    task_id: int = field(default_factory=lambda: next(_task_ids))
    created_at: float = field(default_factory=time.perf_counter)

    # Set by step 8 when the animation should move on after this frame
    advance_animation: bool = False

    @property
    def animating(self) -> bool:
        return self.config.animated and self.animation_frames is not None


def to_working_image(pixels: NDArray[np.uint8]) -> NDArray[np.uint8]:
    """BGRA pixel buffer contents to a BGR image."""
    return cv2.cvtColor(pixels, cv2.COLOR_BGRA2BGR)


class FrameProcessingPipeline:
    """
    Cancellation-aware per-frame compositor.

    Guarantees:
    - At most one active frame task; a new submit cancels the previous one
    - Finished frames reach the sink in submission order
    - A cancelled task never writes the last good frame, never advances
      the animation and never reaches the sink
    """

    def __init__(
        self,
        compositor: EffectCompositor,
        segmenter: BaseSegmenter,
        frame_sink: Optional[FrameSink] = None,
        animation: Optional[AnimationState] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        """
        Initialize pipeline.

        Args:
            compositor: Effect/blend implementation
            segmenter: Subject mask provider
            frame_sink: Destination for finished frames (the relay's enqueue)
            animation: Shared animation state, advanced on completed frames
            executor: Worker pool for image work; a single worker is
                created if none is given, so segmenter calls never overlap
        """
        self.compositor = compositor
        self.segmenter = segmenter
        self.frame_sink = frame_sink
        self.animation = animation

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="fancycam-frame"
        )

        self._active: Optional[FrameTask] = None
        self._tasks: Set[asyncio.Task] = set()
        self._last_good_frame: Optional[NDArray[np.uint8]] = None
        self.stats = PipelineStats()

    # ============================================================
    # SUBMISSION
    # ============================================================

    def submit(
        self,
        pixel_buffer: PixelBuffer,
        config: EffectConfig,
        timestamp_ms: Optional[float] = None,
    ) -> asyncio.Task:
        """
        Start processing a captured frame.

        Must be called on the event loop. The caller keeps ownership of
        pixel_buffer; the task works on a copy.

        Returns:
            Task resolving to the finished BGR frame, or None if the frame
            was dropped or cancelled
        """
        if self._active is not None:
            self._active.token.cancel()

        frames = None
        index = 0
        if config.animated and self.animation is not None:
            frames = self.animation.snapshot()
            index = self.animation.index

        task = FrameTask(
            pixels=pixel_buffer.snapshot(),
            config=config,
            animation_frames=frames,
            animation_index=index,
            timestamp_ms=timestamp_ms,
        )
        self._active = task
        self.stats.submitted += 1

        aio_task = asyncio.get_running_loop().create_task(self._run(task))
        self._tasks.add(aio_task)
        aio_task.add_done_callback(self._tasks.discard)
        return aio_task

    async def _run(self, task: FrameTask) -> Optional[NDArray[np.uint8]]:
        try:
            result = await self._process(task)
        except Exception as e:
            logger.warning(f"Frame {task.task_id} failed: {e}")
            result = None

        if is_cancelled(result) or task.token.is_cancelled:
            self.stats.cancelled += 1
            return None
        if self._active is task:
            self._active = None
        if result is None:
            self.stats.dropped += 1
            return None

        # Nothing below awaits, so no newer task can slip in before the commit
        self._commit(task, result)
        return result

    # ============================================================
    # PROCESSING
    # ============================================================

    async def _stage(self, token: CancellationToken, fn: Callable[..., Any], *args) -> Any:
        """Run one step on the worker pool, bracketed by cancellation checks."""
        if token.is_cancelled:
            return CANCELLED
        result = await asyncio.get_running_loop().run_in_executor(self._executor, fn, *args)
        if token.is_cancelled:
            return CANCELLED
        return result

    async def _process(self, task: FrameTask):
        token = task.token
        config = task.config

        # Step 1
        image = await self._stage(token, to_working_image, task.pixels)
        if is_cancelled(image):
            return CANCELLED

        # Step 2
        if config.effect is BackgroundEffect.NONE:
            return image

        # Step 3
        mask = await self._stage(token, self.segmenter.segment, image, token)
        if is_cancelled(mask):
            return CANCELLED
        if mask is None:
            logger.debug(f"Frame {task.task_id}: no subject mask, dropping")
            return None

        # Step 4
        soft_mask = await self._stage(token, self.compositor.soften_mask, mask, image.shape)
        if is_cancelled(soft_mask):
            return CANCELLED

        # Step 5
        if token.is_cancelled:
            return CANCELLED
        background = self.compositor.select_background(
            image,
            task.animation_frames if task.animating else None,
            task.animation_index,
        )

        # Step 6
        if config.preprocess_background:
            background = await self._stage(
                token, self.compositor.preprocess_background, background, soft_mask, config.effect
            )
            if is_cancelled(background):
                return CANCELLED
            if background is None:
                return None

        # Step 7
        alpha = await self._stage(token, self.compositor.mask_to_alpha, soft_mask)
        if is_cancelled(alpha):
            return CANCELLED

        # Step 8
        if task.animating:
            task.advance_animation = True
        else:
            background = await self._stage(
                token, self.compositor.apply_effect, background, config.effect
            )
            if is_cancelled(background):
                return CANCELLED
            if background is None:
                return None

        # Steps 9 and 10
        frame = await self._stage(token, self.compositor.blend, background, image, alpha)
        if is_cancelled(frame):
            return CANCELLED
        if frame is None:
            return None
        return np.ascontiguousarray(frame)

    # ============================================================
    # COMMIT
    # ============================================================

    def _commit(self, task: FrameTask, frame: NDArray[np.uint8]) -> None:
        self._last_good_frame = frame

        # A reload since submission restarts the animation; don't step the new one
        if (
            task.advance_animation
            and self.animation is not None
            and self.animation.frames is task.animation_frames
        ):
            self.animation.advance(task.config.fps60)

        self.stats.completed += 1
        self.stats.latencies_ms.append((time.perf_counter() - task.created_at) * 1000)
        if len(self.stats.latencies_ms) > 100:
            self.stats.latencies_ms.pop(0)

        if self.frame_sink is not None:
            asyncio.get_running_loop().call_soon(self._deliver, task.task_id, frame)

    def _deliver(self, task_id: int, frame: NDArray[np.uint8]) -> None:
        try:
            accepted = self.frame_sink(frame)
        except Exception as e:
            logger.error(f"Frame {task_id}: sink raised {e!r}")
            return
        if not accepted:
            logger.debug(f"Frame {task_id}: not accepted by sink")

    # ============================================================
    # STATE
    # ============================================================

    @property
    def last_good_frame(self) -> Optional[NDArray[np.uint8]]:
        return self._last_good_frame

    def reset_last_frame(self) -> None:
        self._last_good_frame = None

    @property
    def active_task(self) -> Optional[FrameTask]:
        return self._active

    async def drain(self) -> None:
        """Wait for every submitted task to settle."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight work and release the worker pool."""
        if self._active is not None:
            self._active.token.cancel()
            self._active = None
        await self.drain()
        if self._owns_executor:
            self._executor.shutdown(wait=False)
        logger.info(
            f"Pipeline stopped: {self.stats.completed} completed, "
            f"{self.stats.dropped} dropped, {self.stats.cancelled} cancelled"
        )
