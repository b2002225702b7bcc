"""
Camera Session.

Ties the live effect settings to the frame pipeline:
- Captured frames are submitted with a snapshot of the current settings
- Switching to/from the animate effect loads or clears the animation
- The latest finished frame is kept for display
"""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional

import numpy as np
from numpy.typing import NDArray
from loguru import logger

from fancycam.capture.buffer_pool import PixelBuffer
from fancycam.core.config import LiveSettings
from fancycam.core.contracts import BackgroundAnimation, BackgroundEffect, EffectConfig
from fancycam.pipeline.frame_pipeline import FrameProcessingPipeline
from fancycam.transforms.animation import AnimationState


FrameListener = Callable[[NDArray[np.uint8]], None]


class CameraSession:
    """
    Headless camera model.

    All methods run on the event loop thread.
    """

    def __init__(
        self,
        pipeline: FrameProcessingPipeline,
        animation: AnimationState,
        settings: Optional[LiveSettings] = None,
    ):
        self.pipeline = pipeline
        self.animation = animation
        self.settings = settings or LiveSettings()

        self._listeners: List[FrameListener] = []
        self._frames_received = 0

    async def start(self) -> None:
        """Bring the animation in line with the initial settings."""
        await self.animation.update_for(self.settings.effect, self.settings.animation)
        logger.info(
            f"Session started: effect={self.settings.effect.title}, "
            f"animation={self.settings.animation.title}"
        )

    # ============================================================
    # SETTINGS
    # ============================================================

    async def set_effect(self, effect: BackgroundEffect) -> None:
        previous = self.settings.effect
        self.settings.effect = effect
        if effect is previous:
            return
        logger.info(f"Effect: {previous.title} -> {effect.title}")
        if effect is BackgroundEffect.ANIMATE or previous is BackgroundEffect.ANIMATE:
            await self.animation.update_for(effect, self.settings.animation)

    async def set_animation(self, animation: BackgroundAnimation) -> None:
        previous = self.settings.animation
        self.settings.animation = animation
        if animation is previous:
            return
        logger.info(f"Animation: {previous.title} -> {animation.title}")
        if self.settings.effect is BackgroundEffect.ANIMATE:
            await self.animation.load(animation)

    def set_preprocess_background(self, enabled: bool) -> None:
        self.settings.preprocess_background = enabled

    def set_fps60(self, enabled: bool) -> None:
        self.settings.fps60 = enabled

    def snapshot(self) -> EffectConfig:
        return self.settings.snapshot()

    # ============================================================
    # FRAMES
    # ============================================================

    def on_captured(self, pixel_buffer: PixelBuffer, timestamp_ms: Optional[float] = None) -> asyncio.Task:
        """
        Capture delegate: submit a frame for processing.

        The session owns pixel_buffer on entry and releases it once the
        pipeline has taken its copy.
        """
        self._frames_received += 1
        try:
            task = self.pipeline.submit(pixel_buffer, self.snapshot(), timestamp_ms)
        finally:
            pixel_buffer.release()
        task.add_done_callback(self._on_frame_done)
        return task

    def _on_frame_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is not None:
            return
        frame = task.result()
        if frame is None:
            return
        for listener in self._listeners:
            try:
                listener(frame)
            except Exception as e:
                logger.error(f"Frame listener error: {e}")

    def add_frame_listener(self, listener: FrameListener) -> None:
        self._listeners.append(listener)

    def remove_frame_listener(self, listener: FrameListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def latest_frame(self) -> Optional[NDArray[np.uint8]]:
        """Most recent finished frame (None until the first one)."""
        return self.pipeline.last_good_frame

    def reset_last_frame(self) -> None:
        self.pipeline.reset_last_frame()

    @property
    def frames_received(self) -> int:
        return self._frames_received
