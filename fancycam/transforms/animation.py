"""
Animated backgrounds.

Handles:
- Decoding GIF presets into frame sequences (Pillow)
- Pre-scaling every frame to both resolution tiers at load time
- Frame index / delay bookkeeping while the animate effect is active
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Union

import cv2
import numpy as np
from numpy.typing import NDArray
from PIL import Image, ImageSequence
from loguru import logger

from fancycam.core.contracts import (
    AnimationFrames,
    BackgroundAnimation,
    BackgroundEffect,
    ResolutionTier,
)


class AnimationLibrary(ABC):
    """Source of pre-scaled animation frames."""

    @abstractmethod
    def load_frames(self, selection: BackgroundAnimation) -> AnimationFrames:
        """
        Load an animation preset.

        Returns:
            Frames at both tiers; empty sequences if the preset is unavailable
        """


class GifAnimationLibrary(AnimationLibrary):
    """
    Loads animation presets from <gif_dir>/<resource>.gif.

    Each GIF frame is converted to BGR and resized once to the hi and lo
    tier sizes, so no scaling happens per video frame.
    """

    def __init__(self, gif_dir: Union[str, Path] = "assets"):
        self.gif_dir = Path(gif_dir)

    def path_for(self, selection: BackgroundAnimation) -> Path:
        return self.gif_dir / f"{selection.resource.resource_name}.gif"

    def load_frames(self, selection: BackgroundAnimation) -> AnimationFrames:
        path = self.path_for(selection)
        if not path.exists():
            logger.error(f"Animation '{selection.title}' not found at {path}")
            return AnimationFrames()

        hi: List[NDArray[np.uint8]] = []
        lo: List[NDArray[np.uint8]] = []
        try:
            with Image.open(path) as im:
                for frame in ImageSequence.Iterator(im):
                    bgr = cv2.cvtColor(np.array(frame.convert("RGB")), cv2.COLOR_RGB2BGR)
                    hi.append(self._scale(bgr, ResolutionTier.HI))
                    lo.append(self._scale(bgr, ResolutionTier.LO))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to decode animation {path}: {e}")
            return AnimationFrames()

        logger.info(f"Loaded animation '{selection.title}' ({len(hi)} frames)")
        return AnimationFrames(hi=tuple(hi), lo=tuple(lo))

    @staticmethod
    def _scale(frame: NDArray[np.uint8], tier: ResolutionTier) -> NDArray[np.uint8]:
        scaled = cv2.resize(frame, (tier.width, tier.height), interpolation=cv2.INTER_AREA)
        scaled.setflags(write=False)
        return scaled


class AnimationState:
    """
    Current animation frames and playback position.

    Only touched from the event loop thread. The frame index is always
    below the sequence length while frames are loaded.
    """

    def __init__(self, library: Optional[AnimationLibrary] = None):
        self.library = library
        self.frames = AnimationFrames()
        self.index = 0
        self.delay_count = 0
        self.ready = False
        self.animating = False
        self._generation = 0

    def _reset(self) -> None:
        self.animating = False
        self.ready = False
        self.delay_count = 0
        self.index = 0

    def clear(self) -> None:
        """Drop all frames and reset counters."""
        self._generation += 1
        self._reset()
        self.frames = AnimationFrames()

    async def load(self, selection: BackgroundAnimation) -> bool:
        """
        Load a preset off the event loop and start animating it.

        A load superseded by a later load() or clear() is discarded.

        Returns:
            True if frames were installed
        """
        if self.library is None:
            logger.warning("No animation library configured")
            return False

        self._generation += 1
        generation = self._generation
        self._reset()

        frames = await asyncio.to_thread(self.library.load_frames, selection)
        if generation != self._generation:
            logger.debug(f"Discarding superseded load of '{selection.title}'")
            return False

        self.frames = frames
        self.ready = True
        self.animating = True
        return True

    async def update_for(self, effect: BackgroundEffect, selection: BackgroundAnimation) -> None:
        """Load the selection when the effect is animate; clear otherwise."""
        if effect is BackgroundEffect.ANIMATE:
            await self.load(selection)
        else:
            self.clear()

    def advance(self, fps60: bool) -> None:
        """
        Step the animation after a completed frame.

        At 60 fps the index moves every second camera frame so the
        animation plays at the same speed as at 30 fps.
        """
        self.delay_count += 1
        if self.delay_count >= (2 if fps60 else 1):
            self.delay_count = 0
            self.index += 1
            if self.index >= len(self.frames):
                self.index = 0

    def snapshot(self) -> Optional[AnimationFrames]:
        """Frames to hand to a frame task, or None when not animating."""
        if self.ready and self.animating and len(self.frames) > 0:
            return self.frames
        return None

    def current_frame(self, tier: ResolutionTier) -> Optional[NDArray[np.uint8]]:
        sequence = self.frames.for_tier(tier)
        if not sequence or self.index >= len(sequence):
            return None
        return sequence[self.index]
