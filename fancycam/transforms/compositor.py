"""
Effect Compositor.

Builds the final frame from three layers:
- the background (live camera image or animation frame) with an effect applied
- the original camera image as foreground
- the segmentation mask as alpha

All operations are mask-confined and return None instead of raising
when OpenCV rejects an input, so the caller can drop the frame.
"""

from __future__ import annotations

from typing import Optional, Sequence

import cv2
import numpy as np
from numpy.typing import NDArray
from loguru import logger

from fancycam.core.contracts import AnimationFrames, BackgroundEffect, ResolutionTier
from fancycam.segmentation.mask_processor import MaskProcessor
from fancycam.transforms.effects import get_effect


# Effects whose preprocessing uses a wide disk feather instead of a hard cut
_DISK_FEATHERED = (BackgroundEffect.DESATURATE, BackgroundEffect.DEPTH_OF_FIELD)


class EffectCompositor:
    """
    Applies background effects and blends foreground over background.

    Guarantees:
    - Output has the foreground frame's shape and dtype
    - Deterministic: identical inputs give identical output
    - Compositing failures yield None, never an exception
    """

    def __init__(self, mask_processor: Optional[MaskProcessor] = None):
        self.masks = mask_processor or MaskProcessor()

    def soften_mask(self, mask: NDArray, shape) -> NDArray[np.uint8]:
        return self.masks.soften(self.masks.normalize(mask, shape))

    def select_background(
        self,
        image: NDArray[np.uint8],
        frames: Optional[AnimationFrames],
        index: int,
    ) -> NDArray[np.uint8]:
        """
        Pick the background layer.

        Args:
            image: Live camera image (BGR)
            frames: Animation frames, or None when not animating
            index: Current animation frame index

        Returns:
            The animation frame for the image's resolution tier, or the
            live image when there is no usable animation frame
        """
        if frames is None or len(frames) == 0:
            return image

        h, w = image.shape[:2]
        sequence: Sequence[NDArray[np.uint8]] = frames.for_tier(ResolutionTier.for_width(w))
        if not 0 <= index < len(sequence):
            return image

        background = sequence[index]
        if background.shape[:2] != (h, w):
            background = cv2.resize(background, (w, h), interpolation=cv2.INTER_AREA)
        return background

    def preprocess_background(
        self,
        background: NDArray[np.uint8],
        mask: NDArray[np.uint8],
        effect: BackgroundEffect,
    ) -> Optional[NDArray[np.uint8]]:
        """
        Cut the subject out of the background before the effect runs.

        The inverted mask is feathered (wide disk blur for desaturate and
        depth of field) and multiplied over the background, so the subject
        area goes dark instead of being re-rendered by the effect.
        """
        try:
            inverted = self.masks.invert(mask)
            if effect in _DISK_FEATHERED:
                inverted = self.masks.disk_blur(inverted)
            alpha = self.masks.to_alpha(inverted)[:, :, None]
            result = background.astype(np.float32) * alpha
            return np.clip(np.rint(result), 0, 255).astype(np.uint8)
        except (cv2.error, ValueError) as e:
            logger.warning(f"Background preprocessing failed: {e}")
            return None

    def mask_to_alpha(self, mask: NDArray[np.uint8]) -> NDArray[np.float32]:
        return self.masks.to_alpha(mask)

    def apply_effect(
        self,
        background: NDArray[np.uint8],
        effect: BackgroundEffect,
    ) -> Optional[NDArray[np.uint8]]:
        try:
            return get_effect(effect)(background)
        except (cv2.error, ValueError) as e:
            logger.warning(f"Effect '{effect.value}' failed: {e}")
            return None

    def blend(
        self,
        background: NDArray[np.uint8],
        foreground: NDArray[np.uint8],
        alpha: NDArray[np.float32],
    ) -> Optional[NDArray[np.uint8]]:
        """
        Blend foreground over background by alpha.

        Args:
            background: Effected background (BGR)
            foreground: Original camera image (BGR)
            alpha: Float alpha (H x W), 1 = foreground

        Returns:
            Composited BGR frame, or None on shape mismatch
        """
        if background.shape != foreground.shape or alpha.shape != foreground.shape[:2]:
            logger.warning(
                f"Blend shape mismatch: bg {background.shape}, fg {foreground.shape}, alpha {alpha.shape}"
            )
            return None

        a = alpha[:, :, None]
        result = foreground.astype(np.float32) * a + background.astype(np.float32) * (1.0 - a)
        return np.clip(np.rint(result), 0, 255).astype(np.uint8)
