"""
Mask Processing Utilities.

Handles:
- Edge softening of raw segmentation masks
- Inversion and feathering for background preprocessing
- Conversion to float alpha for compositing
"""

from __future__ import annotations

import cv2
import numpy as np
from numpy.typing import NDArray

from fancycam.core.contracts import MASK_BLUR_RADIUS


class MaskProcessor:
    """
    Processor for segmentation masks.

    Masks come in as uint8 (H x W, 0-255) and leave either as
    uint8 (after blurring/inverting) or as float32 alpha in [0, 1].
    """

    def __init__(
        self,
        blur_radius: float = MASK_BLUR_RADIUS,
        disk_radius: int = 8,
    ):
        """
        Initialize mask processor.

        Args:
            blur_radius: Gaussian sigma used to soften mask edges
            disk_radius: Radius of the disk kernel used for feathering
        """
        self.blur_radius = blur_radius
        self.disk_radius = disk_radius

        size = disk_radius * 2 + 1
        disk = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (size, size)).astype(np.float32)
        self._disk_kernel = disk / disk.sum()

    def normalize(self, mask: NDArray, shape) -> NDArray[np.uint8]:
        """
        Bring a segmenter mask to uint8 at the frame's size.

        Float masks in [0, 1] are scaled to 0-255; multi-channel masks
        are reduced to their first channel.
        """
        if mask.ndim == 3:
            mask = mask[:, :, 0]
        if mask.dtype != np.uint8:
            mask = np.clip(mask.astype(np.float32) * (255.0 if mask.max() <= 1.0 else 1.0), 0, 255)
            mask = mask.astype(np.uint8)
        h, w = shape[:2]
        if mask.shape != (h, w):
            mask = cv2.resize(mask, (w, h), interpolation=cv2.INTER_LINEAR)
        return mask

    def soften(self, mask: NDArray[np.uint8]) -> NDArray[np.uint8]:
        """Slight Gaussian blur so the cut-out has no hard edge."""
        return cv2.GaussianBlur(mask, (0, 0), self.blur_radius)

    def invert(self, mask: NDArray[np.uint8]) -> NDArray[np.uint8]:
        return cv2.bitwise_not(mask)

    def disk_blur(self, mask: NDArray[np.uint8]) -> NDArray[np.uint8]:
        """Wide feather with a flat disk kernel."""
        return cv2.filter2D(mask, -1, self._disk_kernel, borderType=cv2.BORDER_REPLICATE)

    def to_alpha(self, mask: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Luminance mask to alpha in [0, 1]."""
        return mask.astype(np.float32) * (1.0 / 255.0)
