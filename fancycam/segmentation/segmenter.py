"""
Foreground/background segmentation.

Segmenters turn a BGR frame into a single-channel uint8 mask
(255 = subject, 0 = background) aligned to the frame. They run on
a worker thread and may be slow, so they receive the frame task's
cancellation token and return CANCELLED once it is set.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import List, Optional, Union

import cv2
import numpy as np
from numpy.typing import NDArray
from loguru import logger

from fancycam.core.cancellation import CANCELLED, CancellationToken, Cancelled

try:
    import mediapipe as mp
    MEDIAPIPE_AVAILABLE = True
except ImportError:
    MEDIAPIPE_AVAILABLE = False
    logger.warning("MediaPipe not available")


MaskResult = Union[Optional[NDArray[np.uint8]], Cancelled]


class BaseSegmenter(ABC):
    """
    Abstract segmenter.

    segment() is called from a worker thread, one call at a time.
    """

    def initialize(self) -> bool:
        """Load models. Returns True if the segmenter is usable."""
        return True

    def shutdown(self) -> None:
        """Release model resources."""

    @abstractmethod
    def segment(self, image: NDArray[np.uint8], token: CancellationToken) -> MaskResult:
        """
        Compute the foreground mask for a frame.

        Args:
            image: BGR frame (H x W x 3)
            token: Cancellation token of the owning frame task

        Returns:
            uint8 mask (H x W), None if no subject was found,
            or CANCELLED if the token was set mid-flight
        """


class MediaPipeSegmenter(BaseSegmenter):
    """
    Person segmentation using MediaPipe selfie segmentation.

    Creates masks that follow the subject from frame to frame.
    """

    def __init__(
        self,
        model_selection: int = 1,  # 0=close-range, 1=full-range
        threshold: float = 0.5,
        min_foreground_fraction: float = 0.002,
    ):
        """
        Initialize segmenter.

        Args:
            model_selection: 0 for close-range (within 2m), 1 for full-range (within 5m)
            threshold: Confidence above which a pixel counts as subject
            min_foreground_fraction: Masks covering less of the frame count as empty
        """
        self.model_selection = model_selection
        self.threshold = threshold
        self.min_foreground_fraction = min_foreground_fraction

        self._selfie_segmentation = None
        self._inference_times: List[float] = []
        self._is_initialized = False

    def initialize(self) -> bool:
        """Initialize MediaPipe models."""
        if self._is_initialized:
            return True
        if not MEDIAPIPE_AVAILABLE:
            logger.error("MediaPipe not available; install the 'mediapipe' extra")
            return False

        try:
            self._selfie_segmentation = mp.solutions.selfie_segmentation.SelfieSegmentation(
                model_selection=self.model_selection
            )
        except Exception as e:
            logger.error(f"Failed to initialize MediaPipe: {e}")
            return False

        self._is_initialized = True
        logger.info("Selfie segmentation initialized")
        return True

    def shutdown(self) -> None:
        if self._selfie_segmentation is not None:
            self._selfie_segmentation.close()
            self._selfie_segmentation = None
        self._is_initialized = False

    def segment(self, image: NDArray[np.uint8], token: CancellationToken) -> MaskResult:
        if token.is_cancelled:
            return CANCELLED
        if not self._is_initialized and not self.initialize():
            return None

        start_time = time.perf_counter()
        rgb_frame = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        results = self._selfie_segmentation.process(rgb_frame)

        if token.is_cancelled:
            return CANCELLED

        self._inference_times.append((time.perf_counter() - start_time) * 1000)
        if len(self._inference_times) > 100:
            self._inference_times.pop(0)

        if results.segmentation_mask is None:
            return None

        mask = (results.segmentation_mask > self.threshold).astype(np.uint8) * 255
        if np.count_nonzero(mask) < self.min_foreground_fraction * mask.size:
            return None
        return mask

    @property
    def mean_inference_ms(self) -> float:
        if not self._inference_times:
            return 0.0
        return sum(self._inference_times) / len(self._inference_times)
