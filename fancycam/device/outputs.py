"""
Virtual camera output.

Forwards source-stream frames to an OS virtual webcam via pyvirtualcam,
so any application (OBS, Zoom, etc.) can pick up the composited feed.
"""

from __future__ import annotations

from typing import Optional

import cv2
from loguru import logger

from fancycam.core.contracts import SampleBuffer


class VirtualCamOutput:
    """Source-stream consumer that writes frames to a pyvirtualcam device."""

    def __init__(self, width: int, height: int, fps: int = 30, device: Optional[str] = None):
        self.width = width
        self.height = height
        self.fps = fps
        self.device = device
        self.cam = None
        self.frame_count = 0

    def start(self) -> bool:
        """Open the virtual camera. Returns True on success."""
        if self.cam is not None:
            logger.warning("Virtual camera already running")
            return True

        try:
            import pyvirtualcam
        except ImportError:
            logger.error("pyvirtualcam not installed; install the 'virtualcam' extra")
            return False

        try:
            self.cam = pyvirtualcam.Camera(
                width=self.width,
                height=self.height,
                fps=self.fps,
                fmt=pyvirtualcam.PixelFormat.BGR,
                device=self.device,
            )
        except RuntimeError as e:
            logger.error(f"Failed to start virtual camera: {e}")
            self.cam = None
            return False

        logger.info(f"Virtual camera started: {self.cam.device} ({self.width}x{self.height} @ {self.fps}fps)")
        return True

    def __call__(self, sample: SampleBuffer) -> None:
        """Consume one sample from the source stream."""
        if self.cam is None:
            return

        buffer = sample.pixel_buffer
        frame = cv2.cvtColor(buffer.data, cv2.COLOR_BGRA2BGR)
        if frame.shape[:2] != (self.height, self.width):
            frame = cv2.resize(frame, (self.width, self.height))
        self.cam.send(frame)
        self.frame_count += 1

        if self.frame_count % 300 == 0:
            logger.debug(f"VirtualCam: {self.frame_count} frames sent")

    def stop(self) -> None:
        if self.cam is None:
            return
        logger.info(f"Stopping virtual camera after {self.frame_count} frames")
        try:
            self.cam.close()
        finally:
            self.cam = None
