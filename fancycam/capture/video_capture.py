"""
Video Capture from the physical camera.

Handles:
- Webcam acquisition through OpenCV
- BGRA pixel buffer conversion
- Pushing (pixel_buffer, timestamp_ms) onto the event loop
"""

from __future__ import annotations

import asyncio
import threading
import time
from enum import Enum
from typing import Callable, List, Optional

import cv2
from loguru import logger

from fancycam.capture.buffer_pool import PixelBuffer
from fancycam.core.contracts import ResolutionTier
from fancycam.core.errors import CameraError, CameraErrorKind


FrameCallback = Callable[[PixelBuffer, float], None]


class CaptureStatus(Enum):
    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    UNAUTHORIZED = "unauthorized"
    FAILED = "failed"
    RECONFIGURING = "reconfiguring"


class VideoCapture:
    """
    Push-style video capture.

    A reader thread pulls frames from OpenCV and hands each one to the
    callback on the event loop thread, so the pipeline sees arrival as
    its only clock.

    Guarantees:
    - Consistent frame timing
    - BGRA pixel buffers at the configured tier
    - Failures recorded as CameraError, never raised from the reader thread
    """

    def __init__(
        self,
        device_index: int = 0,
        tier: ResolutionTier = ResolutionTier.HI,
        fps: int = 30,
        buffer_frames: int = 1,
    ):
        """
        Initialize video capture.

        Args:
            device_index: Camera device index
            tier: Requested resolution tier
            fps: Target frames per second
            buffer_frames: Number of frames the driver may buffer
        """
        self.device_index = device_index
        self.tier = tier
        self.fps = fps
        self.buffer_frames = buffer_frames

        self.status = CaptureStatus.UNCONFIGURED
        self.error: Optional[CameraError] = None

        self._capture: Optional[cv2.VideoCapture] = None
        self._thread: Optional[threading.Thread] = None
        self._is_running = False
        self._lock = threading.Lock()

        self._callback: Optional[FrameCallback] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._frame_count = 0
        self._frame_times: List[float] = []
        self._actual_fps = 0.0

    def set_delegate(self, callback: FrameCallback, loop: asyncio.AbstractEventLoop) -> None:
        """Deliver every captured buffer to callback on loop."""
        self._callback = callback
        self._loop = loop

    def _set_error(self, error: CameraError, status: CaptureStatus = CaptureStatus.FAILED) -> None:
        self.error = error
        self.status = status
        logger.error(f"Capture error: {error}")

    def configure(self) -> bool:
        """
        Open the camera and apply the requested format.

        Returns:
            True if the camera is ready to stream
        """
        if self.status not in (CaptureStatus.UNCONFIGURED, CaptureStatus.RECONFIGURING):
            return self.status == CaptureStatus.CONFIGURED

        try:
            capture = cv2.VideoCapture(self.device_index)
        except cv2.error as e:
            self._set_error(CameraError(CameraErrorKind.CREATE_CAPTURE_INPUT, e))
            return False

        if not capture.isOpened():
            self._set_error(CameraError(CameraErrorKind.CAMERA_UNAVAILABLE))
            return False

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.tier.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.tier.height)
        capture.set(cv2.CAP_PROP_FPS, self.fps)
        capture.set(cv2.CAP_PROP_BUFFERSIZE, self.buffer_frames)

        actual_width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
        actual_fps = capture.get(cv2.CAP_PROP_FPS)
        logger.info(
            f"Camera {self.device_index} configured: {actual_width}x{actual_height} @ {actual_fps}fps"
        )

        self._capture = capture
        self.error = None
        self.status = CaptureStatus.CONFIGURED
        return True

    def reconfigure(self, device_index: int) -> bool:
        """Switch to another camera, keeping the delegate."""
        was_running = self._is_running
        self.stop()
        self.device_index = device_index
        self.status = CaptureStatus.RECONFIGURING
        if not self.configure():
            return False
        return self.start() if was_running else True

    def start(self) -> bool:
        """
        Start the reader thread.

        Returns:
            True if started successfully
        """
        if self._is_running:
            return True
        if self._callback is None or self._loop is None:
            raise RuntimeError("set_delegate() must be called before start()")
        if not self.configure():
            return False

        self._is_running = True
        self._thread = threading.Thread(
            target=self._reader, name="fancycam-capture", daemon=True
        )
        self._thread.start()
        logger.info("Video capture started")
        return True

    def stop(self):
        """Stop video capture."""
        self._is_running = False
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None

        if self._capture is not None:
            self._capture.release()
            self._capture = None
        if self.status == CaptureStatus.CONFIGURED:
            self.status = CaptureStatus.UNCONFIGURED

        logger.info("Video capture stopped")

    def _reader(self) -> None:
        while self._is_running and self._capture is not None:
            ret, frame = self._capture.read()
            if not ret or frame is None:
                time.sleep(1.0 / max(self.fps, 1))
                continue

            buffer = PixelBuffer.from_bgr(frame)
            timestamp_ms = time.time() * 1000

            with self._lock:
                self._frame_count += 1
                self._frame_times.append(time.perf_counter())
                if len(self._frame_times) > 30:
                    self._frame_times.pop(0)
                self._update_fps()

            try:
                self._loop.call_soon_threadsafe(self._callback, buffer, timestamp_ms)
            except RuntimeError:
                # Event loop closed underneath us
                self._is_running = False

    def _update_fps(self):
        """Calculate actual FPS from frame times."""
        if len(self._frame_times) < 2:
            return

        duration = self._frame_times[-1] - self._frame_times[0]
        if duration > 0:
            self._actual_fps = (len(self._frame_times) - 1) / duration

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def actual_fps(self) -> float:
        return self._actual_fps

    @property
    def frame_count(self) -> int:
        return self._frame_count
