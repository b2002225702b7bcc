"""Shared pytest configuration and fixtures for the FancyCam test suite."""

import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List

import cv2
import numpy as np
import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fancycam.capture.buffer_pool import PixelBuffer  # noqa: E402
from fancycam.core.contracts import AnimationFrames, BackgroundAnimation, ResolutionTier  # noqa: E402
from fancycam.segmentation.segmenter import BaseSegmenter  # noqa: E402
from fancycam.transforms.animation import AnimationLibrary  # noqa: E402


FRAME_W = 96
FRAME_H = 64


# =============================================================================
# Test doubles
# =============================================================================

class CircleSegmenter(BaseSegmenter):
    """Deterministic segmenter: a filled circle in the middle of the frame."""

    def __init__(self, radius: int = 20):
        self.radius = radius
        self.calls = 0

    def segment(self, image, token):
        self.calls += 1
        h, w = image.shape[:2]
        mask = np.zeros((h, w), dtype=np.uint8)
        cv2.circle(mask, (w // 2, h // 2), self.radius, 255, -1)
        return mask


class EmptySegmenter(BaseSegmenter):
    """Never finds a subject."""

    def __init__(self):
        self.calls = 0

    def segment(self, image, token):
        self.calls += 1
        return None


class RaisingSegmenter(BaseSegmenter):
    """Fails the way a broken model graph does."""

    def __init__(self):
        self.calls = 0

    def segment(self, image, token):
        self.calls += 1
        raise RuntimeError("graph failure")


class GatedSegmenter(CircleSegmenter):
    """Blocks inside segment() until the gate opens."""

    def __init__(self, radius: int = 20):
        super().__init__(radius)
        self.gate = threading.Event()
        self.entered = threading.Event()

    def segment(self, image, token):
        self.entered.set()
        self.gate.wait(timeout=5.0)
        return super().segment(image, token)


class RecordingSink:
    """Frame sink that remembers what it was given."""

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.frames: List[np.ndarray] = []

    def __call__(self, frame):
        self.frames.append(frame)
        return self.accept


class FakeAnimationLibrary(AnimationLibrary):
    """Solid-colour frames, one colour per index."""

    def __init__(self, count: int = 3):
        self.count = count
        self.loads: List[BackgroundAnimation] = []

    def load_frames(self, selection):
        self.loads.append(selection)
        hi, lo = [], []
        for i in range(self.count):
            colour = (10 * (i + 1), 20 * (i + 1), 30 * (i + 1))
            for tier, out in ((ResolutionTier.HI, hi), (ResolutionTier.LO, lo)):
                frame = np.empty((tier.height, tier.width, 3), dtype=np.uint8)
                frame[:] = colour
                out.append(frame)
        return AnimationFrames(hi=tuple(hi), lo=tuple(lo))


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def frame() -> np.ndarray:
    """Textured BGR test frame (fixed seed)."""
    rng = np.random.default_rng(42)
    return rng.integers(0, 256, size=(FRAME_H, FRAME_W, 3), dtype=np.uint8)


@pytest.fixture
def pixel_buffer(frame) -> PixelBuffer:
    return PixelBuffer.from_bgr(frame)


@pytest.fixture
def circle_segmenter() -> CircleSegmenter:
    return CircleSegmenter()


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def animation_library() -> FakeAnimationLibrary:
    return FakeAnimationLibrary()


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="test-frame")
    yield pool
    pool.shutdown(wait=True)
