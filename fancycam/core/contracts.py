"""
Core data contracts for FancyCam.

All components exchange these types:
- Effect and animation selections
- Immutable effect snapshots handed to frame tasks
- Timestamped sample buffers travelling through the virtual device
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from typing import Optional, Tuple, TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:
    from fancycam.capture.buffer_pool import PixelBuffer


# ============================================================
# DEVICE CONSTANTS
# ============================================================

CAMERA_NAME = "Fancy Camera"
DEVICE_MODEL = "FancyCamera Model"
PROVIDER_MANUFACTURER = "FancyCamera Manufacturer"
SOURCE_STREAM_NAME = "FancyCamera.Video"
SINK_STREAM_NAME = "FancyCamera.Video.Sink"

PIXEL_FORMAT_BGRA = "BGRA"
BYTES_PER_PIXEL = 4

WHITE_STRIPE_HEIGHT = 10
MASK_BLUR_RADIUS = 2.4
POOL_ALLOCATION_THRESHOLD = 5


# ============================================================
# ENUMERATIONS
# ============================================================

class ResolutionTier(Enum):
    """The two fixed capture/output resolutions."""
    HI = (1920, 1080)
    LO = (1280, 720)

    @property
    def width(self) -> int:
        return self.value[0]

    @property
    def height(self) -> int:
        return self.value[1]

    @classmethod
    def for_width(cls, width: int) -> ResolutionTier:
        """Pick the tier for a frame: hi only on an exact hi-width match."""
        return cls.HI if width == cls.HI.width else cls.LO


class FrameRateTier(Enum):
    """Supported output frame rates."""
    FPS30 = 30
    FPS60 = 60


class BackgroundEffect(Enum):
    """Effects applied to the background layer."""
    DESATURATE = "desaturate"
    CMYK_HALFTONE = "cmyk_halftone"
    COMIC = "comic"
    BLOOM = "bloom"
    GLOOM = "gloom"
    CRYSTALLISE = "crystallise"
    DEPTH_OF_FIELD = "depth_of_field"
    BLUR = "blur"
    ANIMATE = "animate"
    NONE = "none"

    @property
    def title(self) -> str:
        return EFFECT_TITLES[self]


class BackgroundAnimation(Enum):
    """Animated background presets."""
    RAINFOREST = "rainforest"
    WATERFALL = "waterfall"
    ISLAND = "island"
    STORM = "storm"

    @property
    def resource(self) -> GIFResource:
        return GIF_RESOURCES[self]

    @property
    def title(self) -> str:
        return GIF_RESOURCES[self].title


class StreamDirection(Enum):
    """Direction of a virtual device stream."""
    SOURCE = "source"
    SINK = "sink"


@dataclass(frozen=True)
class GIFResource:
    """An animation asset and its display title."""
    resource_name: str
    title: str


EFFECT_TITLES = {
    BackgroundEffect.DESATURATE: "Desaturate",
    BackgroundEffect.CMYK_HALFTONE: "CMYK Halftone",
    BackgroundEffect.COMIC: "Comic",
    BackgroundEffect.BLOOM: "Bloom",
    BackgroundEffect.GLOOM: "Gloom",
    BackgroundEffect.CRYSTALLISE: "Crystallise",
    BackgroundEffect.DEPTH_OF_FIELD: "Depth of Field",
    BackgroundEffect.BLUR: "Blur",
    BackgroundEffect.ANIMATE: "Animation",
    BackgroundEffect.NONE: "None",
}

GIF_RESOURCES = {
    BackgroundAnimation.RAINFOREST: GIFResource("forest-rain", "Rainforest"),
    BackgroundAnimation.WATERFALL: GIFResource("falls-nature", "Fantasy Waterfall"),
    BackgroundAnimation.ISLAND: GIFResource("dominicano", "Island Retreat"),
    BackgroundAnimation.STORM: GIFResource("tornado-horizontal", "Stormy Skies"),
}


# ============================================================
# CORE DATA STRUCTURES
# ============================================================

@dataclass(frozen=True)
class EffectConfig:
    """
    Snapshot of the live effect settings.

    Taken once per frame task; later changes to the live settings
    never reach a task that already holds a snapshot.
    """
    effect: BackgroundEffect = BackgroundEffect.DESATURATE
    animation: BackgroundAnimation = BackgroundAnimation.WATERFALL
    preprocess_background: bool = False
    fps60: bool = False

    @property
    def animated(self) -> bool:
        return self.effect is BackgroundEffect.ANIMATE

    @property
    def frame_rate(self) -> FrameRateTier:
        return FrameRateTier.FPS60 if self.fps60 else FrameRateTier.FPS30


@dataclass(frozen=True)
class AnimationFrames:
    """Pre-scaled animation frames for both resolution tiers."""
    hi: Tuple[NDArray[np.uint8], ...] = ()
    lo: Tuple[NDArray[np.uint8], ...] = ()

    def __len__(self) -> int:
        return len(self.hi)

    def for_tier(self, tier: ResolutionTier) -> Tuple[NDArray[np.uint8], ...]:
        return self.hi if tier is ResolutionTier.HI else self.lo


@dataclass(frozen=True)
class StreamFormat:
    """The single format a stream advertises."""
    width: int
    height: int
    frame_rate: int
    pixel_format: str = PIXEL_FORMAT_BGRA

    @property
    def frame_duration(self) -> Fraction:
        return Fraction(1, self.frame_rate)

    @property
    def bytes_per_row(self) -> int:
        return self.width * BYTES_PER_PIXEL


@dataclass
class SampleBuffer:
    """A pooled pixel buffer wrapped with its timing information."""
    pixel_buffer: PixelBuffer
    presentation_time_ns: int
    sequence_number: int = 0

    # Set by the relay when the buffer is republished on the source stream
    host_time_ns: Optional[int] = None


@dataclass(frozen=True)
class ScheduledOutput:
    """Sequencing state reported back to the sink after a forward."""
    sequence_number: int
    host_time_ns: int


@dataclass(frozen=True)
class ClientHandle:
    """Identity of a client that asked to start a stream."""
    client_id: str
    name: str = ""
    pid: Optional[int] = None


@dataclass
class PipelineStats:
    """Per-outcome counters for the frame pipeline."""
    submitted: int = 0
    completed: int = 0
    dropped: int = 0
    cancelled: int = 0
    latencies_ms: list = field(default_factory=list)

    @property
    def mean_latency_ms(self) -> float:
        if not self.latencies_ms:
            return 0.0
        return sum(self.latencies_ms) / len(self.latencies_ms)


def host_time_ns() -> int:
    """Monotonic host clock in nanoseconds."""
    return time.monotonic_ns()
