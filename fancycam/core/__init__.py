"""
Core contracts, configuration and error types for FancyCam.
"""

from .contracts import (
    BackgroundAnimation,
    BackgroundEffect,
    EffectConfig,
    ResolutionTier,
    SampleBuffer,
    StreamDirection,
    StreamFormat,
)
from .cancellation import CANCELLED, CancellationToken
from .errors import (
    BufferReleaseError,
    CameraError,
    ConfigError,
    DeviceSetupError,
    FancyCamError,
)
