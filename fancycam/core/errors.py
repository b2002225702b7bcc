"""
Exception types for FancyCam.

Per-frame problems never raise; they drop the frame and log.
These exceptions cover structural failures and errors the
caller is expected to present.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class FancyCamError(Exception):
    """Base class for all FancyCam errors."""


class ConfigError(FancyCamError):
    """Configuration could not be read or holds an unknown value."""


class DeviceSetupError(FancyCamError):
    """A required stream or device could not be registered. Fatal."""


class BufferReleaseError(FancyCamError):
    """A pixel buffer was released or retained after its last release."""


class CameraErrorKind(Enum):
    CAMERA_UNAVAILABLE = "camera_unavailable"
    CANNOT_ADD_INPUT = "cannot_add_input"
    CANNOT_ADD_OUTPUT = "cannot_add_output"
    CREATE_CAPTURE_INPUT = "create_capture_input"
    DENIED_AUTHORIZATION = "denied_authorization"
    RESTRICTED_AUTHORIZATION = "restricted_authorization"
    UNKNOWN_AUTHORIZATION = "unknown_authorization"


_CAMERA_MESSAGES = {
    CameraErrorKind.CAMERA_UNAVAILABLE: "Camera unavailable",
    CameraErrorKind.CANNOT_ADD_INPUT: "Cannot add capture input to session",
    CameraErrorKind.CANNOT_ADD_OUTPUT: "Cannot add video output to session",
    CameraErrorKind.CREATE_CAPTURE_INPUT: "Creating capture input for camera",
    CameraErrorKind.DENIED_AUTHORIZATION: "Camera access denied",
    CameraErrorKind.RESTRICTED_AUTHORIZATION: "Attempting to access a restricted capture device",
    CameraErrorKind.UNKNOWN_AUTHORIZATION: "Unknown authorization status for capture device",
}


class CameraError(FancyCamError):
    """
    Capture-side failure surfaced to the caller.

    The core never retries these; the caller decides what to show.
    """

    def __init__(self, kind: CameraErrorKind, cause: Optional[BaseException] = None):
        self.kind = kind
        self.cause = cause
        message = _CAMERA_MESSAGES[kind]
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
