"""
Pipeline module.

Responsibilities:
- Per-frame processing with cancellation
- Live settings and animation switching
"""

from .frame_pipeline import FrameProcessingPipeline, FrameTask
from .session import CameraSession
