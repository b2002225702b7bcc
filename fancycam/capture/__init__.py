"""
Capture Module.

Responsibilities:
- Video stream acquisition from the physical camera
- Pixel buffer pooling shared with the virtual device
"""

from .buffer_pool import PixelBuffer, PixelBufferPool
from .video_capture import CaptureStatus, VideoCapture
