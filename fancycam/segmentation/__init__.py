"""
Segmentation module.

Responsibilities:
- Foreground (subject) mask computation
- Mask softening, inversion and alpha conversion
"""

from .segmenter import BaseSegmenter, MediaPipeSegmenter
from .mask_processor import MaskProcessor
