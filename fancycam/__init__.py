"""
FancyCam

A virtual camera that replaces or restyles the background behind the
subject in real time and republishes the result as a camera device
other applications can open.

Top Priorities (strict order):
1. Never stall the camera: drop frames rather than queue them
2. Never show a half-processed frame
3. Deterministic effects
"""

__version__ = "0.1.0"
__author__ = "FancyCam Team"
