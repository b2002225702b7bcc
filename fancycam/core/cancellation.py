"""
Cooperative cancellation for frame tasks.

A token is created with each frame task and threaded through every
processing stage. Stages check it before and after their work and
hand back CANCELLED instead of a value once it is set.
"""

from __future__ import annotations

import threading


class Cancelled:
    """Result variant returned by a stage whose task was superseded."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "CANCELLED"

    def __bool__(self) -> bool:
        return False


CANCELLED = Cancelled()


class CancellationToken:
    """
    One-way cancellation flag.

    Safe to read from worker threads (segmenters check it mid-flight)
    while the event loop sets it.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def __repr__(self) -> str:
        state = "cancelled" if self.is_cancelled else "active"
        return f"CancellationToken({state})"


def is_cancelled(result: object) -> bool:
    """True if a stage result is the CANCELLED variant."""
    return result is CANCELLED
