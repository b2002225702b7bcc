"""
Stream lifecycle.

Each stream is either stopped (no clients) or streaming (one or more).
Only the first start and the last stop have side effects.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from fancycam.core.contracts import ClientHandle, StreamDirection


@dataclass
class StreamRunState:
    """Reference count and (sink only) client bookkeeping for a stream."""
    count: int = 0
    client: Optional[ClientHandle] = None
    consuming: bool = False

    @property
    def streaming(self) -> bool:
        return self.count > 0


class StreamLifecycleManager:
    """
    Start/stop state machine for one stream.

    Args:
        direction: SOURCE or SINK; sink starts need an authorized client
        on_first_start: Called on the 0 -> 1 transition
        on_last_stop: Called on the 1 -> 0 transition
        name: Used in log messages
    """

    def __init__(
        self,
        direction: StreamDirection,
        on_first_start: Callable[[], None],
        on_last_stop: Callable[[], None],
        name: str = "",
    ):
        self.direction = direction
        self.name = name or direction.value
        self._on_first_start = on_first_start
        self._on_last_stop = on_last_stop
        self.state = StreamRunState()

    def authorized_to_start_stream(self, client: ClientHandle) -> bool:
        """Every client is allowed; the sink remembers who asked."""
        if self.direction is StreamDirection.SINK:
            self.state.client = client
        logger.debug(f"{self.name}: authorized client {client.client_id}")
        return True

    def start_stream(self) -> bool:
        """
        Add a streaming client.

        Returns:
            False if a sink start arrives without an authorized client
        """
        if self.direction is StreamDirection.SINK and self.state.client is None:
            logger.error(f"{self.name}: start without an authorized client, ignoring")
            return False

        self.state.count += 1
        if self.state.count == 1:
            logger.info(f"{self.name}: streaming started")
            if self.direction is StreamDirection.SINK:
                self.state.consuming = True
            self._on_first_start()
        return True

    def stop_stream(self) -> bool:
        """
        Drop a streaming client.

        Returns:
            False if the stream was already stopped
        """
        if self.state.count == 0:
            logger.warning(f"{self.name}: stop while not streaming, ignoring")
            return False

        self.state.count -= 1
        if self.state.count == 0:
            logger.info(f"{self.name}: streaming stopped")
            if self.direction is StreamDirection.SINK:
                self.state.consuming = False
            self._on_last_stop()
        return True

    @property
    def is_streaming(self) -> bool:
        return self.state.streaming

    @property
    def count(self) -> int:
        return self.state.count
