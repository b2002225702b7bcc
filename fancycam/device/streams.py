"""
Virtual device and its streams.

Supports:
- A source stream that publishes frames to registered consumers
- A sink stream with a bounded queue that clients push frames into
- Property queries on streams, the device and the provider
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from loguru import logger

from fancycam.core.contracts import (
    CAMERA_NAME,
    DEVICE_MODEL,
    PROVIDER_MANUFACTURER,
    SampleBuffer,
    ScheduledOutput,
    StreamDirection,
    StreamFormat,
)
from fancycam.core.errors import DeviceSetupError


SampleConsumer = Callable[[SampleBuffer], None]


class StreamProperty(Enum):
    ACTIVE_FORMAT_INDEX = "active_format_index"
    FRAME_DURATION = "frame_duration"
    SINK_BUFFER_QUEUE_SIZE = "sink_buffer_queue_size"
    SINK_BUFFERS_REQUIRED_FOR_STARTUP = "sink_buffers_required_for_startup"
    SINK_BUFFER_UNDERRUN_COUNT = "sink_buffer_underrun_count"
    SINK_END_OF_DATA = "sink_end_of_data"


class DeviceProperty(Enum):
    MODEL = "model"
    TRANSPORT_TYPE = "transport_type"
    NAME = "name"


class ProviderProperty(Enum):
    MANUFACTURER = "manufacturer"
    NAME = "name"


_SINK_ONLY = (
    StreamProperty.SINK_BUFFER_QUEUE_SIZE,
    StreamProperty.SINK_BUFFERS_REQUIRED_FOR_STARTUP,
    StreamProperty.SINK_BUFFER_UNDERRUN_COUNT,
    StreamProperty.SINK_END_OF_DATA,
)


class Stream:
    """A device stream advertising exactly one format."""

    direction = StreamDirection.SOURCE

    def __init__(self, stream_id: str, name: str, stream_format: StreamFormat):
        self.stream_id = stream_id
        self.name = name
        self.stream_format = stream_format

    @property
    def formats(self) -> List[StreamFormat]:
        return [self.stream_format]

    @property
    def active_format_index(self) -> int:
        return 0

    def supported_properties(self) -> List[StreamProperty]:
        return [StreamProperty.ACTIVE_FORMAT_INDEX, StreamProperty.FRAME_DURATION]

    def stream_properties(
        self, keys: Optional[Iterable[StreamProperty]] = None
    ) -> Dict[StreamProperty, Any]:
        """
        Answer a property query.

        Args:
            keys: Properties wanted; all supported ones when None

        Returns:
            Mapping of the supported subset of keys to values
        """
        wanted = self.supported_properties() if keys is None else list(keys)
        return {
            key: self._property_value(key)
            for key in wanted
            if key in self.supported_properties()
        }

    def _property_value(self, key: StreamProperty) -> Any:
        if key is StreamProperty.ACTIVE_FORMAT_INDEX:
            return self.active_format_index
        if key is StreamProperty.FRAME_DURATION:
            return self.stream_format.frame_duration
        return None

    def set_stream_properties(self, properties: Dict[StreamProperty, Any]) -> None:
        """Only the active format index is settable, and only to 0."""
        index = properties.get(StreamProperty.ACTIVE_FORMAT_INDEX)
        if index is not None and index >= 1:
            logger.error(f"{self.name}: invalid active format index {index}")

    def __repr__(self) -> str:
        fmt = self.stream_format
        return f"{type(self).__name__}({self.name!r}, {fmt.width}x{fmt.height}@{fmt.frame_rate})"


class SourceStream(Stream):
    """Publishes frames to every registered consumer."""

    direction = StreamDirection.SOURCE

    def __init__(self, stream_id: str, name: str, stream_format: StreamFormat):
        super().__init__(stream_id, name, stream_format)
        self._consumers: List[SampleConsumer] = []
        self.frames_sent = 0

    def add_consumer(self, consumer: SampleConsumer) -> None:
        self._consumers.append(consumer)

    def remove_consumer(self, consumer: SampleConsumer) -> None:
        if consumer in self._consumers:
            self._consumers.remove(consumer)

    @property
    def consumer_count(self) -> int:
        return len(self._consumers)

    def send(self, sample: SampleBuffer) -> int:
        """
        Deliver a sample to all consumers.

        Consumers must copy the pixels they want to keep; the buffer goes
        back to its pool once send() returns.

        Returns:
            Number of consumers that took the sample without raising
        """
        delivered = 0
        for consumer in list(self._consumers):
            try:
                consumer(sample)
                delivered += 1
            except Exception as e:
                logger.error(f"{self.name}: consumer error: {e}")
        self.frames_sent += 1
        return delivered


class SinkStream(Stream):
    """
    Accepts frames pushed by a client.

    The queue is bounded; producers check is_full and drop instead of
    waiting.
    """

    direction = StreamDirection.SINK

    def __init__(
        self,
        stream_id: str,
        name: str,
        stream_format: StreamFormat,
        queue_capacity: int = 2,
        buffers_required_for_startup: int = 1,
    ):
        super().__init__(stream_id, name, stream_format)
        self.queue_capacity = queue_capacity
        self.buffers_required_for_startup = buffers_required_for_startup
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_capacity)

        self.underrun_count = 0
        self.end_of_data = False
        self.last_scheduled_output: Optional[ScheduledOutput] = None

    def supported_properties(self) -> List[StreamProperty]:
        return super().supported_properties() + list(_SINK_ONLY)

    def _property_value(self, key: StreamProperty) -> Any:
        if key is StreamProperty.SINK_BUFFER_QUEUE_SIZE:
            return self.queue_capacity
        if key is StreamProperty.SINK_BUFFERS_REQUIRED_FOR_STARTUP:
            return self.buffers_required_for_startup
        if key is StreamProperty.SINK_BUFFER_UNDERRUN_COUNT:
            return self.underrun_count
        if key is StreamProperty.SINK_END_OF_DATA:
            return self.end_of_data
        return super()._property_value(key)

    @property
    def is_full(self) -> bool:
        return self.queue.full()

    @property
    def depth(self) -> int:
        return self.queue.qsize()

    def put_nowait(self, sample: SampleBuffer) -> bool:
        """Queue a sample; False if the queue is at capacity."""
        try:
            self.queue.put_nowait(sample)
        except asyncio.QueueFull:
            return False
        return True

    async def get(self) -> SampleBuffer:
        return await self.queue.get()

    def notify_scheduled_output(self, output: ScheduledOutput) -> None:
        self.last_scheduled_output = output

    def drain(self) -> List[SampleBuffer]:
        """Remove and return everything still queued."""
        samples = []
        while not self.queue.empty():
            samples.append(self.queue.get_nowait())
        return samples


class VirtualDevice:
    """
    The published camera device.

    Guarantees:
    - Stream ids are unique
    - Every stream uses the device's format
    """

    transport_type = "virtual"

    def __init__(
        self,
        device_id: str,
        stream_format: StreamFormat,
        name: str = CAMERA_NAME,
        model: str = DEVICE_MODEL,
    ):
        self.device_id = device_id
        self.stream_format = stream_format
        self.name = name
        self.model = model
        self._streams: Dict[str, Stream] = {}

    def add_stream(self, stream: Stream) -> None:
        """
        Register a stream.

        Raises:
            DeviceSetupError: On a duplicate id or a mismatched format
        """
        if stream.stream_id in self._streams:
            raise DeviceSetupError(f"Stream id {stream.stream_id} already registered on {self.name}")
        if stream.stream_format != self.stream_format:
            raise DeviceSetupError(
                f"Stream {stream.name} format {stream.stream_format} does not match device format "
                f"{self.stream_format}"
            )
        self._streams[stream.stream_id] = stream
        logger.debug(f"Added {stream!r} to {self.name}")

    @property
    def streams(self) -> List[Stream]:
        return list(self._streams.values())

    def stream(self, stream_id: str) -> Optional[Stream]:
        return self._streams.get(stream_id)

    def device_properties(self) -> Dict[DeviceProperty, Any]:
        return {
            DeviceProperty.NAME: self.name,
            DeviceProperty.MODEL: self.model,
            DeviceProperty.TRANSPORT_TYPE: self.transport_type,
        }


def provider_properties(name: str = CAMERA_NAME) -> Dict[ProviderProperty, Any]:
    return {
        ProviderProperty.NAME: name,
        ProviderProperty.MANUFACTURER: PROVIDER_MANUFACTURER,
    }
