"""
Device context.

Builds the virtual device once at start-up and hands out its parts:
buffer pool, device, source and sink streams, relay and the two
lifecycle managers.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from fancycam.capture.buffer_pool import PixelBufferPool
from fancycam.core.config import AppConfig
from fancycam.core.contracts import (
    CAMERA_NAME,
    SINK_STREAM_NAME,
    SOURCE_STREAM_NAME,
    ClientHandle,
    StreamDirection,
    StreamFormat,
)
from fancycam.device.lifecycle import StreamLifecycleManager
from fancycam.device.relay import VirtualDeviceRelay
from fancycam.device.streams import SinkStream, SourceStream, VirtualDevice


@dataclass
class DeviceContext:
    """Everything that makes up the published camera."""
    stream_format: StreamFormat
    pool: PixelBufferPool
    device: VirtualDevice
    source: SourceStream
    sink: SinkStream
    relay: VirtualDeviceRelay
    source_lifecycle: StreamLifecycleManager
    sink_lifecycle: StreamLifecycleManager

    @classmethod
    def create(cls, config: Optional[AppConfig] = None) -> DeviceContext:
        """
        Build the device from configuration.

        Raises:
            DeviceSetupError: If the streams cannot be registered
        """
        config = config or AppConfig()
        tier = config.video.tier
        settings = config.device

        stream_format = StreamFormat(tier.width, tier.height, settings.frame_rate)
        pool = PixelBufferPool(tier.width, tier.height, settings.pool_allocation_threshold)

        device = VirtualDevice(str(uuid.uuid4()), stream_format, name=CAMERA_NAME)
        source = SourceStream(str(uuid.uuid4()), SOURCE_STREAM_NAME, stream_format)
        sink = SinkStream(
            str(uuid.uuid4()),
            SINK_STREAM_NAME,
            stream_format,
            queue_capacity=settings.sink_queue_capacity,
            buffers_required_for_startup=settings.sink_buffers_required_for_startup,
        )
        device.add_stream(source)
        device.add_stream(sink)

        relay = VirtualDeviceRelay(
            source, sink, pool, frame_rate=settings.frame_rate, mirror=settings.mirror
        )
        source_lifecycle = StreamLifecycleManager(
            StreamDirection.SOURCE, relay.source_started, relay.source_stopped, SOURCE_STREAM_NAME
        )
        sink_lifecycle = StreamLifecycleManager(
            StreamDirection.SINK, relay.sink_started, relay.sink_stopped, SINK_STREAM_NAME
        )

        logger.info(
            f"Virtual device '{device.name}' ready: {tier.width}x{tier.height} "
            f"@ {settings.frame_rate} fps, pool threshold {settings.pool_allocation_threshold}"
        )
        return cls(
            stream_format=stream_format,
            pool=pool,
            device=device,
            source=source,
            sink=sink,
            relay=relay,
            source_lifecycle=source_lifecycle,
            sink_lifecycle=sink_lifecycle,
        )

    def connect_local_client(self, name: str = "fancycam") -> bool:
        """Authorize this process as the sink client and start both streams."""
        client = ClientHandle(client_id=str(uuid.uuid4()), name=name)
        if not self.sink_lifecycle.authorized_to_start_stream(client):
            return False
        self.source_lifecycle.start_stream()
        return self.sink_lifecycle.start_stream()

    async def aclose(self) -> None:
        while self.sink_lifecycle.is_streaming:
            self.sink_lifecycle.stop_stream()
        while self.source_lifecycle.is_streaming:
            self.source_lifecycle.stop_stream()
        await self.relay.aclose()
        self.pool.flush()
