"""
Device module.

Responsibilities:
- Virtual device with source and sink streams
- Stream start/stop lifecycle
- Idle frames and sink-to-source relaying
"""

from .streams import SinkStream, SourceStream, StreamProperty, VirtualDevice
from .lifecycle import StreamLifecycleManager, StreamRunState
from .relay import RelayStats, StripeAnimator, VirtualDeviceRelay
from .context import DeviceContext
from .outputs import VirtualCamOutput
