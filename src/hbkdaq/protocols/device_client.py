"""Capability set the session controller needs from a recorder device.

Any object with these methods can drive a session: the LAN-XI REST client
for real hardware, or a scripted fake in tests. All methods may raise a
transport-level exception; ``poll`` returning an empty batch is not an error.
"""

from typing import Any, Mapping, Protocol, runtime_checkable

from hbkdaq.models import Batch, ChannelConfiguration, ModuleInfo, RecorderHandle


@runtime_checkable
class DeviceClient(Protocol):
    """Recorder operations addressed to a device by IP address."""

    def discover_modules(self, address: str, timeout: float) -> ModuleInfo:
        """Fetch the module and channel descriptor."""
        ...

    def open_recorder(self, address: str, params: Mapping[str, Any], timeout: float) -> RecorderHandle:
        """Open a recorder session and return the transport details the device assigned."""
        ...

    def prepare(self, address: str, config: ChannelConfiguration, timeout: float) -> None:
        """Push the channel configuration."""
        ...

    def start(self, address: str, timeout: float) -> None:
        """Start recording."""
        ...

    def poll(self, address: str, handle: RecorderHandle, timeout: float) -> Batch:
        """Return the next available batch, possibly empty."""
        ...

    def stop(self, address: str, timeout: float) -> None:
        """Stop recording."""
        ...

    def close(self, address: str, timeout: float) -> None:
        """Close the recorder session."""
        ...
