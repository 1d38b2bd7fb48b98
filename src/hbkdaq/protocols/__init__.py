"""Device protocol implementations for HBK LAN-XI recorder communication."""

from hbkdaq.protocols.device_client import DeviceClient
from hbkdaq.protocols.rest_client import HTTP_PORT, LanXiClient
from hbkdaq.protocols.stream import (
    STREAM_MAGIC,
    StreamReader,
    build_stream_message,
    parse_stream_header,
    parse_stream_payload,
)

__all__ = [
    "DeviceClient",
    "HTTP_PORT",
    "LanXiClient",
    "STREAM_MAGIC",
    "StreamReader",
    "build_stream_message",
    "parse_stream_header",
    "parse_stream_payload",
]
