"""Framed data stream for recorder output.

Once a recorder is started the device pushes data on the TCP destination
port assigned by the open request. Each message is:

- 8-byte header, big-endian: magic ``b"HBKS"`` (4 bytes), payload length (uint32)
- UTF-8 JSON payload::

    {
      "signal_variables": ["time", "ch1", ...],
      "signals": [[...], ...],
      "interpretation_variables": ["scale", ...],
      "interpretation": [[...], ...]
    }

A message with zero signal rows is a keepalive and decodes to an empty batch.
"""

import json
import socket
import struct
from typing import Any, Optional

from hbkdaq.errors import (
    ConnectionRefusedError,
    ConnectionTimeoutError,
    InvalidHeaderError,
    MalformedMessageError,
    MessageParseError,
    NetworkDisconnectError,
)
from hbkdaq.models import Batch

# Protocol constants
STREAM_MAGIC = b"HBKS"
HEADER_FORMAT = ">4sI"  # magic, payload length
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
MAX_PAYLOAD_SIZE = 64 * 1024 * 1024
PROTOCOL_NAME = "STREAM"


def build_stream_message(
    signals: list[list[float]],
    signal_variables: list[str],
    interpretation: Optional[list[list[float]]] = None,
    interpretation_variables: Optional[list[str]] = None,
) -> bytes:
    """Build a framed stream message.

    Args:
        signals: Signal rows.
        signal_variables: Signal column names.
        interpretation: Interpretation rows aligned with ``signals``.
        interpretation_variables: Interpretation column names.

    Returns:
        Header followed by the JSON payload.
    """
    payload = json.dumps(
        {
            "signal_variables": list(signal_variables),
            "signals": signals,
            "interpretation_variables": list(interpretation_variables or []),
            "interpretation": interpretation if interpretation is not None else [],
        },
        separators=(",", ":"),
    ).encode("utf-8")
    return struct.pack(HEADER_FORMAT, STREAM_MAGIC, len(payload)) + payload


def parse_stream_header(data: bytes) -> int:
    """Parse a message header.

    Args:
        data: 8-byte header.

    Returns:
        Payload length in bytes.

    Raises:
        MalformedMessageError: If the header has the wrong size or an oversized length.
        InvalidHeaderError: If the magic bytes do not match.
    """
    if len(data) != HEADER_SIZE:
        raise MalformedMessageError(PROTOCOL_NAME, HEADER_SIZE, len(data))

    magic, length = struct.unpack(HEADER_FORMAT, data)
    if magic != STREAM_MAGIC:
        raise InvalidHeaderError(PROTOCOL_NAME, repr(STREAM_MAGIC), repr(magic))
    if length > MAX_PAYLOAD_SIZE:
        raise MalformedMessageError(PROTOCOL_NAME, MAX_PAYLOAD_SIZE, length)
    return length


def _require_list(document: dict[str, Any], key: str) -> list[Any]:
    value = document.get(key, [])
    if not isinstance(value, list):
        raise MessageParseError(PROTOCOL_NAME, key, f"expected a list, got {type(value).__name__}")
    return value


def parse_stream_payload(payload: bytes) -> Batch:
    """Decode a JSON payload into a Batch.

    Raises:
        MessageParseError: If the payload is not valid JSON or the rows are inconsistent.
    """
    try:
        document = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MessageParseError(PROTOCOL_NAME, "payload", str(e)) from e
    if not isinstance(document, dict):
        raise MessageParseError(PROTOCOL_NAME, "payload", "expected a JSON object")

    signal_variables = _require_list(document, "signal_variables")
    signals = _require_list(document, "signals")
    interpretation_variables = _require_list(document, "interpretation_variables")
    interpretation = _require_list(document, "interpretation")

    if not signals:
        return Batch.empty()

    try:
        return Batch.from_rows(
            signals,
            interpretation,
            signal_variables=[str(name) for name in signal_variables],
            interpretation_variables=[str(name) for name in interpretation_variables],
        )
    except (TypeError, ValueError) as e:
        raise MessageParseError(PROTOCOL_NAME, "rows", str(e)) from e


class StreamReader:
    """Reads framed messages from the device's data port.

    Example:
        >>> reader = StreamReader("192.168.1.1", 49200)
        >>> batch = reader.read_batch(timeout=5.0)
        >>> reader.close()
    """

    def __init__(self, host: str, port: int) -> None:
        """Initialize the reader.

        Args:
            host: Device IP address.
            port: TCP destination port assigned by the device.
        """
        self._host = host
        self._port = port
        self._socket: Optional[socket.socket] = None

    @property
    def host(self) -> str:
        """Device IP address."""
        return self._host

    @property
    def port(self) -> int:
        """TCP data port."""
        return self._port

    @property
    def is_connected(self) -> bool:
        return self._socket is not None

    def _ensure_connected(self, timeout: float) -> socket.socket:
        """Ensure the data socket is connected."""
        if self._socket is None:
            try:
                self._socket = socket.create_connection((self._host, self._port), timeout=timeout)
            except socket.timeout as e:
                raise ConnectionTimeoutError(self._host, self._port, timeout) from e
            except OSError as e:
                raise ConnectionRefusedError(self._host, self._port, str(e)) from e
        self._socket.settimeout(timeout)
        return self._socket

    def _read_exact(self, sock: socket.socket, size: int, timeout: float) -> bytes:
        data = b""
        while len(data) < size:
            try:
                chunk = sock.recv(size - len(data))
            except socket.timeout as e:
                raise ConnectionTimeoutError(self._host, self._port, timeout) from e
            except OSError as e:
                raise NetworkDisconnectError(self._host, self._port, str(e)) from e
            if not chunk:
                raise NetworkDisconnectError(self._host, self._port, "Connection closed by device")
            data += chunk
        return data

    def read_batch(self, timeout: float) -> Batch:
        """Block until the next message arrives and decode it.

        Args:
            timeout: Seconds to wait for each read.

        Returns:
            The decoded batch, empty for keepalive messages.

        Raises:
            ConnectionTimeoutError: If no data arrives within ``timeout``.
            NetworkDisconnectError: If the device closes the stream.
            ProtocolError: If the message cannot be decoded.
        """
        sock = self._ensure_connected(timeout)
        header = self._read_exact(sock, HEADER_SIZE, timeout)
        length = parse_stream_header(header)
        payload = self._read_exact(sock, length, timeout) if length else b""
        if not payload:
            return Batch.empty()
        return parse_stream_payload(payload)

    def close(self) -> None:
        """Close the data socket."""
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    def __enter__(self) -> "StreamReader":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Context manager exit."""
        self.close()
