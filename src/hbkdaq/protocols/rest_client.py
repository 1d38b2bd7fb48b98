"""REST recorder client for HBK LAN-XI modules.

The module exposes its recorder over a small JSON REST API and streams
samples on a TCP port it assigns when the recorder is opened.

Protocol details:
- Port: 80
- GET  /rest/rec/module/info          module and channel descriptor
- PUT  /rest/rec/open                 open recorder, returns {"destinationPort": N}
- PUT  /rest/rec/channels/input       channel setup {"frequency", "duration"}
- POST /rest/rec/measurements         start recording
- PUT  /rest/rec/measurements/stop    stop recording
- PUT  /rest/rec/close                close recorder
"""

import json
import logging
import socket
from typing import Any, Mapping, Optional

from hbkdaq.errors import (
    ConnectionRefusedError,
    ConnectionTimeoutError,
    HttpStatusError,
    MessageParseError,
    NetworkDisconnectError,
)
from hbkdaq.models import Batch, ChannelConfiguration, ModuleInfo, RecorderHandle
from hbkdaq.protocols.stream import StreamReader

logger = logging.getLogger(__name__)

# Protocol constants
HTTP_PORT = 80
MODULE_INFO_ENDPOINT = "/rest/rec/module/info"
OPEN_ENDPOINT = "/rest/rec/open"
CHANNELS_ENDPOINT = "/rest/rec/channels/input"
START_ENDPOINT = "/rest/rec/measurements"
STOP_ENDPOINT = "/rest/rec/measurements/stop"
CLOSE_ENDPOINT = "/rest/rec/close"


def build_http_request(method: str, host: str, path: str, body: Optional[Any] = None) -> bytes:
    """Build an HTTP/1.1 request with an optional JSON body.

    Args:
        method: HTTP method.
        host: Value for the Host header.
        path: URL path.
        body: JSON-serializable request body, or None.

    Returns:
        Encoded request bytes.
    """
    payload = b"" if body is None else json.dumps(body).encode("utf-8")
    lines = [
        f"{method} {path} HTTP/1.1",
        f"Host: {host}",
        "Connection: close",
        "Accept: application/json",
    ]
    if body is not None:
        lines.append("Content-Type: application/json")
    lines.append(f"Content-Length: {len(payload)}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("ascii") + payload


def split_http_response(response: bytes) -> tuple[str, str]:
    """Split a raw HTTP response into status line and body.

    Raises:
        MessageParseError: If there is no header/body separator.
    """
    text = response.decode("utf-8", errors="replace")
    if "\r\n\r\n" in text:
        headers, body = text.split("\r\n\r\n", 1)
    elif "\n\n" in text:
        headers, body = text.split("\n\n", 1)
    else:
        raise MessageParseError("HTTP", "response", "no header/body separator")
    status_line = headers.splitlines()[0] if headers else ""
    return status_line, body


def _status_ok(status_line: str) -> bool:
    parts = status_line.split()
    return len(parts) >= 2 and parts[1].isdigit() and 200 <= int(parts[1]) < 300


def _http_request(
    host: str,
    port: int,
    method: str,
    path: str,
    timeout: float,
    body: Optional[Any] = None,
) -> Any:
    """Perform an HTTP request and decode the JSON reply.

    Returns:
        The decoded JSON body, or None for an empty body.

    Raises:
        ConnectionRefusedError: If the device refuses the connection.
        ConnectionTimeoutError: If the request times out.
        NetworkDisconnectError: If the connection drops mid-request.
        HttpStatusError: If the reply status is not 2xx.
        MessageParseError: If the reply body is not valid JSON.
    """
    request = build_http_request(method, host, path, body)

    try:
        sock = socket.create_connection((host, port), timeout=timeout)
    except socket.timeout as e:
        raise ConnectionTimeoutError(host, port, timeout) from e
    except OSError as e:
        raise ConnectionRefusedError(host, port, str(e)) from e

    with sock:
        try:
            sock.sendall(request)
            response = b""
            while True:
                chunk = sock.recv(4096)
                if not chunk:
                    break
                response += chunk
        except socket.timeout as e:
            raise ConnectionTimeoutError(host, port, timeout) from e
        except OSError as e:
            raise NetworkDisconnectError(host, port, str(e)) from e

    if not response:
        raise NetworkDisconnectError(host, port, "Empty response")

    status_line, text = split_http_response(response)
    if not _status_ok(status_line):
        raise HttpStatusError(host, port, method, path, status_line)

    if not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MessageParseError("HTTP", path, f"invalid JSON: {e}") from e


class LanXiClient:
    """Recorder client for LAN-XI modules.

    Implements the DeviceClient capability set. Data stream connections are
    opened lazily on the first poll and closed by ``close``.

    Example:
        >>> client = LanXiClient()
        >>> info = client.discover_modules("169.254.230.53", timeout=60)
        >>> handle = client.open_recorder("169.254.230.53", {"duration": 1.0}, timeout=60)
    """

    def __init__(self, http_port: int = HTTP_PORT) -> None:
        """Initialize the client.

        Args:
            http_port: REST port on the device (default 80).
        """
        self._http_port = http_port
        self._streams: dict[tuple[str, int], StreamReader] = {}

    @property
    def http_port(self) -> int:
        """REST port."""
        return self._http_port

    def _request(self, address: str, method: str, path: str, timeout: float, body: Optional[Any] = None) -> Any:
        logger.debug("%s %s on %s", method, path, address)
        return _http_request(address, self._http_port, method, path, timeout, body)

    def discover_modules(self, address: str, timeout: float) -> ModuleInfo:
        data = self._request(address, "GET", MODULE_INFO_ENDPOINT, timeout)
        if data is not None and not isinstance(data, dict):
            raise MessageParseError("HTTP", MODULE_INFO_ENDPOINT, "expected a JSON object")
        return ModuleInfo(data)

    def open_recorder(self, address: str, params: Mapping[str, Any], timeout: float) -> RecorderHandle:
        data = self._request(address, "PUT", OPEN_ENDPOINT, timeout, dict(params)) or {}
        if not isinstance(data, dict):
            raise MessageParseError("HTTP", OPEN_ENDPOINT, "expected a JSON object")
        port = data.get("destinationPort")
        if port is not None and not isinstance(port, int):
            raise MessageParseError("HTTP", "destinationPort", f"expected an integer, got {port!r}")
        return RecorderHandle(destination_port=port, raw=data)

    def prepare(self, address: str, config: ChannelConfiguration, timeout: float) -> None:
        self._request(address, "PUT", CHANNELS_ENDPOINT, timeout, config.to_dict())

    def start(self, address: str, timeout: float) -> None:
        self._request(address, "POST", START_ENDPOINT, timeout)

    def poll(self, address: str, handle: RecorderHandle, timeout: float) -> Batch:
        if handle.destination_port is None:
            raise MessageParseError("HTTP", "destinationPort", "recorder did not assign a data port")
        key = (address, handle.destination_port)
        reader = self._streams.get(key)
        if reader is None:
            reader = StreamReader(address, handle.destination_port)
            self._streams[key] = reader
        return reader.read_batch(timeout)

    def stop(self, address: str, timeout: float) -> None:
        self._request(address, "PUT", STOP_ENDPOINT, timeout)

    def close(self, address: str, timeout: float) -> None:
        try:
            self._request(address, "PUT", CLOSE_ENDPOINT, timeout)
        finally:
            self._close_streams(address)

    def _close_streams(self, address: str) -> None:
        for key in [k for k in self._streams if k[0] == address]:
            self._streams.pop(key).close()
