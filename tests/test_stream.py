"""Tests for the framed data stream."""

import json
import socket
import struct
import threading

import numpy as np
import pytest

from hbkdaq.errors import (
    ConnectionRefusedError,
    ConnectionTimeoutError,
    InvalidHeaderError,
    MalformedMessageError,
    MessageParseError,
    NetworkDisconnectError,
)
from hbkdaq.protocols.stream import (
    HEADER_SIZE,
    MAX_PAYLOAD_SIZE,
    STREAM_MAGIC,
    StreamReader,
    build_stream_message,
    parse_stream_header,
    parse_stream_payload,
)


class TestBuildStreamMessage:
    def test_header(self) -> None:
        message = build_stream_message([[0.0, 1.0]], ["time", "ch1"])
        magic, length = struct.unpack(">4sI", message[:HEADER_SIZE])
        assert magic == STREAM_MAGIC
        assert length == len(message) - HEADER_SIZE

    def test_payload_fields(self) -> None:
        message = build_stream_message([[0.0, 1.0]], ["time", "ch1"], [[2.0]], ["scale"])
        document = json.loads(message[HEADER_SIZE:])
        assert document == {
            "signal_variables": ["time", "ch1"],
            "signals": [[0.0, 1.0]],
            "interpretation_variables": ["scale"],
            "interpretation": [[2.0]],
        }


class TestParseStreamHeader:
    def test_valid(self) -> None:
        assert parse_stream_header(struct.pack(">4sI", b"HBKS", 42)) == 42

    def test_wrong_size(self) -> None:
        with pytest.raises(MalformedMessageError):
            parse_stream_header(b"HBKS")

    def test_wrong_magic(self) -> None:
        with pytest.raises(InvalidHeaderError):
            parse_stream_header(struct.pack(">4sI", b"XXXX", 1))

    def test_oversized_payload(self) -> None:
        with pytest.raises(MalformedMessageError):
            parse_stream_header(struct.pack(">4sI", b"HBKS", MAX_PAYLOAD_SIZE + 1))


class TestParseStreamPayload:
    """Tests for payload decoding."""

    def test_batch(self) -> None:
        message = build_stream_message(
            [[0.0, 1.0], [0.001, 2.0]], ["time", "ch1"], [[5.0], [6.0]], ["scale"]
        )
        batch = parse_stream_payload(message[HEADER_SIZE:])

        assert batch.row_count == 2
        assert batch.signal_variables == ("time", "ch1")
        assert batch.interpretation_variables == ("scale",)
        np.testing.assert_array_equal(batch.interpretation[:, 0], [5.0, 6.0])

    def test_without_interpretation(self) -> None:
        message = build_stream_message([[0.0, 1.0]], ["time", "ch1"])
        batch = parse_stream_payload(message[HEADER_SIZE:])
        assert batch.interpretation.shape == (1, 0)

    def test_keepalive_is_empty_batch(self) -> None:
        batch = parse_stream_payload(build_stream_message([], [])[HEADER_SIZE:])
        assert batch.is_empty

    def test_invalid_json(self) -> None:
        with pytest.raises(MessageParseError):
            parse_stream_payload(b"{not json")

    def test_non_object(self) -> None:
        with pytest.raises(MessageParseError):
            parse_stream_payload(b"[1, 2]")

    def test_field_not_list(self) -> None:
        with pytest.raises(MessageParseError, match="signals"):
            parse_stream_payload(b'{"signals": 5}')

    def test_misaligned_rows(self) -> None:
        payload = json.dumps(
            {
                "signal_variables": ["a"],
                "signals": [[1.0], [2.0]],
                "interpretation_variables": ["b"],
                "interpretation": [[1.0]],
            }
        ).encode()
        with pytest.raises(MessageParseError):
            parse_stream_payload(payload)

    def test_non_numeric_values(self) -> None:
        payload = json.dumps({"signal_variables": ["a"], "signals": [["x"]]}).encode()
        with pytest.raises(MessageParseError):
            parse_stream_payload(payload)


class _OneShotServer:
    """TCP server that sends fixed bytes to its first client, then closes."""

    def __init__(self, data: bytes, hold_open: bool = False) -> None:
        self.data = data
        self.hold_open = hold_open
        self.release = threading.Event()
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(1)
        self.port = self.sock.getsockname()[1]
        self.thread = threading.Thread(target=self._serve, daemon=True)
        self.thread.start()

    def _serve(self) -> None:
        conn, _ = self.sock.accept()
        with conn:
            conn.sendall(self.data)
            if self.hold_open:
                self.release.wait(2.0)

    def close(self) -> None:
        self.release.set()
        self.thread.join(timeout=2.0)
        self.sock.close()


class TestStreamReader:
    """Tests for StreamReader against a local socket."""

    def test_reads_batches_in_order(self) -> None:
        data = (
            build_stream_message([[0.0], [1.0]], ["t"])
            + build_stream_message([], [])
            + build_stream_message([[2.0]], ["t"])
        )
        server = _OneShotServer(data)
        try:
            with StreamReader("127.0.0.1", server.port) as reader:
                first = reader.read_batch(timeout=2.0)
                keepalive = reader.read_batch(timeout=2.0)
                second = reader.read_batch(timeout=2.0)
        finally:
            server.close()

        assert first.row_count == 2
        assert keepalive.is_empty
        assert second.signals[0, 0] == 2.0

    def test_zero_length_payload(self) -> None:
        server = _OneShotServer(struct.pack(">4sI", STREAM_MAGIC, 0))
        try:
            with StreamReader("127.0.0.1", server.port) as reader:
                assert reader.read_batch(timeout=2.0).is_empty
        finally:
            server.close()

    def test_disconnect(self) -> None:
        server = _OneShotServer(b"")
        try:
            with StreamReader("127.0.0.1", server.port) as reader:
                with pytest.raises(NetworkDisconnectError):
                    reader.read_batch(timeout=2.0)
        finally:
            server.close()

    def test_truncated_payload(self) -> None:
        message = build_stream_message([[1.0]], ["t"])
        server = _OneShotServer(message[:-3])
        try:
            with StreamReader("127.0.0.1", server.port) as reader:
                with pytest.raises(NetworkDisconnectError):
                    reader.read_batch(timeout=2.0)
        finally:
            server.close()

    def test_timeout(self) -> None:
        server = _OneShotServer(b"", hold_open=True)
        try:
            with StreamReader("127.0.0.1", server.port) as reader:
                with pytest.raises(ConnectionTimeoutError):
                    reader.read_batch(timeout=0.1)
        finally:
            server.close()

    def test_connection_refused(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("127.0.0.1", 0))
            port = s.getsockname()[1]
        reader = StreamReader("127.0.0.1", port)
        with pytest.raises(ConnectionRefusedError):
            reader.read_batch(timeout=1.0)
        assert not reader.is_connected

    def test_close_is_idempotent(self) -> None:
        reader = StreamReader("127.0.0.1", 1)
        reader.close()
        reader.close()
        assert not reader.is_connected
