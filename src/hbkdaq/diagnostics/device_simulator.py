"""LAN-XI recorder simulator for testing without hardware.

This module provides a simulated recorder that implements:
- The REST recorder endpoints (module info, open, channel setup, start, stop, close)
- The framed TCP data stream on the destination port returned by open
- Keepalive (empty) messages and fault injection (failing endpoints, dropped stream)

The simulator can run standalone for manual testing or as a pytest fixture
for automated integration tests.
"""

import argparse
import json
import math
import socket
import threading
import time
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Optional, Sequence

import numpy as np

from hbkdaq.protocols.rest_client import (
    CHANNELS_ENDPOINT,
    CLOSE_ENDPOINT,
    MODULE_INFO_ENDPOINT,
    OPEN_ENDPOINT,
    START_ENDPOINT,
    STOP_ENDPOINT,
)
from hbkdaq.protocols.stream import build_stream_message


# Endpoint routing: (method, path) -> command name
ROUTES: dict[tuple[str, str], str] = {
    ("GET", MODULE_INFO_ENDPOINT): "discover",
    ("PUT", OPEN_ENDPOINT): "open",
    ("PUT", CHANNELS_ENDPOINT): "prepare",
    ("POST", START_ENDPOINT): "start",
    ("PUT", STOP_ENDPOINT): "stop",
    ("PUT", CLOSE_ENDPOINT): "close",
}


@dataclass
class FaultConfig:
    """Configuration for fault injection in the simulator."""

    # Command name -> HTTP status returned instead of success
    fail_commands: dict[str, int] = field(default_factory=dict)

    # Close the data stream after this many rows have been sent
    drop_stream_after_rows: Optional[int] = None


@dataclass
class SimulatorConfig:
    """Configuration for the recorder simulator."""

    # Network ports (0 = pick a free port)
    host: str = "127.0.0.1"
    http_port: int = 8080
    data_port: int = 0

    # Streaming settings
    sample_rate_hz: float = 1000.0
    batch_size: int = 4
    keepalive_every: int = 0
    interpretation: bool = True
    seed: Optional[int] = None

    # Module description
    channels: tuple[str, ...] = ("ch1", "ch2", "ch3", "ch4")
    module_type: str = "LAN-XI 3160-A-042"
    serial_number: str = "SIM-100001"

    # Signal generation
    signal_amplitude: float = 1.0
    signal_frequency_hz: float = 10.0
    noise_stddev: float = 0.01

    # Fault injection
    faults: FaultConfig = field(default_factory=FaultConfig)


@dataclass
class SimulatorState:
    """Mutable state for the simulator."""

    recorder_state: str = "idle"
    commands: list[str] = field(default_factory=list)
    channel_setup: dict[str, Any] = field(default_factory=dict)
    sample_index: int = 0
    rows_sent: int = 0
    running: bool = True


class DeviceSimulator:
    """Simulated LAN-XI recorder for testing.

    Example:
        >>> sim = DeviceSimulator(SimulatorConfig(http_port=0))
        >>> sim.start()
        >>> client = LanXiClient(http_port=sim.http_port)
        >>> # ... run tests ...
        >>> sim.stop()
    """

    def __init__(self, config: Optional[SimulatorConfig] = None) -> None:
        """Initialize the simulator.

        Args:
            config: Simulator configuration. Uses defaults if not provided.
        """
        self.config = config or SimulatorConfig()
        self.state = SimulatorState()
        self._lock = threading.Lock()
        self._rng = np.random.default_rng(self.config.seed)

        self._http_server: Optional[HTTPServer] = None
        self._data_socket: Optional[socket.socket] = None
        self._http_thread: Optional[threading.Thread] = None
        self._data_thread: Optional[threading.Thread] = None
        self._stream_threads: list[threading.Thread] = []

    @property
    def http_port(self) -> int:
        """Bound REST port."""
        if self._http_server is None:
            return self.config.http_port
        return self._http_server.server_address[1]

    @property
    def data_port(self) -> int:
        """Bound data stream port."""
        if self._data_socket is None:
            return self.config.data_port
        return self._data_socket.getsockname()[1]

    @property
    def recorder_state(self) -> str:
        with self._lock:
            return self.state.recorder_state

    @property
    def commands(self) -> list[str]:
        """Commands received so far, in order."""
        with self._lock:
            return list(self.state.commands)

    def module_info(self) -> dict[str, Any]:
        """Module descriptor served by the info endpoint."""
        return {
            "module": {
                "type": self.config.module_type,
                "serialNumber": self.config.serial_number,
            },
            "channels": [
                {"number": i + 1, "name": name, "enabled": True}
                for i, name in enumerate(self.config.channels)
            ],
        }

    def _generate_rows(self, count: int) -> tuple[list[list[float]], list[list[float]]]:
        """Generate ``count`` signal rows and matching interpretation rows."""
        rate = self.config.sample_rate_hz
        indices = np.arange(self.state.sample_index, self.state.sample_index + count)
        t = indices / rate
        phases = np.arange(len(self.config.channels)) * (2 * math.pi / max(1, len(self.config.channels)))
        values = self.config.signal_amplitude * np.sin(
            2 * math.pi * self.config.signal_frequency_hz * t[:, None] + phases[None, :]
        )
        values += self._rng.normal(0.0, self.config.noise_stddev, values.shape)

        signals = np.column_stack([t, values]).tolist()
        interpretation = np.column_stack([indices, np.zeros(count)]).tolist()
        self.state.sample_index += count
        return signals, interpretation

    def _build_batch(self, count: int) -> bytes:
        signals, interpretation = self._generate_rows(count)
        signal_variables = ["time", *self.config.channels]
        if not self.config.interpretation:
            return build_stream_message(signals, signal_variables)
        return build_stream_message(
            signals,
            signal_variables,
            interpretation,
            ["sample_index", "status"],
        )

    def _handle_command(self, command: str, body: Any) -> tuple[int, Any]:
        """Apply a REST command to the recorder state machine.

        Returns:
            (HTTP status, JSON reply body).
        """
        with self._lock:
            self.state.commands.append(command)

            failure = self.config.faults.fail_commands.get(command)
            if failure is not None:
                return failure, {"error": f"{command} failed (simulated)"}

            current = self.state.recorder_state
            if command == "discover":
                return 200, self.module_info()
            if command == "open":
                if current not in ("idle", "closed"):
                    return 409, {"error": f"recorder is {current}"}
                self.state.recorder_state = "open"
                return 200, {"destinationPort": self.data_port}
            if command == "prepare":
                if current != "open":
                    return 409, {"error": f"recorder is {current}"}
                self.state.channel_setup = dict(body or {})
                self.state.recorder_state = "prepared"
                return 200, {}
            if command == "start":
                if current != "prepared":
                    return 409, {"error": f"recorder is {current}"}
                self.state.sample_index = 0
                self.state.rows_sent = 0
                self.state.recorder_state = "recording"
                return 200, {}
            if command == "stop":
                if current != "recording":
                    return 409, {"error": f"recorder is {current}"}
                self.state.recorder_state = "stopped"
                return 200, {}
            # close is accepted in any state
            self.state.recorder_state = "closed"
            return 200, {}

    def _create_http_handler(self) -> type:
        """Create an HTTP request handler class bound to this simulator."""
        simulator = self

        class RecorderHandler(BaseHTTPRequestHandler):
            def log_message(self, format: str, *args: object) -> None:
                pass  # Suppress logging

            def _dispatch(self, method: str) -> None:
                command = ROUTES.get((method, self.path))
                if command is None:
                    self._reply(404, {"error": f"no route for {method} {self.path}"})
                    return

                length = int(self.headers.get("Content-Length") or 0)
                raw = self.rfile.read(length) if length else b""
                try:
                    body = json.loads(raw) if raw else None
                except json.JSONDecodeError:
                    self._reply(400, {"error": "invalid JSON"})
                    return

                status, reply = simulator._handle_command(command, body)
                self._reply(status, reply)

            def _reply(self, status: int, body: Any) -> None:
                payload = json.dumps(body).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

            def do_GET(self) -> None:
                self._dispatch("GET")

            def do_PUT(self) -> None:
                self._dispatch("PUT")

            def do_POST(self) -> None:
                self._dispatch("POST")

        return RecorderHandler

    def _handle_http(self) -> None:
        """Run the HTTP server."""
        if self._http_server is None:
            return

        self._http_server.timeout = 0.1
        while self.state.running:
            self._http_server.handle_request()

    def _stream_to_client(self, client_socket: socket.socket) -> None:
        """Push batches to a connected client while recording."""
        batch_size = max(1, self.config.batch_size)
        interval = batch_size / self.config.sample_rate_hz
        next_send = time.monotonic()
        batches_sent = 0
        faults = self.config.faults

        try:
            while self.state.running:
                with self._lock:
                    recording = self.state.recorder_state == "recording"
                    closed = self.state.recorder_state == "closed"
                if closed:
                    break
                if not recording:
                    time.sleep(0.005)
                    next_send = time.monotonic()
                    continue

                now = time.monotonic()
                if now < next_send:
                    time.sleep(max(0.0, next_send - now))
                    continue

                if self.config.keepalive_every and batches_sent % self.config.keepalive_every == 0:
                    client_socket.sendall(build_stream_message([], []))

                with self._lock:
                    message = self._build_batch(batch_size)
                    self.state.rows_sent += batch_size
                    rows_sent = self.state.rows_sent
                client_socket.sendall(message)
                batches_sent += 1
                next_send += interval

                if faults.drop_stream_after_rows is not None and rows_sent >= faults.drop_stream_after_rows:
                    break
        except OSError:
            pass
        finally:
            client_socket.close()

    def _handle_data(self) -> None:
        """Accept data stream connections."""
        if self._data_socket is None:
            return

        self._data_socket.settimeout(0.1)

        while self.state.running:
            try:
                client_socket, _ = self._data_socket.accept()
            except socket.timeout:
                continue
            except OSError:
                break

            thread = threading.Thread(target=self._stream_to_client, args=(client_socket,), daemon=True)
            thread.start()
            self._stream_threads.append(thread)

    def start(self) -> None:
        """Start the simulator."""
        self.state.running = True

        self._data_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._data_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._data_socket.bind((self.config.host, self.config.data_port))
        self._data_socket.listen(5)
        self._data_thread = threading.Thread(target=self._handle_data, daemon=True)
        self._data_thread.start()

        handler_class = self._create_http_handler()
        self._http_server = HTTPServer((self.config.host, self.config.http_port), handler_class)
        self._http_thread = threading.Thread(target=self._handle_http, daemon=True)
        self._http_thread.start()

    def stop(self) -> None:
        """Stop the simulator."""
        self.state.running = False

        if self._http_thread and self._http_thread.is_alive():
            self._http_thread.join(timeout=1.0)
        if self._data_thread and self._data_thread.is_alive():
            self._data_thread.join(timeout=1.0)
        for thread in self._stream_threads:
            thread.join(timeout=1.0)
        self._stream_threads.clear()

        if self._data_socket:
            self._data_socket.close()
            self._data_socket = None
        if self._http_server:
            self._http_server.server_close()
            self._http_server = None

    def __enter__(self) -> "DeviceSimulator":
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Context manager exit."""
        self.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="LAN-XI recorder simulator for testing",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    add_simulator_arguments(parser)
    return parser


def add_simulator_arguments(parser: argparse.ArgumentParser) -> None:
    """Add simulator options to a parser."""
    parser.add_argument("--host", default="127.0.0.1", help="Address to bind")
    parser.add_argument("--http-port", type=int, default=8080, help="REST port")
    parser.add_argument("--data-port", type=int, default=0, help="Data stream port (0 = any free port)")
    parser.add_argument("--rate", type=float, default=1000.0, help="Sample rate in Hz")
    parser.add_argument("--batch-size", type=int, default=4, help="Rows per stream message")
    parser.add_argument("--keepalive-every", type=int, default=0, help="Send an empty message every N batches")
    parser.add_argument("--no-interpretation", action="store_true", help="Stream signals only")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for deterministic output")
    parser.add_argument(
        "--fail",
        action="append",
        default=[],
        metavar="COMMAND=STATUS",
        help="Fail a command with an HTTP status, e.g. start=500",
    )


def config_from_args(args: argparse.Namespace) -> SimulatorConfig:
    """Build a SimulatorConfig from parsed arguments.

    Raises:
        ValueError: If a --fail option is malformed.
    """
    fail_commands: dict[str, int] = {}
    for item in args.fail:
        command, sep, status = item.partition("=")
        if not sep or command not in ROUTES.values() or not status.isdigit():
            raise ValueError(f"invalid --fail value {item!r}, expected COMMAND=STATUS")
        fail_commands[command] = int(status)

    return SimulatorConfig(
        host=args.host,
        http_port=args.http_port,
        data_port=args.data_port,
        sample_rate_hz=args.rate,
        batch_size=args.batch_size,
        keepalive_every=args.keepalive_every,
        interpretation=not args.no_interpretation,
        seed=args.seed,
        faults=FaultConfig(fail_commands=fail_commands),
    )


def run(config: SimulatorConfig) -> int:
    """Run the simulator until interrupted."""
    with DeviceSimulator(config) as sim:
        print("Starting recorder simulator...")
        print(f"  REST port:   {sim.http_port}")
        print(f"  Data port:   {sim.data_port}")
        print(f"  Sample rate: {config.sample_rate_hz} Hz")
        if config.faults.fail_commands:
            print("  Faults enabled:")
            for command, status in config.faults.fail_commands.items():
                print(f"    {command}: HTTP {status}")
        print()
        print("Press Ctrl+C to stop.")
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            print("\nStopping simulator...")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the recorder simulator as a standalone application."""
    args = build_parser().parse_args(argv)
    return run(config_from_args(args))


if __name__ == "__main__":
    raise SystemExit(main())
