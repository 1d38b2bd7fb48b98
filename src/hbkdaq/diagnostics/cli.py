"""Command-line interface for acquisition and diagnostics.

This module provides CLI commands for:
- Running a timed acquisition and saving it to HDF5
- Printing a device's module information
- Inspecting a saved acquisition file
- Running the recorder simulator
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from hbkdaq.acquire import run_request
from hbkdaq.config.settings import SettingsStore
from hbkdaq.diagnostics import device_simulator
from hbkdaq.errors import HbkError
from hbkdaq.protocols.rest_client import LanXiClient
from hbkdaq.recording.writer import describe_file, load_result

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname)s [hbkdaq]: %(message)s"


def configure_logging(level: str) -> None:
    """Configure root logging for CLI use."""
    logging.basicConfig(format=LOG_FORMAT, level=getattr(logging, level.upper(), logging.INFO))


def cmd_acquire(args: argparse.Namespace) -> int:
    """Run one acquisition and save it to a file."""
    store = SettingsStore(Path(args.settings)) if args.settings else SettingsStore()
    settings = store.load()

    if args.timeout is not None:
        settings.timeout_s = args.timeout
    if args.http_port is not None:
        settings.http_port = args.http_port
    if args.prefix is not None:
        settings.filename_prefix = args.prefix
    out = args.out or settings.save_directory

    print(f"Acquiring {args.duration} s at {args.frequency} Hz from {args.ip}...")
    report = run_request(args.ip, args.frequency, args.duration, out, settings=settings)

    print(f"Samples: {report.result.sample_count}")
    print(f"File:    {report.file_path}")

    settings.last_address = args.ip
    settings.save_directory = str(Path(out).resolve())
    try:
        store.save(settings)
    except OSError as e:
        logger.warning("Could not save settings to %s: %s", store.path, e)
    return 0


def cmd_info(args: argparse.Namespace) -> int:
    """Print the module information reported by a device."""
    client = LanXiClient(http_port=args.http_port)
    info = client.discover_modules(args.ip, args.timeout)
    print(json.dumps(info.as_dict(), indent=2, sort_keys=True))
    return 0


def cmd_inspect(args: argparse.Namespace) -> int:
    """Print the datasets and metadata of an acquisition file."""
    path = Path(args.file)
    result = load_result(path)
    info = result.acquisition_info

    print(f"File: {path}")
    for name, shape, dtype in describe_file(path):
        print(f"  {name:<34} {str(shape):<12} {dtype}")
    print()
    print(f"Address:   {info.address}")
    print(f"Frequency: {info.frequency} Hz")
    print(f"Duration:  {info.duration} s")
    print(f"Started:   {info.timestamp.isoformat()}")
    print(f"Samples:   {result.sample_count}")
    print(f"Signals:   {', '.join(result.signal_variables) or '-'}")
    if result.has_interpretation:
        print(f"Interpretation: {', '.join(result.interpretation_variables)}")
    return 0


def cmd_simulate(args: argparse.Namespace) -> int:
    """Run the recorder simulator."""
    return device_simulator.run(device_simulator.config_from_args(args))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hbkdaq",
        description="HBK LAN-XI data acquisition",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging verbosity",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # acquire command
    acquire_parser = subparsers.add_parser(
        "acquire",
        help="Record data from a device to an HDF5 file",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    acquire_parser.add_argument("--ip", required=True, help="Device IP address")
    acquire_parser.add_argument("--frequency", type=float, required=True, help="Sample rate in Hz")
    acquire_parser.add_argument("--duration", type=float, required=True, help="Acquisition length in seconds")
    acquire_parser.add_argument(
        "--out",
        default=None,
        help="Output directory (default: saved setting or user data directory)",
    )
    acquire_parser.add_argument("--timeout", type=float, default=None, help="Per-operation timeout in seconds")
    acquire_parser.add_argument("--http-port", type=int, default=None, help="Device REST port")
    acquire_parser.add_argument("--prefix", default=None, help="Filename prefix")
    acquire_parser.add_argument("--settings", default=None, help="Settings file path")
    acquire_parser.set_defaults(func=cmd_acquire)

    # info command
    info_parser = subparsers.add_parser(
        "info",
        help="Print module information from a device",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    info_parser.add_argument("--ip", required=True, help="Device IP address")
    info_parser.add_argument("--http-port", type=int, default=80, help="Device REST port")
    info_parser.add_argument("--timeout", type=float, default=5.0, help="Request timeout in seconds")
    info_parser.set_defaults(func=cmd_info)

    # inspect command
    inspect_parser = subparsers.add_parser("inspect", help="Describe a saved acquisition file")
    inspect_parser.add_argument("file", help="HDF5 file written by 'acquire'")
    inspect_parser.set_defaults(func=cmd_inspect)

    # simulate command
    sim_parser = subparsers.add_parser(
        "simulate",
        help="Run the recorder simulator",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    device_simulator.add_simulator_arguments(sim_parser)
    sim_parser.set_defaults(func=cmd_simulate)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    configure_logging(args.log_level)
    try:
        return args.func(args)
    except HbkError as e:
        print(f"Error [{e.code}]: {e.user_message()}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
