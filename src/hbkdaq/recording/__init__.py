"""Acquisition file output."""

from hbkdaq.recording.filename import DEFAULT_PREFIX, generate_filename, generate_filepath
from hbkdaq.recording.writer import describe_file, format_summary, load_result, write_result

__all__ = [
    "DEFAULT_PREFIX",
    "describe_file",
    "format_summary",
    "generate_filename",
    "generate_filepath",
    "load_result",
    "write_result",
]
