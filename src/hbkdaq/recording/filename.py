"""Filename generation for acquisition files.

Files are named after the acquisition timestamp with second resolution and
an optional filesystem-safe prefix: ``{prefix_}YYYYMMDD_HHMMSS.h5``.
"""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path


DEFAULT_PREFIX = "hbk_data"
DEFAULT_EXTENSION = "h5"

# Characters to strip from prefix (reserved on Windows and generally problematic)
_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f ]')

# Anything that isn't alphanumeric, so the extension can't traverse paths
_UNSAFE_EXTENSION_CHARS = re.compile(r"[^a-zA-Z0-9]")


def sanitize_prefix(prefix: str) -> str:
    """Sanitize a filename prefix for filesystem safety.

    Args:
        prefix: User-provided filename prefix.

    Returns:
        Sanitized prefix safe for use in filenames, possibly empty.
    """
    if not prefix:
        return ""

    sanitized = _UNSAFE_CHARS.sub("", prefix)

    # Collapse multiple underscores/hyphens
    sanitized = re.sub(r"[_\-]{2,}", "_", sanitized)

    # Leading/trailing dots are problematic on some systems
    sanitized = sanitized.strip(" .")

    return sanitized


def sanitize_extension(extension: str) -> str:
    """Strip an extension down to alphanumeric characters."""
    return _UNSAFE_EXTENSION_CHARS.sub("", extension.lstrip("."))


def generate_filename(
    timestamp: datetime,
    prefix: str = DEFAULT_PREFIX,
    extension: str = DEFAULT_EXTENSION,
) -> str:
    """Generate a timestamped filename.

    Args:
        timestamp: Acquisition timestamp. Only whole seconds are used.
        prefix: Optional prefix, sanitized for filesystem safety.
        extension: File extension without the dot.

    Returns:
        Generated filename string.

    Raises:
        ValueError: If the extension is empty after sanitization.
    """
    ext = sanitize_extension(extension)
    if not ext:
        raise ValueError("Extension cannot be empty")

    parts = []
    safe_prefix = sanitize_prefix(prefix)
    if safe_prefix:
        parts.append(safe_prefix)
    parts.append(timestamp.strftime("%Y%m%d_%H%M%S"))

    return "_".join(parts) + "." + ext


def generate_filepath(
    output_directory: Path | str,
    timestamp: datetime,
    prefix: str = DEFAULT_PREFIX,
    extension: str = DEFAULT_EXTENSION,
) -> Path:
    """Generate the full output path for an acquisition file.

    Raises:
        ValueError: If the extension is empty after sanitization.
    """
    return Path(output_directory) / generate_filename(timestamp, prefix=prefix, extension=extension)
