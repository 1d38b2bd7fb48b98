"""Acquisition settings storage.

Settings are stored as JSON in the OS user config directory via platformdirs,
using atomic writes (temp file + rename) to prevent corruption.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import platformdirs


# Settings format version for migrations
SETTINGS_VERSION = 1

# App name for platformdirs
APP_NAME = "hbkdaq"


def default_save_directory() -> str:
    """Return the OS-specific default directory for acquisition files."""
    return str(Path(platformdirs.user_data_dir(APP_NAME)) / "recordings")


@dataclass
class AcquisitionSettings:
    """Persistent defaults for acquisitions."""

    # Metadata
    settings_version: int = SETTINGS_VERSION
    last_updated_utc: str = ""

    # Connection
    last_address: str = ""
    http_port: int = 80
    timeout_s: float = 60.0

    # Polling
    poll_backoff_initial_s: float = 0.001
    poll_backoff_max_s: float = 0.05
    acquisition_timeout_s: float | None = None

    # Output
    save_directory: str = ""
    filename_prefix: str = "hbk_data"

    def __post_init__(self) -> None:
        if not self.save_directory:
            self.save_directory = default_save_directory()

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ValueError: If any value is out of range.
        """
        if self.timeout_s <= 0:
            raise ValueError(f"timeout_s must be positive, got {self.timeout_s}")
        if not 0 < self.http_port < 65536:
            raise ValueError(f"http_port must be a valid TCP port, got {self.http_port}")
        if self.poll_backoff_initial_s < 0 or self.poll_backoff_max_s < self.poll_backoff_initial_s:
            raise ValueError("poll backoff must satisfy 0 <= initial <= max")
        if self.acquisition_timeout_s is not None and self.acquisition_timeout_s <= 0:
            raise ValueError(f"acquisition_timeout_s must be positive, got {self.acquisition_timeout_s}")


def get_settings_dir() -> Path:
    """Return the OS-specific user config directory for hbkdaq."""
    return Path(platformdirs.user_config_dir(APP_NAME))


def get_settings_path() -> Path:
    """Return the full path to the settings.json file."""
    return get_settings_dir() / "settings.json"


class SettingsStore:
    """Handles loading and saving settings with atomic writes.

    Example usage:
        store = SettingsStore()
        settings = store.load()
        settings.last_address = "169.254.230.53"
        store.save(settings)
    """

    def __init__(self, settings_path: Path | None = None) -> None:
        """Initialize the settings store.

        Args:
            settings_path: Custom path for the settings file. If None, uses
                the default OS config directory location.
        """
        self._path = settings_path or get_settings_path()

    @property
    def path(self) -> Path:
        """Return the settings file path."""
        return self._path

    def load(self) -> AcquisitionSettings:
        """Load settings from disk.

        Returns:
            AcquisitionSettings with values from disk, or defaults if the file
            doesn't exist or is invalid.
        """
        if not self._path.exists():
            return AcquisitionSettings()

        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
            return self._from_dict(data)
        except (json.JSONDecodeError, OSError, TypeError, ValueError):
            return AcquisitionSettings()

    def save(self, settings: AcquisitionSettings) -> None:
        """Save settings to disk using atomic write.

        Args:
            settings: The settings to save.

        Raises:
            OSError: If the directory cannot be created or write fails.
        """
        settings.last_updated_utc = datetime.now(timezone.utc).isoformat()
        settings.settings_version = SETTINGS_VERSION

        self._path.parent.mkdir(parents=True, exist_ok=True)

        content = json.dumps(asdict(settings), indent=2, ensure_ascii=False)

        tmp_path: str | None = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                suffix=".tmp",
                prefix="settings_",
                dir=self._path.parent,
            )
            try:
                os.write(fd, content.encode("utf-8"))
                os.fsync(fd)
            finally:
                os.close(fd)

            os.replace(tmp_path, self._path)
        except BaseException:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
            raise

    def _from_dict(self, data: dict[str, Any]) -> AcquisitionSettings:
        """Convert a dictionary to AcquisitionSettings.

        Unknown keys are ignored, missing keys use defaults.
        """
        if not isinstance(data, dict):
            raise ValueError("settings file must contain a JSON object")
        valid_fields = set(AcquisitionSettings.__dataclass_fields__)
        kwargs = {key: value for key, value in data.items() if key in valid_fields}
        settings = AcquisitionSettings(**kwargs)
        settings.validate()
        return settings
