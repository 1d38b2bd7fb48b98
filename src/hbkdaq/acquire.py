"""Request-level acquisition: run a session and persist the result."""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from hbkdaq.acquisition.buffer import BackoffPolicy
from hbkdaq.acquisition.session import SessionController
from hbkdaq.config.settings import AcquisitionSettings
from hbkdaq.models import AcquisitionResult, ChannelConfiguration, ModuleInfo
from hbkdaq.protocols.device_client import DeviceClient
from hbkdaq.protocols.rest_client import LanXiClient
from hbkdaq.recording.writer import format_summary, write_result

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AcquisitionReport:
    """Outcome of one acquisition request."""

    result: AcquisitionResult
    module_info: ModuleInfo
    file_path: Path


def build_controller(settings: AcquisitionSettings, client: Optional[DeviceClient] = None) -> SessionController:
    """Create a session controller configured from settings."""
    settings.validate()
    return SessionController(
        client or LanXiClient(http_port=settings.http_port),
        timeout=settings.timeout_s,
        backoff=BackoffPolicy(
            initial_s=settings.poll_backoff_initial_s,
            max_s=settings.poll_backoff_max_s,
        ),
        acquisition_timeout=settings.acquisition_timeout_s,
    )


def run_request(
    address: str,
    frequency: float,
    duration: float,
    save_directory: Path | str,
    *,
    client: Optional[DeviceClient] = None,
    settings: Optional[AcquisitionSettings] = None,
    cancel: Optional[threading.Event] = None,
) -> AcquisitionReport:
    """Acquire from a device and write the result to ``save_directory``.

    The device session is closed before anything is written, so a
    PersistenceError never leaves the recorder open.

    Raises:
        ValueError: If frequency or duration is not positive.
        SessionError: If a lifecycle phase fails.
        PersistenceError: If the file cannot be written.
    """
    settings = settings or AcquisitionSettings()
    config = ChannelConfiguration(frequency=frequency, duration=duration)
    controller = build_controller(settings, client)

    result = controller.run_acquisition(address, config, cancel=cancel)
    path = write_result(result, save_directory, prefix=settings.filename_prefix)

    for line in format_summary(path, result):
        logger.info(line)
    return AcquisitionReport(result=result, module_info=result.module_info, file_path=path)


def acquire(
    address: str,
    frequency: float,
    duration: float,
    save_directory: Path | str,
    *,
    client: Optional[DeviceClient] = None,
    settings: Optional[AcquisitionSettings] = None,
    cancel: Optional[threading.Event] = None,
) -> tuple[AcquisitionResult, ModuleInfo]:
    """Acquire from a device, save an HDF5 file and return the data.

    Args:
        address: Device IP address (e.g. "169.254.230.53").
        frequency: Sample rate in Hz.
        duration: Acquisition length in seconds.
        save_directory: Directory for the output file, created if absent.
        client: Device client. Defaults to a LanXiClient.
        settings: Timeouts, polling and filename options.
        cancel: Optional event that aborts the acquisition when set.

    Returns:
        The acquisition result and the device's module info.
    """
    report = run_request(
        address,
        frequency,
        duration,
        save_directory,
        client=client,
        settings=settings,
        cancel=cancel,
    )
    return report.result, report.module_info
