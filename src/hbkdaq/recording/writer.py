"""HDF5 persistence of acquisition results.

File layout (group/dataset paths):

    /data/signals                   2D float array, rows = samples, cols = channels
    /data/signal_variables          signal column names
    /data/interpretation            2D float array aligned with /data/signals
    /data/interpretation_variables  interpretation column names
    /metadata/frequency             scalar, Hz
    /metadata/duration              scalar, seconds
    /metadata/ip_address            string
    /metadata/timestamp             string, ISO-8601 acquisition start time
    /channel_info/module            string, JSON-encoded module info

The interpretation datasets are omitted when no interpretation values were
produced. Files are created exclusively; an existing file is never
overwritten. Filenames carry the start time to the second, so a second
acquisition started within the same second into the same directory and
prefix fails with ``OutputExistsError`` after its session has already
finished. A failure part-way through writing can leave a partial file
behind, which is not removed.
"""

import errno
import logging
from datetime import datetime
from pathlib import Path
from typing import Sequence

import h5py
import numpy as np

from hbkdaq.errors import (
    DirectoryNotWritableError,
    DiskFullError,
    FileReadError,
    FileWriteError,
    OutputExistsError,
    PersistenceError,
)
from hbkdaq.models import AcquisitionInfo, AcquisitionResult, ModuleInfo
from hbkdaq.recording.filename import DEFAULT_PREFIX, generate_filepath

logger = logging.getLogger(__name__)

FILE_VERSION = "1.0"
SOFTWARE = "hbkdaq"

_STRING_DTYPE = h5py.string_dtype(encoding="utf-8")

_NOT_WRITABLE_ERRNOS = {errno.EACCES, errno.EPERM, errno.EROFS}


def _persistence_error(path: Path, exc: OSError) -> PersistenceError:
    """Map an OSError from the filesystem or HDF5 to a PersistenceError."""
    if exc.errno == errno.ENOSPC:
        return DiskFullError(str(path), exc)
    if isinstance(exc, PermissionError) or exc.errno in _NOT_WRITABLE_ERRNOS:
        return DirectoryNotWritableError(str(path.parent), exc)
    if isinstance(exc, FileExistsError) or exc.errno == errno.EEXIST:
        return OutputExistsError(str(path), exc)
    return FileWriteError(str(path), str(exc), exc)


def ensure_directory(directory: Path) -> Path:
    """Create ``directory`` and its parents if needed.

    Raises:
        OutputExistsError: If the path exists but is not a directory.
        DirectoryNotWritableError: If the directory cannot be created.
        PersistenceError: For other filesystem failures.
    """
    if directory.exists() and not directory.is_dir():
        raise OutputExistsError(str(directory))
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except FileExistsError as e:
        raise OutputExistsError(str(directory), e) from e
    except PermissionError as e:
        raise DirectoryNotWritableError(str(directory), e) from e
    except OSError as e:
        raise _persistence_error(directory / "_", e) from e
    return directory


def _write_strings(group: h5py.Group, name: str, values: Sequence[str]) -> None:
    ds = group.create_dataset(name, shape=(len(values),), dtype=_STRING_DTYPE)
    if values:
        ds[...] = list(values)


def _write_layout(f: h5py.File, result: AcquisitionResult) -> None:
    info = result.acquisition_info

    f.attrs["file_version"] = FILE_VERSION
    f.attrs["software"] = SOFTWARE

    data = f.create_group("data")
    data.create_dataset("signals", data=np.asarray(result.signals, dtype=np.float64))
    _write_strings(data, "signal_variables", result.signal_variables)
    if result.has_interpretation:
        data.create_dataset("interpretation", data=np.asarray(result.interpretation, dtype=np.float64))
        _write_strings(data, "interpretation_variables", result.interpretation_variables)

    metadata = f.create_group("metadata")
    metadata.create_dataset("frequency", data=float(info.frequency))
    metadata.create_dataset("duration", data=float(info.duration))
    metadata.create_dataset("ip_address", data=info.address, dtype=_STRING_DTYPE)
    metadata.create_dataset("timestamp", data=info.timestamp.isoformat(), dtype=_STRING_DTYPE)

    channel_info = f.create_group("channel_info")
    channel_info.create_dataset("module", data=result.module_info.to_json(), dtype=_STRING_DTYPE)


def write_result(
    result: AcquisitionResult,
    directory: Path | str,
    prefix: str = DEFAULT_PREFIX,
) -> Path:
    """Write an acquisition result to a new HDF5 file.

    Args:
        result: The packaged acquisition.
        directory: Output directory, created if absent.
        prefix: Filename prefix.

    Returns:
        Path of the written file.

    Raises:
        PersistenceError: On any storage fault.
    """
    directory = ensure_directory(Path(directory))
    path = generate_filepath(directory, result.acquisition_info.timestamp, prefix=prefix)
    if path.exists():
        raise OutputExistsError(str(path))

    try:
        with h5py.File(path, "w-") as f:
            _write_layout(f, result)
    except OSError as e:
        raise _persistence_error(path, e) from e

    logger.info("Wrote %d samples to %s", result.sample_count, path)
    return path


def _read_string(ds: h5py.Dataset) -> str:
    return str(ds.asstr()[()])


def _read_strings(ds: h5py.Dataset) -> tuple[str, ...]:
    if ds.shape == (0,):
        return ()
    return tuple(str(v) for v in ds.asstr()[()])


def load_result(path: Path | str) -> AcquisitionResult:
    """Read an acquisition file written by ``write_result``.

    Raises:
        FileReadError: If the file cannot be opened or lacks required datasets.
    """
    path = Path(path)
    try:
        with h5py.File(path, "r") as f:
            signals = np.asarray(f["data/signals"][()], dtype=np.float64)
            signal_variables = _read_strings(f["data/signal_variables"])
            if "interpretation" in f["data"]:
                interpretation = np.asarray(f["data/interpretation"][()], dtype=np.float64)
                interpretation_variables = _read_strings(f["data/interpretation_variables"])
            else:
                interpretation = np.empty((signals.shape[0], 0), dtype=np.float64)
                interpretation_variables = ()
            info = AcquisitionInfo(
                frequency=float(f["metadata/frequency"][()]),
                duration=float(f["metadata/duration"][()]),
                timestamp=datetime.fromisoformat(_read_string(f["metadata/timestamp"])),
                address=_read_string(f["metadata/ip_address"]),
            )
            module_info = ModuleInfo.from_json(_read_string(f["channel_info/module"]))
    except KeyError as e:
        raise FileReadError(str(path), f"missing dataset: {e}", e) from e
    except (OSError, ValueError) as e:
        raise FileReadError(str(path), str(e), e) from e

    signals.flags.writeable = False
    interpretation.flags.writeable = False
    return AcquisitionResult(
        signals=signals,
        signal_variables=signal_variables,
        interpretation=interpretation,
        interpretation_variables=interpretation_variables,
        acquisition_info=info,
        module_info=module_info,
    )


def describe_file(path: Path | str) -> list[tuple[str, tuple[int, ...], str]]:
    """List every dataset in a file as (name, shape, dtype).

    Raises:
        FileReadError: If the file cannot be opened.
    """
    entries: list[tuple[str, tuple[int, ...], str]] = []

    def visit(name: str, obj: object) -> None:
        if isinstance(obj, h5py.Dataset):
            entries.append(("/" + name, tuple(obj.shape), str(obj.dtype)))

    try:
        with h5py.File(Path(path), "r") as f:
            f.visititems(visit)
    except OSError as e:
        raise FileReadError(str(path), str(e), e) from e
    return entries


def format_summary(path: Path, result: AcquisitionResult) -> list[str]:
    """Human-readable completion summary for a written file."""
    lines = [
        f"Data saved to: {path}",
        "HDF5 structure:",
        f"/data/signals - Main signal data ({result.sample_count} rows)",
        "/data/signal_variables - Signal variable names",
    ]
    if result.has_interpretation:
        lines.append("/data/interpretation - Signal interpretation data")
        lines.append("/data/interpretation_variables - Interpretation variable names")
    lines.append("/metadata/* - Acquisition parameters and metadata")
    lines.append("/channel_info/* - Channel and module information")
    return lines
