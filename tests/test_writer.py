"""Tests for HDF5 persistence."""

import json
import os
from datetime import datetime, timezone
from pathlib import Path

import h5py
import numpy as np
import pytest

from fakes import make_batches
from hbkdaq.acquisition.buffer import AcquisitionBuffer
from hbkdaq.acquisition.dataset import package_result
from hbkdaq.errors import (
    DirectoryNotWritableError,
    FileReadError,
    OutputExistsError,
    PersistenceError,
)
from hbkdaq.models import AcquisitionResult, ChannelConfiguration, ModuleInfo
from hbkdaq.recording.writer import (
    FILE_VERSION,
    describe_file,
    ensure_directory,
    format_summary,
    load_result,
    write_result,
)

TIMESTAMP = datetime(2024, 3, 5, 14, 30, 15, tzinfo=timezone.utc)
MODULE = {"module": {"type": "3160", "serialNumber": "S1"}, "channels": [{"number": 1}]}


def make_result(interpretation: bool = True, module: dict | None = None) -> AcquisitionResult:
    buffer = AcquisitionBuffer()
    for batch in make_batches(4, 4, 4, interpretation=interpretation):
        buffer.append(batch)
    return package_result(
        buffer,
        ChannelConfiguration(frequency=1000, duration=0.01),
        "169.254.230.53",
        ModuleInfo(MODULE if module is None else module),
        TIMESTAMP,
    )


class TestWriteResult:
    """Tests for the file layout."""

    def test_filename_from_timestamp(self, tmp_path: Path) -> None:
        path = write_result(make_result(), tmp_path)
        assert path == tmp_path / "hbk_data_20240305_143015.h5"
        assert path.exists()

    def test_custom_prefix(self, tmp_path: Path) -> None:
        path = write_result(make_result(), tmp_path, prefix="run")
        assert path.name == "run_20240305_143015.h5"

    def test_layout(self, tmp_path: Path) -> None:
        result = make_result()
        path = write_result(result, tmp_path)

        with h5py.File(path, "r") as f:
            assert f.attrs["file_version"] == FILE_VERSION
            np.testing.assert_array_equal(f["data/signals"][()], result.signals)
            assert list(f["data/signal_variables"].asstr()[()]) == ["time", "ch1", "ch2"]
            np.testing.assert_array_equal(f["data/interpretation"][()], result.interpretation)
            assert list(f["data/interpretation_variables"].asstr()[()]) == ["sample_index", "status"]
            assert f["metadata/frequency"][()] == 1000.0
            assert f["metadata/duration"][()] == 0.01
            assert f["metadata/ip_address"].asstr()[()] == "169.254.230.53"
            assert f["metadata/timestamp"].asstr()[()] == "2024-03-05T14:30:15+00:00"
            assert json.loads(f["channel_info/module"].asstr()[()]) == MODULE

    def test_signal_and_interpretation_rows_align(self, tmp_path: Path) -> None:
        path = write_result(make_result(), tmp_path)
        with h5py.File(path, "r") as f:
            assert f["data/signals"].shape[0] == f["data/interpretation"].shape[0] == 12

    def test_interpretation_omitted_when_absent(self, tmp_path: Path) -> None:
        path = write_result(make_result(interpretation=False), tmp_path)
        with h5py.File(path, "r") as f:
            assert "signals" in f["data"]
            assert "interpretation" not in f["data"]
            assert "interpretation_variables" not in f["data"]

    def test_empty_module_info_written(self, tmp_path: Path) -> None:
        path = write_result(make_result(module={}), tmp_path)
        with h5py.File(path, "r") as f:
            assert f["channel_info/module"].asstr()[()] == "{}"

    def test_creates_missing_directory(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b" / "c"
        path = write_result(make_result(), target)
        assert target.is_dir()
        assert path.parent == target

    def test_existing_file_not_overwritten(self, tmp_path: Path) -> None:
        existing = tmp_path / "hbk_data_20240305_143015.h5"
        existing.write_bytes(b"keep me")

        with pytest.raises(OutputExistsError):
            write_result(make_result(), tmp_path)
        assert existing.read_bytes() == b"keep me"

    def test_second_acquisition_in_same_second_collides(self, tmp_path: Path) -> None:
        first = write_result(make_result(), tmp_path)

        buffer = AcquisitionBuffer()
        for batch in make_batches(4, 4, 4):
            buffer.append(batch)
        later = package_result(
            buffer,
            ChannelConfiguration(frequency=1000, duration=0.01),
            "169.254.230.53",
            ModuleInfo(MODULE),
            TIMESTAMP.replace(microsecond=750000),
        )

        with pytest.raises(OutputExistsError):
            write_result(later, tmp_path)
        assert load_result(first).acquisition_info.timestamp == TIMESTAMP

    def test_directory_path_is_a_file(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(OutputExistsError):
            write_result(make_result(), blocker)

    @pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="needs POSIX permissions as non-root")
    def test_unwritable_directory(self, tmp_path: Path) -> None:
        locked = tmp_path / "locked"
        locked.mkdir()
        locked.chmod(0o500)
        try:
            with pytest.raises(PersistenceError):
                write_result(make_result(), locked / "sub")
        finally:
            locked.chmod(0o700)


class TestEnsureDirectory:
    def test_existing_directory(self, tmp_path: Path) -> None:
        assert ensure_directory(tmp_path) == tmp_path

    @pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="needs POSIX permissions as non-root")
    def test_permission_denied(self, tmp_path: Path) -> None:
        locked = tmp_path / "locked"
        locked.mkdir()
        locked.chmod(0o500)
        try:
            with pytest.raises(DirectoryNotWritableError):
                ensure_directory(locked / "child")
        finally:
            locked.chmod(0o700)


class TestLoadResult:
    """Tests for reading files back."""

    def test_load_matches_written(self, tmp_path: Path) -> None:
        result = make_result()
        loaded = load_result(write_result(result, tmp_path))

        np.testing.assert_array_equal(loaded.signals, result.signals)
        np.testing.assert_array_equal(loaded.interpretation, result.interpretation)
        assert loaded.signal_variables == result.signal_variables
        assert loaded.interpretation_variables == result.interpretation_variables
        assert loaded.acquisition_info == result.acquisition_info
        assert loaded.module_info == result.module_info

    def test_load_without_interpretation(self, tmp_path: Path) -> None:
        loaded = load_result(write_result(make_result(interpretation=False), tmp_path))
        assert loaded.interpretation.shape == (12, 0)
        assert loaded.interpretation_variables == ()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileReadError):
            load_result(tmp_path / "missing.h5")

    def test_missing_dataset(self, tmp_path: Path) -> None:
        path = tmp_path / "partial.h5"
        with h5py.File(path, "w") as f:
            f.create_group("data")
        with pytest.raises(FileReadError, match="missing dataset"):
            load_result(path)


class TestDescribeAndSummary:
    def test_describe_file(self, tmp_path: Path) -> None:
        path = write_result(make_result(), tmp_path)
        entries = {name: shape for name, shape, _ in describe_file(path)}

        assert entries["/data/signals"] == (12, 3)
        assert entries["/data/interpretation"] == (12, 2)
        assert entries["/metadata/frequency"] == ()
        assert "/channel_info/module" in entries

    def test_format_summary(self, tmp_path: Path) -> None:
        result = make_result()
        lines = format_summary(tmp_path / "x.h5", result)
        assert lines[0] == f"Data saved to: {tmp_path / 'x.h5'}"
        assert any("12 rows" in line for line in lines)
        assert any("/data/interpretation" in line for line in lines)

    def test_format_summary_without_interpretation(self, tmp_path: Path) -> None:
        lines = format_summary(tmp_path / "x.h5", make_result(interpretation=False))
        assert not any(line.startswith("/data/interpretation") for line in lines)
