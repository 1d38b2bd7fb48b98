"""Tests for the hbkdaq command-line interface."""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from fakes import FakeDeviceClient, make_batches
from hbkdaq.acquire import run_request
from hbkdaq.acquisition.buffer import AcquisitionBuffer
from hbkdaq.acquisition.dataset import package_result
from hbkdaq.diagnostics import cli
from hbkdaq.models import ChannelConfiguration, ModuleInfo
from hbkdaq.recording.writer import write_result


@pytest.fixture
def written_file(tmp_path: Path) -> Path:
    buffer = AcquisitionBuffer()
    for batch in make_batches(4, 4):
        buffer.append(batch)
    result = package_result(
        buffer,
        ChannelConfiguration(frequency=1000, duration=0.008),
        "169.254.230.53",
        ModuleInfo({"module": {"type": "3160"}}),
        datetime(2024, 3, 5, 14, 30, 15, tzinfo=timezone.utc),
    )
    return write_result(result, tmp_path)


@pytest.fixture
def scripted_run_request(monkeypatch):
    """Route the CLI's acquisitions to a FakeDeviceClient."""
    client = FakeDeviceClient(batches=make_batches(4, 4, 4))

    def fake_run_request(*args, **kwargs):
        kwargs["client"] = client
        return run_request(*args, **kwargs)

    monkeypatch.setattr(cli, "run_request", fake_run_request)
    return client


class TestParser:
    """Tests for argument parsing."""

    def test_acquire_arguments(self) -> None:
        args = cli.build_parser().parse_args(
            ["acquire", "--ip", "10.0.0.5", "--frequency", "1000", "--duration", "2", "--out", "/tmp/x"]
        )
        assert args.command == "acquire"
        assert args.ip == "10.0.0.5"
        assert args.frequency == 1000.0
        assert args.duration == 2.0
        assert args.out == "/tmp/x"
        assert args.timeout is None

    def test_acquire_requires_ip(self) -> None:
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["acquire", "--frequency", "1000", "--duration", "2"])

    def test_simulate_arguments(self) -> None:
        args = cli.build_parser().parse_args(["simulate", "--http-port", "9000", "--fail", "start=500"])
        assert args.http_port == 9000
        assert args.fail == ["start=500"]

    def test_no_command_prints_help(self, capsys) -> None:
        assert cli.main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()


class TestAcquireCommand:
    """Tests for the acquire subcommand."""

    def test_success(self, tmp_path: Path, scripted_run_request, capsys) -> None:
        out = tmp_path / "out"
        settings = tmp_path / "settings.json"
        code = cli.main(
            [
                "acquire",
                "--ip", "169.254.230.53",
                "--frequency", "1000",
                "--duration", "0.01",
                "--out", str(out),
                "--timeout", "5",
                "--settings", str(settings),
            ]
        )

        assert code == 0
        assert len(list(out.glob("hbk_data_*.h5"))) == 1
        assert "Samples: 12" in capsys.readouterr().out
        saved = json.loads(settings.read_text())
        assert saved["last_address"] == "169.254.230.53"
        assert saved["save_directory"] == str(out.resolve())

    def test_session_failure_exit_code(self, tmp_path: Path, scripted_run_request, capsys) -> None:
        scripted_run_request.failures["prepare"] = OSError("rejected")
        code = cli.main(
            [
                "acquire",
                "--ip", "169.254.230.53",
                "--frequency", "1000",
                "--duration", "0.01",
                "--out", str(tmp_path),
                "--settings", str(tmp_path / "settings.json"),
            ]
        )

        assert code == 1
        err = capsys.readouterr().err
        assert "Error [SES-003]: " in err
        assert "rejected" in err
        assert err.count("SES-003") == 1

    def test_invalid_duration(self, tmp_path: Path, capsys) -> None:
        code = cli.main(
            [
                "acquire",
                "--ip", "169.254.230.53",
                "--frequency", "1000",
                "--duration", "0",
                "--out", str(tmp_path),
                "--settings", str(tmp_path / "settings.json"),
            ]
        )
        assert code == 1
        assert "duration must be positive" in capsys.readouterr().err


class TestInspectCommand:
    def test_prints_datasets(self, written_file: Path, capsys) -> None:
        assert cli.main(["inspect", str(written_file)]) == 0
        out = capsys.readouterr().out
        assert "/data/signals" in out
        assert "(8, 3)" in out
        assert "169.254.230.53" in out
        assert "Samples:   8" in out

    def test_missing_file(self, tmp_path: Path, capsys) -> None:
        assert cli.main(["inspect", str(tmp_path / "missing.h5")]) == 1
        assert "IO-005" in capsys.readouterr().err
