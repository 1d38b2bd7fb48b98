"""Pytest configuration for hbkdaq tests."""

import time

import pytest

from fakes import FakeClock, FakeDeviceClient, make_batches


@pytest.fixture
def fake_client():
    """A FakeDeviceClient that streams 12 rows in batches of 4."""
    return FakeDeviceClient(batches=make_batches(4, 4, 4))


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def device_simulator():
    """Provide a running recorder simulator on free ports.

    Yields:
        DeviceSimulator: A running simulator; use ``.http_port`` to connect.

    Example:
        def test_info(device_simulator):
            client = LanXiClient(http_port=device_simulator.http_port)
            info = client.discover_modules("127.0.0.1", timeout=2.0)
    """
    from hbkdaq.diagnostics.device_simulator import DeviceSimulator, SimulatorConfig

    sim = DeviceSimulator(SimulatorConfig(http_port=0, data_port=0, seed=42))
    sim.start()

    # Give threads time to start
    time.sleep(0.05)

    yield sim

    sim.stop()
