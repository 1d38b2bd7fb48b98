"""Recorder session control and data buffering."""

from hbkdaq.acquisition.buffer import (
    AcquisitionBuffer,
    BackoffPolicy,
    CollectStats,
    PollFunction,
    collect,
)
from hbkdaq.acquisition.dataset import package_result
from hbkdaq.acquisition.session import DEFAULT_TIMEOUT, SessionController, run_acquisition

__all__ = [
    "AcquisitionBuffer",
    "BackoffPolicy",
    "CollectStats",
    "DEFAULT_TIMEOUT",
    "PollFunction",
    "SessionController",
    "collect",
    "package_result",
    "run_acquisition",
]
