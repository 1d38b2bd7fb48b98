"""Assembly of the final acquisition result."""

from datetime import datetime

import numpy as np
from numpy.typing import NDArray

from hbkdaq.acquisition.buffer import AcquisitionBuffer
from hbkdaq.models import AcquisitionInfo, AcquisitionResult, ChannelConfiguration, ModuleInfo


def _frozen(arr: NDArray[np.float64]) -> NDArray[np.float64]:
    out = np.array(arr, dtype=np.float64, copy=True)
    out.flags.writeable = False
    return out


def package_result(
    buffer: AcquisitionBuffer,
    config: ChannelConfiguration,
    address: str,
    module_info: ModuleInfo,
    timestamp: datetime,
) -> AcquisitionResult:
    """Build the immutable result of a finished acquisition.

    Copies the buffer contents, so the buffer may be discarded afterwards.
    Calling this twice with the same inputs gives equal results.

    Args:
        buffer: Buffer filled by the poll loop.
        config: Channel configuration used for the session.
        address: Device address.
        module_info: Descriptor fetched at session start.
        timestamp: Acquisition start time.

    Returns:
        AcquisitionResult with read-only arrays.
    """
    info = AcquisitionInfo(
        frequency=config.frequency,
        duration=config.duration,
        timestamp=timestamp,
        address=address,
    )
    return AcquisitionResult(
        signals=_frozen(buffer.signals()),
        signal_variables=buffer.signal_variables,
        interpretation=_frozen(buffer.interpretation()),
        interpretation_variables=buffer.interpretation_variables,
        acquisition_info=info,
        module_info=module_info,
    )
