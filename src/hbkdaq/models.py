"""Core data models for recorder sessions and acquired data."""

import copy
import json
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Mapping, Optional, Sequence

import numpy as np
from numpy.typing import NDArray


@dataclass(frozen=True, slots=True)
class ChannelConfiguration:
    """Acquisition parameters pushed to the device during prepare.

    Attributes:
        frequency: Sample rate in Hz.
        duration: Acquisition length in seconds.
    """

    frequency: float
    duration: float

    def __post_init__(self) -> None:
        if not self.frequency > 0:
            raise ValueError(f"frequency must be positive, got {self.frequency}")
        if not self.duration > 0:
            raise ValueError(f"duration must be positive, got {self.duration}")

    @property
    def required_sample_count(self) -> int:
        """Number of rows that must arrive before acquisition stops."""
        return math.ceil(self.frequency * self.duration)

    def to_dict(self) -> dict[str, float]:
        return {"frequency": self.frequency, "duration": self.duration}


@dataclass(frozen=True, slots=True)
class RecorderHandle:
    """Transport details assigned by the device when a recorder is opened.

    Attributes:
        destination_port: TCP port the device streams data on, if assigned.
        raw: The open response exactly as the device returned it.
    """

    destination_port: Optional[int] = None
    raw: Mapping[str, Any] = field(default_factory=dict)


class ModuleInfo:
    """Read-only descriptor of the device's modules and channels.

    The structure is device-defined and kept verbatim; it is only ever
    serialized into output metadata.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Optional[Mapping[str, Any]] = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(dict(data or {}))

    @classmethod
    def from_json(cls, text: str) -> "ModuleInfo":
        """Parse a JSON document into a ModuleInfo."""
        data = json.loads(text) if text else {}
        if not isinstance(data, dict):
            raise ValueError(f"module info must be a JSON object, got {type(data).__name__}")
        return cls(data)

    def to_json(self) -> str:
        """Serialize to a compact, key-sorted JSON string."""
        return json.dumps(self._data, sort_keys=True, separators=(",", ":"))

    def as_dict(self) -> dict[str, Any]:
        """Return a deep copy of the underlying structure."""
        return copy.deepcopy(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        return copy.deepcopy(self._data.get(key, default))

    @property
    def is_empty(self) -> bool:
        return not self._data

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ModuleInfo):
            return NotImplemented
        return self._data == other._data

    def __hash__(self) -> int:
        return hash(self.to_json())

    def __repr__(self) -> str:
        return f"ModuleInfo({self._data!r})"


def _as_rows(values: Any, width: int) -> NDArray[np.float64]:
    """Coerce a row sequence to a 2D float array with ``width`` columns."""
    arr = np.asarray(values, dtype=np.float64)
    if arr.size == 0:
        return np.empty((0, width), dtype=np.float64)
    if arr.ndim == 1 and width:
        arr = arr.reshape(-1, width)
    if arr.ndim != 2:
        raise ValueError(f"rows must be two-dimensional, got {arr.ndim} dimensions")
    return arr


@dataclass(frozen=True, slots=True)
class Batch:
    """One unit of data returned by a single poll.

    Row ``i`` of ``signals`` and row ``i`` of ``interpretation`` describe the
    same sample. A device that produces no interpretation data returns an
    interpretation array with zero columns but the same row count.

    Attributes:
        signals: Sample rows, shape (rows, len(signal_variables)).
        interpretation: Per-sample auxiliary rows, shape (rows, len(interpretation_variables)).
        signal_variables: Column names for ``signals``.
        interpretation_variables: Column names for ``interpretation``.
    """

    signals: NDArray[np.float64]
    interpretation: NDArray[np.float64]
    signal_variables: tuple[str, ...] = ()
    interpretation_variables: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.signals.ndim != 2 or self.interpretation.ndim != 2:
            raise ValueError("signals and interpretation must be two-dimensional")
        if self.signals.shape[0] != self.interpretation.shape[0]:
            raise ValueError(
                f"signal and interpretation rows must align, got {self.signals.shape[0]} "
                f"and {self.interpretation.shape[0]}"
            )
        if self.signal_variables and self.signals.shape[1] != len(self.signal_variables):
            raise ValueError(
                f"expected {len(self.signal_variables)} signal columns, got {self.signals.shape[1]}"
            )
        if self.interpretation_variables and self.interpretation.shape[1] != len(self.interpretation_variables):
            raise ValueError(
                f"expected {len(self.interpretation_variables)} interpretation columns, "
                f"got {self.interpretation.shape[1]}"
            )

    @classmethod
    def from_rows(
        cls,
        signals: Any,
        interpretation: Any = None,
        signal_variables: Sequence[str] = (),
        interpretation_variables: Sequence[str] = (),
    ) -> "Batch":
        """Build a batch from nested row lists."""
        signal_arr = _as_rows(signals, len(signal_variables))
        if interpretation is None or (len(interpretation) == 0 and not interpretation_variables):
            # No interpretation stream: keep the row count, drop the columns.
            interp_arr = np.empty((signal_arr.shape[0], 0), dtype=np.float64)
        else:
            interp_arr = _as_rows(interpretation, len(interpretation_variables))
        return cls(
            signals=signal_arr,
            interpretation=interp_arr,
            signal_variables=tuple(signal_variables),
            interpretation_variables=tuple(interpretation_variables),
        )

    @classmethod
    def empty(cls) -> "Batch":
        return cls(
            signals=np.empty((0, 0), dtype=np.float64),
            interpretation=np.empty((0, 0), dtype=np.float64),
        )

    @property
    def row_count(self) -> int:
        return int(self.signals.shape[0])

    @property
    def is_empty(self) -> bool:
        return self.row_count == 0


@dataclass(frozen=True, slots=True)
class AcquisitionInfo:
    """Scalar metadata describing one acquisition.

    Attributes:
        frequency: Sample rate in Hz.
        duration: Requested duration in seconds.
        timestamp: Wall-clock time at which recording started.
        address: Device IP address or hostname.
    """

    frequency: float
    duration: float
    timestamp: datetime
    address: str


@dataclass(frozen=True, slots=True)
class AcquisitionResult:
    """Everything captured by one successful session.

    Arrays are marked read-only when the result is built.
    """

    signals: NDArray[np.float64]
    signal_variables: tuple[str, ...]
    interpretation: NDArray[np.float64]
    interpretation_variables: tuple[str, ...]
    acquisition_info: AcquisitionInfo
    module_info: ModuleInfo

    @property
    def sample_count(self) -> int:
        return int(self.signals.shape[0])

    @property
    def has_interpretation(self) -> bool:
        """Whether any interpretation values were produced."""
        return self.interpretation.size > 0


class SessionState(Enum):
    """State of the remote recorder as tracked by the controller."""

    IDLE = auto()
    OPENED = auto()
    PREPARED = auto()
    RECORDING = auto()
    STOPPED = auto()
    CLOSED = auto()
    FAILED = auto()


@dataclass
class DeviceSession:
    """The single live session with a device.

    Attributes:
        address: Device IP address or hostname.
        timeout: Per-round-trip timeout in seconds.
        state: Current lifecycle state.
        handle: Transport details captured from the open response.
        started_at: Wall-clock time recording started, once it has.
    """

    address: str
    timeout: float
    state: SessionState = SessionState.IDLE
    handle: Optional[RecorderHandle] = None
    started_at: Optional[datetime] = None
