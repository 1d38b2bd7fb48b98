"""Append-only accumulation of polled batches.

Batches are kept as a list of arrays and concatenated once when read, so
collecting N batches costs O(N) instead of re-copying on every append.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
from numpy.typing import NDArray

from hbkdaq.errors import MessageParseError
from hbkdaq.models import Batch

logger = logging.getLogger(__name__)

# Callable returning the next batch from the device
PollFunction = Callable[[], Batch]

# Raised by the poll loop when the deadline passes or the caller cancels
DeadlineCallback = Callable[[int, int, float], Exception]
CancelCallback = Callable[[int, int], Exception]


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Delay applied between consecutive empty polls.

    The delay starts at ``initial_s``, doubles after every empty batch up to
    ``max_s`` and resets once data arrives.
    """

    initial_s: float = 0.001
    max_s: float = 0.05

    def __post_init__(self) -> None:
        if self.initial_s < 0 or self.max_s < 0:
            raise ValueError("backoff delays must not be negative")
        if self.initial_s > self.max_s:
            raise ValueError(f"initial_s ({self.initial_s}) must not exceed max_s ({self.max_s})")

    def delay(self, consecutive_empty: int) -> float:
        """Delay to sleep after the given number of consecutive empty polls."""
        if consecutive_empty <= 0:
            return 0.0
        return min(self.max_s, self.initial_s * (2 ** (consecutive_empty - 1)))


@dataclass(frozen=True, slots=True)
class CollectStats:
    """Statistics from one run of the poll loop."""

    polls: int
    empty_polls: int
    batches: int
    rows: int
    elapsed_s: float


class AcquisitionBuffer:
    """Ordered signal and interpretation rows with a running sample count.

    Both sequences always hold the same number of rows, and row ``i`` of each
    describes the same sample. Column names are fixed by the first non-empty
    batch; later batches must match them.

    Example:
        >>> buffer = AcquisitionBuffer()
        >>> buffer.append(batch)
        >>> buffer.count
        4
    """

    def __init__(self) -> None:
        self._signal_chunks: list[NDArray[np.float64]] = []
        self._interpretation_chunks: list[NDArray[np.float64]] = []
        self._signal_variables: Optional[tuple[str, ...]] = None
        self._interpretation_variables: Optional[tuple[str, ...]] = None
        self._signal_width = 0
        self._interpretation_width = 0
        self._count = 0

    @property
    def count(self) -> int:
        """Number of rows accumulated so far."""
        return self._count

    @property
    def batch_count(self) -> int:
        return len(self._signal_chunks)

    @property
    def signal_variables(self) -> tuple[str, ...]:
        return self._signal_variables or ()

    @property
    def interpretation_variables(self) -> tuple[str, ...]:
        return self._interpretation_variables or ()

    def append(self, batch: Batch) -> int:
        """Append a batch in received order.

        Empty batches are ignored.

        Args:
            batch: Batch returned by a poll.

        Returns:
            Number of rows added.

        Raises:
            MessageParseError: If the batch columns differ from earlier batches.
        """
        if batch.is_empty:
            return 0

        if self._signal_variables is None:
            self._signal_variables = batch.signal_variables
            self._interpretation_variables = batch.interpretation_variables
            self._signal_width = batch.signals.shape[1]
            self._interpretation_width = batch.interpretation.shape[1]
        elif (
            batch.signal_variables != self._signal_variables
            or batch.interpretation_variables != self._interpretation_variables
            or batch.signals.shape[1] != self._signal_width
            or batch.interpretation.shape[1] != self._interpretation_width
        ):
            raise MessageParseError(
                "STREAM",
                "variables",
                f"batch columns {batch.signal_variables}/{batch.interpretation_variables} differ from "
                f"{self._signal_variables}/{self._interpretation_variables}",
            )

        self._signal_chunks.append(batch.signals)
        self._interpretation_chunks.append(batch.interpretation)
        self._count += batch.row_count
        return batch.row_count

    def signals(self) -> NDArray[np.float64]:
        """All signal rows as one (rows, columns) array."""
        return self._concatenate(self._signal_chunks, len(self.signal_variables))

    def interpretation(self) -> NDArray[np.float64]:
        """All interpretation rows as one (rows, columns) array."""
        return self._concatenate(self._interpretation_chunks, len(self.interpretation_variables))

    @staticmethod
    def _concatenate(chunks: list[NDArray[np.float64]], width: int) -> NDArray[np.float64]:
        if not chunks:
            return np.empty((0, width), dtype=np.float64)
        return np.concatenate(chunks, axis=0)

    def clear(self) -> None:
        """Discard all accumulated rows."""
        self._signal_chunks.clear()
        self._interpretation_chunks.clear()
        self._signal_variables = None
        self._interpretation_variables = None
        self._signal_width = 0
        self._interpretation_width = 0
        self._count = 0


def collect(
    poll: PollFunction,
    required_sample_count: int,
    *,
    backoff: Optional[BackoffPolicy] = None,
    deadline_s: Optional[float] = None,
    on_deadline: Optional[DeadlineCallback] = None,
    cancel: Optional[threading.Event] = None,
    on_cancel: Optional[CancelCallback] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[AcquisitionBuffer, CollectStats]:
    """Poll until at least ``required_sample_count`` rows have arrived.

    The loop stops at the first poll after which the running count reaches
    the target. The final batch is kept whole, so the buffer may hold more
    rows than required. Exceptions raised by ``poll`` propagate immediately.

    Args:
        poll: Returns the next batch, possibly empty.
        required_sample_count: Rows needed before stopping.
        backoff: Delay policy for empty polls. Defaults to BackoffPolicy().
        deadline_s: Overall time limit in seconds, or None for no limit.
        on_deadline: Builds the exception raised when the deadline passes,
            given (received, required, deadline_s). Defaults to TimeoutError.
        cancel: Event checked once per iteration.
        on_cancel: Builds the exception raised on cancellation, given
            (received, required). Defaults to InterruptedError.
        clock: Monotonic clock in seconds.
        sleep: Sleep function used for backoff.

    Returns:
        The filled buffer and loop statistics.
    """
    if required_sample_count < 0:
        raise ValueError(f"required_sample_count must not be negative, got {required_sample_count}")

    policy = backoff or BackoffPolicy()
    buffer = AcquisitionBuffer()
    start = clock()
    polls = 0
    empty_polls = 0
    consecutive_empty = 0

    while buffer.count < required_sample_count:
        if cancel is not None and cancel.is_set():
            if on_cancel is not None:
                raise on_cancel(buffer.count, required_sample_count)
            raise InterruptedError(f"cancelled after {buffer.count} of {required_sample_count} samples")

        if deadline_s is not None and clock() - start > deadline_s:
            if on_deadline is not None:
                raise on_deadline(buffer.count, required_sample_count, deadline_s)
            raise TimeoutError(
                f"received {buffer.count} of {required_sample_count} samples within {deadline_s:.1f}s"
            )

        batch = poll()
        polls += 1

        if batch.is_empty:
            empty_polls += 1
            consecutive_empty += 1
            delay = policy.delay(consecutive_empty)
            if delay > 0:
                sleep(delay)
            continue

        consecutive_empty = 0
        added = buffer.append(batch)
        logger.debug("Received %d rows (%d/%d)", added, buffer.count, required_sample_count)

    stats = CollectStats(
        polls=polls,
        empty_polls=empty_polls,
        batches=buffer.batch_count,
        rows=buffer.count,
        elapsed_s=clock() - start,
    )
    return buffer, stats
