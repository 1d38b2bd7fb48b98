"""Session controller driving the recorder lifecycle.

A session runs strictly in order:

    discover -> open -> prepare -> start -> poll ... -> stop -> close

Whatever happens in the forward steps, stop and close are both attempted
before control returns to the caller. Failures raised while cleaning up are
logged and suppressed so the caller always sees the error that aborted the
session, tagged with the phase it came from.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Optional, TypeVar

from hbkdaq.acquisition.buffer import AcquisitionBuffer, BackoffPolicy, CollectStats, collect
from hbkdaq.acquisition.dataset import package_result
from hbkdaq.errors import (
    AcquisitionCancelledError,
    AcquisitionTimeoutError,
    MessageParseError,
    OpenError,
    PollError,
    SessionError,
    SessionPhase,
    error_for_phase,
)
from hbkdaq.models import (
    AcquisitionResult,
    Batch,
    ChannelConfiguration,
    DeviceSession,
    ModuleInfo,
    SessionState,
)
from hbkdaq.protocols.device_client import DeviceClient

logger = logging.getLogger(__name__)

# Per-round-trip timeout in seconds
DEFAULT_TIMEOUT = 60.0

T = TypeVar("T")


def _local_now() -> datetime:
    return datetime.now().astimezone()


class SessionController:
    """Runs one acquisition at a time against a recorder device.

    Example:
        >>> controller = SessionController(LanXiClient())
        >>> result = controller.run_acquisition(
        ...     "169.254.230.53", ChannelConfiguration(frequency=1000, duration=2.0)
        ... )
        >>> result.sample_count
        2000
    """

    def __init__(
        self,
        client: DeviceClient,
        timeout: float = DEFAULT_TIMEOUT,
        backoff: Optional[BackoffPolicy] = None,
        acquisition_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = _local_now,
    ) -> None:
        """Initialize the controller.

        Args:
            client: Device client used for every lifecycle step.
            timeout: Per-round-trip timeout in seconds.
            backoff: Delay policy for empty polls.
            acquisition_timeout: Overall limit for the poll loop in seconds.
                Defaults to the requested duration plus ``timeout``.
            clock: Monotonic clock used for the overall limit.
            sleep: Sleep function used for backoff.
            now: Wall-clock source for the acquisition timestamp.
        """
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        if acquisition_timeout is not None and acquisition_timeout <= 0:
            raise ValueError(f"acquisition_timeout must be positive, got {acquisition_timeout}")

        self._client = client
        self._timeout = timeout
        self._backoff = backoff or BackoffPolicy()
        self._acquisition_timeout = acquisition_timeout
        self._clock = clock
        self._sleep = sleep
        self._now = now

        self._session: Optional[DeviceSession] = None
        self._active = False
        self._last_stats: Optional[CollectStats] = None

    @property
    def timeout(self) -> float:
        """Per-round-trip timeout in seconds."""
        return self._timeout

    @property
    def session(self) -> Optional[DeviceSession]:
        """The current or most recent session."""
        return self._session

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def last_stats(self) -> Optional[CollectStats]:
        """Poll loop statistics from the most recent successful acquisition."""
        return self._last_stats

    def run_acquisition(
        self,
        address: str,
        config: ChannelConfiguration,
        cancel: Optional[threading.Event] = None,
    ) -> AcquisitionResult:
        """Run a complete session and return the captured data.

        Args:
            address: Device IP address or hostname.
            config: Frequency and duration for the recording.
            cancel: Optional event; setting it aborts the poll loop.

        Returns:
            The packaged acquisition result.

        Raises:
            SessionError: Subclass identifying the phase that failed.
            RuntimeError: If a session is already running on this controller.
        """
        if self._active:
            raise RuntimeError("Acquisition already running")

        session = DeviceSession(address=address, timeout=self._timeout)
        self._session = session
        self._active = True
        try:
            try:
                module_info = self._step(
                    SessionPhase.DISCOVERY, session, self._client.discover_modules, address, self._timeout
                )

                params = {"destinationPort": None, "duration": config.duration}
                session.handle = self._step(
                    SessionPhase.OPEN, session, self._client.open_recorder, address, params, self._timeout
                )
                if session.handle is None:
                    raise OpenError(
                        address, MessageParseError("HTTP", "destinationPort", "device returned no recorder handle")
                    )
                self._transition(session, SessionState.OPENED)

                self._step(SessionPhase.CONFIGURE, session, self._client.prepare, address, config, self._timeout)
                self._transition(session, SessionState.PREPARED)

                self._step(SessionPhase.START, session, self._client.start, address, self._timeout)
                session.started_at = self._now()
                self._transition(session, SessionState.RECORDING)

                buffer = self._collect(session, config, cancel)
            except BaseException:
                session.state = SessionState.FAILED
                self._cleanup(session)
                raise

            self._finish(session)
        finally:
            self._active = False

        return self._package(session, config, buffer, module_info)

    def _step(self, phase: SessionPhase, session: DeviceSession, operation: Callable[..., T], *args: Any) -> T:
        """Run one device call, tagging failures with ``phase``."""
        try:
            return operation(*args)
        except SessionError:
            raise
        except Exception as e:
            raise error_for_phase(phase, session.address, e) from e

    def _transition(self, session: DeviceSession, state: SessionState) -> None:
        logger.info("Recorder %s: %s -> %s", session.address, session.state.name, state.name)
        session.state = state

    def _collect(
        self,
        session: DeviceSession,
        config: ChannelConfiguration,
        cancel: Optional[threading.Event],
    ) -> AcquisitionBuffer:
        address = session.address
        handle = session.handle

        def poll() -> Batch:
            return self._step(SessionPhase.POLL, session, self._client.poll, address, handle, self._timeout)

        deadline = self._acquisition_timeout
        if deadline is None:
            deadline = config.duration + self._timeout

        required = config.required_sample_count
        logger.info("Collecting %d samples from %s", required, address)
        try:
            buffer, stats = collect(
                poll,
                required,
                backoff=self._backoff,
                deadline_s=deadline,
                on_deadline=lambda received, needed, limit: AcquisitionTimeoutError(address, received, needed, limit),
                cancel=cancel,
                on_cancel=lambda received, needed: AcquisitionCancelledError(address, received, needed),
                clock=self._clock,
                sleep=self._sleep,
            )
        except SessionError:
            raise
        except Exception as e:
            raise PollError(address, e) from e

        self._last_stats = stats
        logger.info(
            "Collected %d samples in %d batches (%d empty polls, %.2fs)",
            stats.rows,
            stats.batches,
            stats.empty_polls,
            stats.elapsed_s,
        )
        return buffer

    def _finish(self, session: DeviceSession) -> None:
        """Stop then close after a successful collection."""
        try:
            self._step(SessionPhase.STOP, session, self._client.stop, session.address, self._timeout)
        except BaseException:
            session.state = SessionState.FAILED
            self._close_quietly(session)
            raise
        self._transition(session, SessionState.STOPPED)

        try:
            self._step(SessionPhase.CLOSE, session, self._client.close, session.address, self._timeout)
        except SessionError:
            session.state = SessionState.FAILED
            raise
        self._transition(session, SessionState.CLOSED)

    def _cleanup(self, session: DeviceSession) -> None:
        """Best-effort stop and close after a failure."""
        try:
            self._client.stop(session.address, self._timeout)
        except Exception:
            logger.warning("Cleanup stop failed on %s", session.address, exc_info=True)
        self._close_quietly(session)

    def _close_quietly(self, session: DeviceSession) -> None:
        try:
            self._client.close(session.address, self._timeout)
        except Exception:
            logger.warning("Cleanup close failed on %s", session.address, exc_info=True)
            return
        session.state = SessionState.CLOSED

    def _package(
        self,
        session: DeviceSession,
        config: ChannelConfiguration,
        buffer: AcquisitionBuffer,
        module_info: ModuleInfo,
    ) -> AcquisitionResult:
        timestamp = session.started_at or self._now()
        result = package_result(buffer, config, session.address, module_info, timestamp)
        buffer.clear()
        return result


def run_acquisition(
    client: DeviceClient,
    address: str,
    frequency: float,
    duration: float,
    timeout: float = DEFAULT_TIMEOUT,
    **kwargs: Any,
) -> AcquisitionResult:
    """Run one acquisition with a fresh controller.

    Args:
        client: Device client.
        address: Device IP address or hostname.
        frequency: Sample rate in Hz.
        duration: Acquisition length in seconds.
        timeout: Per-round-trip timeout in seconds.
        **kwargs: Passed to SessionController.

    Raises:
        ValueError: If frequency, duration or timeout is not positive.
        SessionError: If any lifecycle phase fails.
    """
    config = ChannelConfiguration(frequency=frequency, duration=duration)
    return SessionController(client, timeout=timeout, **kwargs).run_acquisition(address, config)
