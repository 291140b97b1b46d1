"""Clock synchronization between the host and the probe.

The offset computation itself is done by an external TimeSyncEngine, which
runs its own round-trip sub-protocol directly on the transport handle. This
module only decides when the engine may run (connected, listener stopped,
reader token held) and keeps the resulting ClockState consistent:

- a failed sync never touches base_time or last_sync_timestamp
- a drift check only refreshes the error bounds
"""
from __future__ import annotations

import dataclasses
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..config import ProbeConfig
from ..errors import ListenerStateError, ProtocolError
from ..models import ClockState, DriftReport, Endpoint
from ..protocol.commands import CMD_VERSION, PROTOCOL_VERSION
from .channel import CommandChannel
from .link import ProbeLink
from .listener import TriggerListener

logger = logging.getLogger(__name__)


def micro_time() -> int:
    """Host monotonic time in microseconds.

    TimeSyncEngine implementations must report base times on this clock.
    """
    return time.monotonic_ns() // 1000


class TimeSyncEngine(ABC):
    """Opaque clock-offset estimator.

    Contract:
        sync_round_trip() exchanges timestamps with the probe over the raw
        endpoints and returns the host time (micro_time() scale) that
        corresponds to probe time zero. refresh_bounds() repeats a shorter
        exchange to update the error bounds returned by min_error_micros()
        and max_error_micros(). Any failure is raised.
    """

    @abstractmethod
    def sync_round_trip(self, handle: Any, endpoint_out: Endpoint, endpoint_in: Endpoint) -> int:
        pass

    @abstractmethod
    def refresh_bounds(self, handle: Any) -> None:
        pass

    @abstractmethod
    def min_error_micros(self) -> int:
        pass

    @abstractmethod
    def max_error_micros(self) -> int:
        pass


class ClockSyncCoordinator:
    """Runs the version handshake, clock syncs and drift checks.

    Example:
        >>> coordinator.handshake()          # version check + initial sync
        >>> coordinator.micros()             # probe-relative host time
        15320117
        >>> coordinator.check_drift().high_drift
        False
    """

    def __init__(
        self,
        link: ProbeLink,
        channel: CommandChannel,
        listener: TriggerListener,
        engine: TimeSyncEngine,
        config: Optional[ProbeConfig] = None,
    ):
        self._link = link
        self._channel = channel
        self._listener = listener
        self._engine = engine
        self._config = config or ProbeConfig()

        self._state = ClockState()

    @property
    def clock_state(self) -> ClockState:
        return self._state

    @property
    def base_time(self) -> int:
        return self._state.base_time

    def micros(self) -> int:
        """Current host time expressed on the probe's clock."""
        return micro_time() - self._state.base_time

    def handshake(self) -> None:
        """Check the firmware protocol version, then sync clocks.

        Raises:
            ProtocolError: On version mismatch or a bad acknowledgment
            TransportError: If the probe does not answer
            ListenerStateError: If the listener is not stopped
        """
        self.check_version()
        self.sync_clock()

    def check_version(self) -> None:
        """Verify the probe speaks the expected protocol version.

        Raises:
            ProtocolError: If the reported version differs; carries
                expected and actual
        """
        self._require_ready()
        version = self._channel.command(CMD_VERSION)
        if version != PROTOCOL_VERSION:
            raise ProtocolError(
                f"Probe protocol version mismatch: got {version!r}, expected {PROTOCOL_VERSION!r}. "
                f"Please update the probe firmware or this library.",
                expected=PROTOCOL_VERSION,
                actual=version,
            )

    def sync_clock(self) -> bool:
        """Establish a new base time.

        Best effort: engine failures are logged and leave the previous base
        time in place.

        Returns:
            True if a new base time was established

        Raises:
            TransportError: If not connected
            ListenerStateError: If the listener is not stopped
        """
        self._require_ready()

        attempt = micro_time()
        try:
            with self._link.reader.claim("clock sync"):
                base_time = self._engine.sync_round_trip(
                    self._link.handle,
                    self._link.endpoint_out,
                    self._link.endpoint_in,
                )
                max_error = self._engine.max_error_micros()
        except ListenerStateError:
            raise
        except Exception as e:
            logger.error(f"Exception while syncing clocks: {e}")
            self._state = dataclasses.replace(
                self._state,
                last_attempt_timestamp=attempt,
                last_error=str(e) or type(e).__name__,
            )
            return False

        self._state = dataclasses.replace(
            self._state,
            base_time=base_time,
            last_sync_timestamp=attempt,
            last_attempt_timestamp=attempt,
            max_error=max_error,
            last_error=None,
        )
        logger.info(f"Synced clocks, maxE={max_error}us")
        return True

    def check_drift(self) -> DriftReport:
        """Measure how far the clocks have drifted since the last sync.

        Advisory only: base_time is never changed.

        Raises:
            TransportError: If not connected
            ListenerStateError: If the listener is not stopped
        """
        self._require_ready()

        with self._link.reader.claim("drift check"):
            self._engine.refresh_bounds(self._link.handle)
            min_error = self._engine.min_error_micros()
            max_error = self._engine.max_error_micros()

        report = DriftReport(
            min_error=min_error,
            max_error=max_error,
            drift=abs(min_error + max_error) // 2,
            limit=self._config.drift_limit_us,
        )
        self._state = dataclasses.replace(self._state, min_error=min_error, max_error=max_error)

        if report.high_drift:
            logger.warning(report.describe())
        else:
            logger.info(report.describe())
        return report

    def _require_ready(self) -> None:
        self._link.require_connected()
        if not self._listener.is_stopped():
            raise ListenerStateError(f"Listener is {self._listener.state.value}")
