"""Immutable data models for probe devices, clock state and trigger events.

All models are frozen dataclasses so snapshots can be handed across threads
(listener, callback dispatcher, caller) without copying.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .errors import ParseError


class ListenerState(Enum):
    """Lifecycle of the trigger listener's polling thread."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass(frozen=True)
class DeviceInfo:
    """One attached device as reported by a DeviceEnumerator.

    Attributes:
        name: Enumerator-specific key (device path or port name)
        vendor_id: USB Vendor ID, or None if unknown
        product_id: USB Product ID, or None if unknown
        interface_count: Number of USB interfaces, or None if the
            enumerator cannot tell (serial ports)
        port: Port to open for serial transports
        serial_number: USB serial string, if available
    """
    name: str
    vendor_id: Optional[int]
    product_id: Optional[int]
    interface_count: Optional[int] = None
    port: Optional[str] = None
    serial_number: Optional[str] = None

    def describe(self) -> str:
        vid = f"{self.vendor_id:x}" if self.vendor_id is not None else "?"
        pid = f"{self.product_id:x}" if self.product_id is not None else "?"
        ifaces = self.interface_count if self.interface_count is not None else "?"
        return f"USB Device: {self.name}, VID:PID - {vid}:{pid}, {ifaces} interfaces"


@dataclass(frozen=True)
class Endpoint:
    """A resolved transport endpoint.

    Attributes:
        address: Endpoint address (bit 7 set for inbound endpoints)
        direction: "in" or "out"
    """
    address: int
    direction: str


@dataclass(frozen=True)
class ClockState:
    """Snapshot of the host/probe clock relationship.

    Attributes:
        base_time: Host monotonic time (us) matching probe time zero.
            Only meaningful once synced is True.
        last_sync_timestamp: Host monotonic time (us) of the last successful sync
        last_attempt_timestamp: Host monotonic time (us) of the last sync attempt
        min_error: Lower round-trip error bound in microseconds
        max_error: Upper round-trip error bound in microseconds
        last_error: Failure message of the last sync attempt, None on success
    """
    base_time: int = 0
    last_sync_timestamp: Optional[int] = None
    last_attempt_timestamp: Optional[int] = None
    min_error: int = 0
    max_error: int = 0
    last_error: Optional[str] = None

    @property
    def synced(self) -> bool:
        return self.last_sync_timestamp is not None


@dataclass(frozen=True)
class DriftReport:
    """Result of a drift check."""
    min_error: int
    max_error: int
    drift: int
    limit: int

    @property
    def high_drift(self) -> bool:
        return self.drift > self.limit

    def describe(self) -> str:
        msg = f"Remote clock delayed between {self.min_error} and {self.max_error} us"
        if self.high_drift:
            msg = "WARNING: High clock drift. " + msg
        return msg


@dataclass(frozen=True)
class TriggerMessage:
    """One asynchronous trigger event reported by the probe.

    Attributes:
        tag: Single character naming the event source (e.g. 'L' for laser)
        timestamp: Probe clock time of the event
        value: Event value (e.g. new sensor level)
        sequence_count: Running count of events of this kind
    """
    tag: str
    timestamp: int
    value: int
    sequence_count: int

    @classmethod
    def parse(cls, text: str) -> TriggerMessage:
        """Parse the body of a trigger frame (without the leading 'G').

        Args:
            text: Whitespace separated fields, e.g. "T 12345 7 1"

        Returns:
            TriggerMessage instance

        Raises:
            ParseError: If fewer than four fields are present or a numeric
                field is not an integer
        """
        parts: List[str] = text.split()
        if len(parts) < 4:
            raise ParseError(f"Expected 4 fields in trigger message, got {len(parts)}: {text!r}")

        for token in parts[1:4]:
            # int() would also take "+5", "1_000" and non-ASCII digits
            if not (token.isascii() and token.isdigit()):
                raise ParseError(f"Bad numeric field {token!r} in trigger message {text!r}")

        return cls(
            tag=parts[0][0],
            timestamp=int(parts[1]),
            value=int(parts[2]),
            sequence_count=int(parts[3]),
        )
