"""Latency Probe SDK - host side driver for a hardware latency measurement probe."""

from .config import ProbeConfig
from .errors import (
    DeviceNotFound,
    ListenerStateError,
    ParseError,
    PermissionDenied,
    ProbeError,
    ProtocolError,
    TransportError,
)
from .models import (
    ClockState,
    DeviceInfo,
    DriftReport,
    Endpoint,
    ListenerState,
    TriggerMessage,
)
from .probe import (
    ClockSyncCoordinator,
    CommandChannel,
    ConnectionManager,
    TimeSyncEngine,
    TriggerListener,
    micro_time,
)
from .protocol import PROTOCOL_VERSION, TriggerParser, flip_case
from .transport import Transport

__all__ = [
    "ProbeConfig",
    "ProbeError",
    "TransportError",
    "ProtocolError",
    "ListenerStateError",
    "ParseError",
    "PermissionDenied",
    "DeviceNotFound",
    "ClockState",
    "DeviceInfo",
    "DriftReport",
    "Endpoint",
    "ListenerState",
    "TriggerMessage",
    "ConnectionManager",
    "CommandChannel",
    "TriggerListener",
    "ClockSyncCoordinator",
    "TimeSyncEngine",
    "micro_time",
    "PROTOCOL_VERSION",
    "TriggerParser",
    "flip_case",
    "Transport",
]
