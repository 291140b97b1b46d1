"""Probe core: connection lifecycle, command channel, trigger listener, clock sync.

This module provides:
- Connection ownership and handshake (ConnectionManager)
- Synchronous command/ack exchange (CommandChannel)
- Background trigger polling (TriggerListener)
- Clock offset and drift tracking (ClockSyncCoordinator, TimeSyncEngine)
"""

from .channel import CommandChannel
from .clock import ClockSyncCoordinator, TimeSyncEngine, micro_time
from .link import EndpointGuard, ProbeLink
from .listener import CallbackDispatcher, TriggerListener
from .manager import ConnectFuture, ConnectionManager

__all__ = [
    'ConnectionManager',
    'ConnectFuture',
    'CommandChannel',
    'TriggerListener',
    'CallbackDispatcher',
    'ClockSyncCoordinator',
    'TimeSyncEngine',
    'micro_time',
    'ProbeLink',
    'EndpointGuard',
]
