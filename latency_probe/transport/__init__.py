"""Transport collaborators: raw device access, discovery, permission, detachment."""

from .base import DetachMonitor, DeviceEnumerator, PermissionBroker, Transport
from .buffer import LineBuffer
from .detach import SerialDetachMonitor
from .finder import find_probe_devices, is_probe_device, select_probe_device
from .serial import SerialDeviceEnumerator, SerialHandle, SerialPermissionBroker, SerialTransport

__all__ = [
    "Transport",
    "DeviceEnumerator",
    "PermissionBroker",
    "DetachMonitor",
    "LineBuffer",
    "SerialTransport",
    "SerialHandle",
    "SerialDeviceEnumerator",
    "SerialPermissionBroker",
    "SerialDetachMonitor",
    "find_probe_devices",
    "is_probe_device",
    "select_probe_device",
]
