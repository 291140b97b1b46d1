"""In-memory stand-ins for the probe's collaborators.

Simulates a probe that acknowledges commands the way the firmware does and
lets tests inject asynchronous trigger frames, so ConnectionManager and
friends can be exercised without hardware.

Usage:
    transport = MockTransport()
    manager = ConnectionManager(
        transport, MockDeviceEnumerator(), MockPermissionBroker(), MockTimeSyncEngine()
    )
    manager.connect_and_wait(timeout=1.0)
    transport.inject(b"G L 1500 1 3\\n")
"""
from __future__ import annotations

import threading
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .config import TEENSY_VID
from .errors import TransportError
from .models import DeviceInfo, Endpoint
from .protocol.commands import CMD_VERSION, PROTOCOL_VERSION, flip_case
from .transport.base import DetachMonitor, DeviceEnumerator, PermissionBroker, Transport
from .probe.clock import TimeSyncEngine

MOCK_PROBE = DeviceInfo(
    name="/dev/bus/usb/001/004",
    vendor_id=TEENSY_VID,
    product_id=0x0483,
    interface_count=2,
    port="/dev/ttyACM0",
    serial_number="12345",
)


def make_reply(cmd: str, payload: str = "") -> bytes:
    """Build the reply frame the probe sends for a command."""
    return f"{flip_case(cmd)}{payload}\n".encode("ascii")


def make_trigger_frame(tag: str, timestamp: int, value: int, count: int) -> bytes:
    """Build an asynchronous trigger frame."""
    return f"G {tag} {timestamp} {value} {count}\n".encode("ascii")


@dataclass
class MockHandle:
    device: DeviceInfo
    open: bool = True
    claimed: Optional[int] = None


class MockTransport(Transport):
    """Transport that answers commands from a reply table.

    Every written command byte queues its reply (by default the case-flipped
    ack, and protocol version "2" for 'V'). Frames passed to inject() are
    returned by subsequent reads, one frame per read.
    """

    def __init__(
        self,
        replies: Optional[Dict[str, bytes]] = None,
        fail_open: bool = False,
        fail_claim: bool = False,
    ):
        self._replies: Dict[str, bytes] = {CMD_VERSION: make_reply(CMD_VERSION, PROTOCOL_VERSION)}
        if replies:
            self._replies.update(replies)
        self._fail_open = fail_open
        self._fail_claim = fail_claim

        self._inbound: deque[bytes] = deque()
        self._cond = threading.Condition()
        self._write_log: List[bytes] = []
        self._handles: List[MockHandle] = []
        self.reads_after_close = 0
        self.read_count = 0

    @property
    def write_log(self) -> List[bytes]:
        """All bytes written to the probe, in order."""
        return self._write_log

    @property
    def handles(self) -> List[MockHandle]:
        return self._handles

    def set_reply(self, cmd: str, reply: Optional[bytes]) -> None:
        """Set the reply for a command; None makes the probe stay silent."""
        self._replies[cmd] = reply

    def inject(self, data: bytes) -> None:
        """Queue inbound data for the next read."""
        with self._cond:
            self._inbound.append(data)
            self._cond.notify_all()

    def open(self, device: DeviceInfo) -> MockHandle:
        if self._fail_open:
            raise TransportError(f"Failed to open {device.name}")
        handle = MockHandle(device=device)
        self._handles.append(handle)
        return handle

    def claim_interface(self, handle: MockHandle, interface_index: int) -> None:
        if self._fail_claim:
            raise TransportError(f"Can't claim interface {interface_index}")
        handle.claimed = interface_index

    def resolve_endpoints(
        self,
        handle: MockHandle,
        interface_index: int,
        in_index: int,
        out_index: int,
    ) -> Tuple[Endpoint, Endpoint]:
        return Endpoint(address=0x80 | in_index, direction="in"), Endpoint(address=out_index, direction="out")

    def bulk_read(
        self,
        handle: MockHandle,
        endpoint: Endpoint,
        length: int,
        timeout_ms: int,
    ) -> Optional[bytes]:
        self.read_count += 1
        if not handle.open:
            self.reads_after_close += 1
            raise TransportError("Read on closed handle")

        with self._cond:
            if not self._inbound:
                self._cond.wait(timeout_ms / 1000.0)
            if not self._inbound:
                return None
            data = self._inbound.popleft()
            if len(data) > length:
                self._inbound.appendleft(data[length:])
                data = data[:length]
            return data

    def bulk_write(
        self,
        handle: MockHandle,
        endpoint: Endpoint,
        data: bytes,
        timeout_ms: int,
    ) -> int:
        if not handle.open:
            raise TransportError("Write on closed handle")
        self._write_log.append(data)

        cmd = data.decode("ascii")
        reply = self._replies[cmd] if cmd in self._replies else make_reply(cmd)
        if reply is not None:
            self.inject(reply)
        return len(data)

    def close(self, handle: MockHandle) -> None:
        handle.open = False


class MockTimeSyncEngine(TimeSyncEngine):
    """Engine returning fixed values; set fail=True to make it raise."""

    def __init__(self, base_time: int = 1_000_000, min_error: int = -100, max_error: int = 200):
        self.base_time = base_time
        self.min_error = min_error
        self.max_error = max_error
        self.fail = False
        self.sync_calls = 0
        self.refresh_calls = 0

    def sync_round_trip(self, handle, endpoint_out: Endpoint, endpoint_in: Endpoint) -> int:
        self.sync_calls += 1
        if self.fail:
            raise TransportError("Sync round trip failed")
        return self.base_time

    def refresh_bounds(self, handle) -> None:
        self.refresh_calls += 1
        if self.fail:
            raise TransportError("Bounds refresh failed")

    def min_error_micros(self) -> int:
        return self.min_error

    def max_error_micros(self) -> int:
        return self.max_error


class MockDeviceEnumerator(DeviceEnumerator):
    def __init__(self, devices: Optional[List[DeviceInfo]] = None):
        self.devices = [MOCK_PROBE] if devices is None else list(devices)

    def list_connected_devices(self) -> List[DeviceInfo]:
        return list(self.devices)


class MockPermissionBroker(PermissionBroker):
    """Resolves requests with a fixed answer, or leaves them pending.

    With defer=True the returned futures stay pending until resolve() is
    called, like a user looking at a permission dialog.
    """

    def __init__(self, granted: bool = True, defer: bool = False):
        self.granted = granted
        self.defer = defer
        self.pending: List[Future] = []

    def request_permission(self, device: DeviceInfo) -> Future:
        future: Future = Future()
        if self.defer:
            self.pending.append(future)
        else:
            future.set_result(self.granted)
        return future

    def resolve(self, granted: bool) -> None:
        pending, self.pending = self.pending, []
        for future in pending:
            future.set_result(granted)


class MockDetachMonitor(DetachMonitor):
    """Records watches; detach() simulates unplugging a device."""

    def __init__(self):
        self.watched: Dict[str, Tuple[DeviceInfo, Callable[[DeviceInfo], None]]] = {}
        self.shut_down = False

    def watch(self, device: DeviceInfo, callback: Callable[[DeviceInfo], None]) -> None:
        self.watched[device.name] = (device, callback)

    def unwatch(self, device: DeviceInfo) -> None:
        self.watched.pop(device.name, None)

    def shutdown(self) -> None:
        self.shut_down = True
        self.watched.clear()

    def detach(self, device: DeviceInfo) -> None:
        entry = self.watched.pop(device.name, None)
        if entry is not None:
            entry[1](entry[0])
