"""pyserial implementation of the transport collaborators.

The probe enumerates as a USB CDC serial device, so on desktop hosts the
"bulk transfers" of the probe protocol map onto timed reads and writes of a
serial port:

- one serial port carries both endpoints; the Endpoint values are nominal
- inbound bytes are framed into lines; one bulk read returns one line
- a read that completes no line before the timeout is reported as None
- permission is the OS read/write access to the port node
"""
from __future__ import annotations

import logging
import os
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import serial
from serial.tools import list_ports

from ..config import CONNECTION_BAUD, READ_TIMEOUT_MS
from ..errors import TransportError
from ..models import DeviceInfo, Endpoint
from .base import DeviceEnumerator, PermissionBroker, Transport
from .buffer import LineBuffer

logger = logging.getLogger(__name__)

# Teensy USB serial data interface endpoints
ENDPOINT_IN_ADDRESS = 0x83
ENDPOINT_OUT_ADDRESS = 0x04


@dataclass
class SerialHandle:
    """Connection handle produced by SerialTransport.open()."""
    device: DeviceInfo
    port: Optional[serial.Serial]
    claimed_interface: Optional[int] = None
    endpoints: Tuple[Endpoint, ...] = field(default_factory=tuple)
    buffer: LineBuffer = field(default_factory=LineBuffer)


def _port_to_info(port) -> DeviceInfo:
    """Convert pyserial's ListPortInfo to DeviceInfo."""
    return DeviceInfo(
        name=port.device,
        vendor_id=port.vid,
        product_id=port.pid,
        interface_count=None,
        port=port.device,
        serial_number=port.serial_number,
    )


class SerialDeviceEnumerator(DeviceEnumerator):
    """Lists serial ports known to the OS."""

    def list_connected_devices(self) -> List[DeviceInfo]:
        return [_port_to_info(port) for port in list_ports.comports()]


class SerialPermissionBroker(PermissionBroker):
    """Grants access when the current user can read and write the port node.

    Ports without a filesystem node (e.g. 'COM3') are always granted; the
    open itself will fail if another process holds them.
    """

    def request_permission(self, device: DeviceInfo) -> Future:
        future: Future = Future()
        path = device.port or device.name
        if os.path.exists(path):
            granted = os.access(path, os.R_OK | os.W_OK)
        else:
            granted = True

        if not granted:
            logger.warning(f"No read/write access to {path}")
        future.set_result(granted)
        return future


class SerialTransport(Transport):
    """Transport over a pyserial port.

    Example:
        >>> transport = SerialTransport()
        >>> handle = transport.open(device)
        >>> transport.claim_interface(handle, 1)
        >>> ep_in, ep_out = transport.resolve_endpoints(handle, 1, 1, 0)
        >>> transport.bulk_write(handle, ep_out, b'V', 100)
        >>> transport.bulk_read(handle, ep_in, 64, 200)
        b'v2\\n'
    """

    def __init__(self, baudrate: int = CONNECTION_BAUD):
        self._baudrate = baudrate

    def open(self, device: DeviceInfo) -> SerialHandle:
        port_name = device.port or device.name
        try:
            port = serial.Serial(
                port=port_name,
                baudrate=self._baudrate,
                timeout=READ_TIMEOUT_MS / 1000.0,
            )
        except serial.SerialException as e:
            raise TransportError(f"Failed to open {port_name}: {e}") from e

        logger.info(f"Opened {port_name} @ {self._baudrate} baud")
        return SerialHandle(device=device, port=port)

    def claim_interface(self, handle: SerialHandle, interface_index: int) -> None:
        port = self._port(handle)
        try:
            # Drop anything the probe sent before we owned the port
            port.reset_input_buffer()
            port.reset_output_buffer()
            handle.buffer.clear()
        except serial.SerialException as e:
            raise TransportError(f"Can't claim interface {interface_index}: {e}") from e
        handle.claimed_interface = interface_index

    def resolve_endpoints(
        self,
        handle: SerialHandle,
        interface_index: int,
        in_index: int,
        out_index: int,
    ) -> Tuple[Endpoint, Endpoint]:
        if handle.claimed_interface != interface_index:
            raise TransportError(f"Interface {interface_index} was not claimed")

        endpoints = {
            in_index: Endpoint(address=ENDPOINT_IN_ADDRESS, direction="in"),
            out_index: Endpoint(address=ENDPOINT_OUT_ADDRESS, direction="out"),
        }
        handle.endpoints = (endpoints[in_index], endpoints[out_index])
        return endpoints[in_index], endpoints[out_index]

    def bulk_read(
        self,
        handle: SerialHandle,
        endpoint: Endpoint,
        length: int,
        timeout_ms: int,
    ) -> Optional[bytes]:
        port = self._port(handle)
        deadline = time.monotonic() + timeout_ms / 1000.0
        try:
            while True:
                line = handle.buffer.read_line(length)
                if line:
                    return line

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                port.timeout = remaining
                # Block for one byte at most, then take whatever else is queued
                chunk = port.read(max(1, port.in_waiting))
                if not chunk:
                    return None
                handle.buffer.write(chunk)
        except serial.SerialException as e:
            raise TransportError(f"Serial read error: {e}") from e

    def bulk_write(
        self,
        handle: SerialHandle,
        endpoint: Endpoint,
        data: bytes,
        timeout_ms: int,
    ) -> int:
        port = self._port(handle)
        try:
            port.write_timeout = timeout_ms / 1000.0
            written = port.write(data)
            port.flush()
        except serial.SerialTimeoutException as e:
            raise TransportError(f"Timed out writing to {port.port}") from e
        except serial.SerialException as e:
            raise TransportError(f"Send error: {e}") from e
        return written if written is not None else len(data)

    def close(self, handle: SerialHandle) -> None:
        if handle.port is None:
            return
        try:
            handle.port.close()
            logger.info(f"Closed {handle.port.port}")
        except Exception as e:
            logger.error(f"Error closing serial port: {e}")
        finally:
            handle.port = None
            handle.claimed_interface = None
            handle.buffer.clear()

    @staticmethod
    def _port(handle: SerialHandle) -> serial.Serial:
        if handle.port is None or not handle.port.is_open:
            raise TransportError("Serial port not open")
        return handle.port
