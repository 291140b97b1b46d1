"""Tunable parameters for talking to the probe.

Defaults match the probe firmware (a Teensy running in USB serial mode).
"""
from __future__ import annotations

from dataclasses import dataclass

TEENSY_VID = 0x16C0

INTERFACE_INDEX = 1  # serial mode only
ENDPOINT_IN_INDEX = 1
ENDPOINT_OUT_INDEX = 0

READ_TIMEOUT_MS = 200
WRITE_TIMEOUT_MS = 100
COMMAND_BUFFER_SIZE = 64
BULK_BUFFER_SIZE = 4 * 1024

DEFAULT_DRIFT_LIMIT_US = 1500
JOIN_TIMEOUT = 1.0  # seconds
CONNECTION_BAUD = 115200
DETACH_POLL_INTERVAL = 1.0  # seconds


@dataclass(frozen=True)
class ProbeConfig:
    """Connection and protocol settings shared by all probe components.

    Attributes:
        vendor_id: USB vendor id used to pick the probe among attached devices
        interface_index: Interface to claim on the opened device
        endpoint_in_index: Index of the inbound endpoint on that interface
        endpoint_out_index: Index of the outbound endpoint on that interface
        read_timeout_ms: Timeout of every bounded read
        write_timeout_ms: Timeout of a single command byte write
        command_buffer_size: Maximum size of one command response frame
        bulk_buffer_size: Read size used by the listener and read_all()
        drift_limit_us: Drift above this value is reported as high drift
        join_timeout_s: How long stop() waits for the polling thread
        baudrate: Baud rate for serial transports (ignored by USB CDC devices)
        detach_poll_interval_s: Port list polling period of the detach monitor
        fire_and_forget_while_listening: If True, command() only sends while
            the listener is running; if False it raises ListenerStateError
    """
    vendor_id: int = TEENSY_VID
    interface_index: int = INTERFACE_INDEX
    endpoint_in_index: int = ENDPOINT_IN_INDEX
    endpoint_out_index: int = ENDPOINT_OUT_INDEX
    read_timeout_ms: int = READ_TIMEOUT_MS
    write_timeout_ms: int = WRITE_TIMEOUT_MS
    command_buffer_size: int = COMMAND_BUFFER_SIZE
    bulk_buffer_size: int = BULK_BUFFER_SIZE
    drift_limit_us: int = DEFAULT_DRIFT_LIMIT_US
    join_timeout_s: float = JOIN_TIMEOUT
    baudrate: int = CONNECTION_BAUD
    detach_poll_interval_s: float = DETACH_POLL_INTERVAL
    fire_and_forget_while_listening: bool = True
