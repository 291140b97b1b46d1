"""Connection lifecycle of the latency probe.

ConnectionManager is the single owner of the transport handle. It is
constructed once at application startup and passed to whoever needs the
probe; close() tears it down at shutdown.

Connecting is asynchronous because access to the device may need to be
granted first:

    connect() -> enumerate -> select -> request_permission()
                                              |
                        granted: open -> claim -> endpoints -> watch detach
                                 -> handshake -> connect callbacks
                        denied:  log, stay disconnected
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from typing import Callable, List, Optional

from ..config import ProbeConfig
from ..errors import DeviceNotFound, PermissionDenied, ProbeError, TransportError
from ..models import DeviceInfo
from ..transport.base import DetachMonitor, DeviceEnumerator, PermissionBroker, Transport
from ..transport.detach import SerialDetachMonitor
from ..transport.finder import DeviceSelector, select_probe_device
from ..transport.serial import SerialDeviceEnumerator, SerialPermissionBroker, SerialTransport
from .channel import CommandChannel
from .clock import ClockSyncCoordinator, TimeSyncEngine
from .link import ProbeLink
from .listener import TriggerListener

logger = logging.getLogger(__name__)

ConnectCallback = Callable[[], None]


class ConnectFuture(Future):
    """Future of one connection attempt.

    Resolves to True or False. When False, error holds the reason.
    """

    def __init__(self):
        super().__init__()
        self.error: Optional[ProbeError] = None


class ConnectionManager:
    """Owns the probe connection and composes the protocol components.

    Responsibilities:
    - Find the probe and obtain permission to use it
    - Open the transport, claim the interface, resolve endpoints
    - Run the version/clock handshake
    - Tear everything down in a safe order on disconnect or detach

    Example:
        >>> manager = ConnectionManager.for_serial(engine)
        >>> manager.register_connect_callback(lambda: print("probe ready"))
        >>> future = manager.connect()
        >>> future.result(timeout=5.0)
        True
        >>> manager.channel.command(CMD_PING)
        ''
        >>> manager.close()
    """

    def __init__(
        self,
        transport: Transport,
        enumerator: DeviceEnumerator,
        permissions: PermissionBroker,
        engine: TimeSyncEngine,
        detach_monitor: Optional[DetachMonitor] = None,
        config: Optional[ProbeConfig] = None,
    ):
        self._config = config or ProbeConfig()
        self._enumerator = enumerator
        self._permissions = permissions
        self._detach_monitor = detach_monitor

        self._link = ProbeLink(transport)
        self._listener = TriggerListener(self._link, self._config)
        self._channel = CommandChannel(self._link, self._listener, self._config)
        self._clock = ClockSyncCoordinator(
            self._link, self._channel, self._listener, engine, self._config
        )

        self._connect_callbacks: List[ConnectCallback] = []
        self._callback_lock = threading.Lock()
        self._lifecycle_lock = threading.RLock()
        self._ready = False

    @classmethod
    def for_serial(
        cls,
        engine: TimeSyncEngine,
        config: Optional[ProbeConfig] = None,
    ) -> ConnectionManager:
        """Build a manager wired to pyserial collaborators."""
        config = config or ProbeConfig()
        enumerator = SerialDeviceEnumerator()
        return cls(
            transport=SerialTransport(baudrate=config.baudrate),
            enumerator=enumerator,
            permissions=SerialPermissionBroker(),
            engine=engine,
            detach_monitor=SerialDetachMonitor(enumerator, interval=config.detach_poll_interval_s),
            config=config,
        )

    def __enter__(self) -> ConnectionManager:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def channel(self) -> CommandChannel:
        return self._channel

    @property
    def listener(self) -> TriggerListener:
        return self._listener

    @property
    def clock(self) -> ClockSyncCoordinator:
        return self._clock

    @property
    def device(self) -> Optional[DeviceInfo]:
        return self._link.device

    def is_connected(self) -> bool:
        return self._link.is_connected()

    def register_connect_callback(self, callback: ConnectCallback) -> None:
        """Run callback once the probe is connected.

        If the probe is already connected and its handshake has succeeded,
        the callback runs immediately on the calling thread. Otherwise it runs
        once, after the next successful handshake.
        """
        with self._callback_lock:
            if not self._ready:
                self._connect_callbacks.append(callback)
                return
        self._run_callback(callback)

    def connect(self, selector: Optional[DeviceSelector] = None) -> Optional[ConnectFuture]:
        """Find the probe and start connecting to it.

        Args:
            selector: Picks a device from the attached ones; defaults to the
                first device with the configured vendor id

        Returns:
            ConnectFuture resolving to True once connected and synced, or
            False if permission was denied or the connection failed (its
            error attribute then says why). None if no probe was found
            (not an error; try again later).
        """
        try:
            devices = self._enumerator.list_connected_devices()
        except Exception as e:
            logger.error(f"Failed to list devices: {e}")
            return None

        if selector is None:
            device = select_probe_device(devices, vendor_id=self._config.vendor_id)
        else:
            device = selector(devices)

        if device is None:
            logger.info("Probe not found.")
            return None

        return self.connect_device(device)

    def connect_device(self, device: DeviceInfo) -> ConnectFuture:
        """Request permission for a known device and connect once granted."""
        result = ConnectFuture()

        logger.info("Requesting permission for USB device.")
        try:
            permission = self._permissions.request_permission(device)
        except Exception as e:
            logger.error(f"Permission request failed: {e}")
            result.error = PermissionDenied(f"Permission request failed: {e}")
            result.set_result(False)
            return result

        def on_permission(done: Future) -> None:
            try:
                granted = bool(done.result())
            except Exception as e:
                logger.error(f"Permission request failed: {e}")
                granted = False
            try:
                error = self._on_permission_result(device, granted)
            except Exception as e:
                logger.error(f"Unexpected error while connecting: {e}")
                error = TransportError(str(e))
            result.error = error
            result.set_result(error is None)

        permission.add_done_callback(on_permission)
        return result

    def connect_and_wait(
        self,
        timeout: Optional[float] = None,
        selector: Optional[DeviceSelector] = None,
    ) -> None:
        """Connect and block until the handshake has finished.

        Raises:
            DeviceNotFound: If no probe is attached
            PermissionDenied: If access to the probe was refused
            ProbeError: If opening the probe or the handshake failed
        """
        future = self.connect(selector)
        if future is None:
            raise DeviceNotFound("No probe found")
        if not future.result(timeout=timeout):
            raise future.error or TransportError("Connection to probe failed")

    def disconnect(self) -> None:
        """Stop the listener, then release the transport handle.

        Safe to call when not connected.
        """
        with self._lifecycle_lock:
            with self._callback_lock:
                self._ready = False

            if not self._listener.is_stopped():
                self._listener.stop()

            device = self._link.device
            if device is None and self._link.handle is None:
                return

            self._release()
            if device is not None and self._detach_monitor is not None:
                self._detach_monitor.unwatch(device)
            logger.info("Disconnected from probe")

    def close(self) -> None:
        """Disconnect and stop all background threads."""
        self.disconnect()
        self._listener.shutdown()
        if self._detach_monitor is not None:
            self._detach_monitor.shutdown()

    # Internal methods

    def _on_permission_result(self, device: DeviceInfo, granted: bool) -> Optional[ProbeError]:
        """Open and handshake a device once permission is known.

        Returns:
            None once connected, otherwise the error that ended this attempt
        """
        if not granted:
            error = PermissionDenied(f"Could not get permission to open {device.name}")
            logger.warning(str(error))
            return error

        with self._lifecycle_lock:
            if self.is_connected():
                logger.warning("Already connected")
                if self._link.device == device:
                    return None
                return TransportError(f"Already connected to {self._link.device.name}")

            try:
                self._open(device)
            except Exception as e:
                logger.error(f"Failed to open probe {device.name}: {e}")
                self._release()
                return e if isinstance(e, ProbeError) else TransportError(str(e))

            if self._detach_monitor is not None:
                self._detach_monitor.watch(device, self._on_detached)

            try:
                self._clock.handshake()
            except ProbeError as e:
                logger.error(f"Unable to communicate with probe: {e}")
                self.disconnect()
                return e

            with self._callback_lock:
                self._ready = True
                callbacks = list(self._connect_callbacks)
                self._connect_callbacks.clear()

        for callback in callbacks:
            self._run_callback(callback)
        return None

    def _open(self, device: DeviceInfo) -> None:
        transport = self._link.transport
        handle = transport.open(device)
        # Keep the handle reachable for _release() if a later step fails
        self._link.attach(device, handle, None, None)

        transport.claim_interface(handle, self._config.interface_index)
        logger.info("Interface claimed successfully")

        endpoint_in, endpoint_out = transport.resolve_endpoints(
            handle,
            self._config.interface_index,
            self._config.endpoint_in_index,
            self._config.endpoint_out_index,
        )
        self._link.attach(device, handle, endpoint_in, endpoint_out)

    def _release(self) -> None:
        # The listener has been stopped; wait out a read still in flight
        # before the handle goes away.
        try:
            self._link.reader.acquire(
                "disconnect",
                timeout=self._config.join_timeout_s + self._config.read_timeout_ms / 1000.0,
            )
        except ProbeError as e:
            logger.error(f"Releasing transport while a reader is active: {e}")
            self._link.release()
            return

        try:
            self._link.release()
        finally:
            self._link.reader.release()

    def _on_detached(self, device: DeviceInfo) -> None:
        if self.is_connected() and self._link.device == device:
            logger.info("Probe was detached")
            self.disconnect()

    @staticmethod
    def _run_callback(callback: ConnectCallback) -> None:
        try:
            callback()
        except Exception as e:
            logger.error(f"Error in connect callback: {e}")
