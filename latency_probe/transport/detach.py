"""Detachment notification for serial probes.

pyserial has no hotplug events, so removal is detected by polling the port
list: a watched device whose port disappears is reported once and then
forgotten.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from ..config import DETACH_POLL_INTERVAL
from ..models import DeviceInfo
from .base import DetachMonitor, DeviceEnumerator
from .serial import SerialDeviceEnumerator

logger = logging.getLogger(__name__)

DetachCallback = Callable[[DeviceInfo], None]


class SerialDetachMonitor(DetachMonitor):
    """Polls the attached device list and reports removed devices."""

    def __init__(
        self,
        enumerator: Optional[DeviceEnumerator] = None,
        interval: float = DETACH_POLL_INTERVAL,
    ):
        self._enumerator = enumerator or SerialDeviceEnumerator()
        self._interval = interval

        self._watched: Dict[str, Tuple[DeviceInfo, DetachCallback]] = {}
        self._lock = threading.Lock()

        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def watch(self, device: DeviceInfo, callback: DetachCallback) -> None:
        with self._lock:
            self._watched[device.name] = (device, callback)
            if self._thread is None or not self._thread.is_alive():
                self._stop.clear()
                self._thread = threading.Thread(
                    target=self._poll_loop,
                    daemon=True,
                    name="ProbeDetachMonitor"
                )
                self._thread.start()

    def unwatch(self, device: DeviceInfo) -> None:
        with self._lock:
            self._watched.pop(device.name, None)

    def shutdown(self) -> None:
        self._stop.set()
        with self._lock:
            self._watched.clear()
            thread = self._thread
            self._thread = None
        # A callback may call shutdown() from the poll thread itself
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=self._interval + 1.0)

    def poll_once(self) -> None:
        """Compare watched devices against the current device list once."""
        try:
            present = {info.name for info in self._enumerator.list_connected_devices()}
        except Exception as e:
            logger.error(f"Failed to list devices: {e}")
            return

        with self._lock:
            gone = [
                self._watched.pop(name)
                for name in list(self._watched)
                if name not in present
            ]

        for device, callback in gone:
            logger.info(f"Device {device.name} was detached")
            try:
                callback(device)
            except Exception as e:
                logger.error(f"Error in detach callback: {e}")

    def _poll_loop(self) -> None:
        logger.debug("Detach monitor started")
        while not self._stop.is_set():
            self.poll_once()
            with self._lock:
                if not self._watched:
                    # Let watch() start a fresh thread next time
                    self._thread = None
                    break
            self._stop.wait(self._interval)
        logger.debug("Detach monitor stopped")
