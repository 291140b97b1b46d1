"""Shared connection state and in-endpoint ownership.

ProbeLink is the one place that knows whether the probe is connected and
which handle/endpoints are in use. ConnectionManager attaches and releases
it; CommandChannel, TriggerListener and ClockSyncCoordinator only read it.

EndpointGuard is the reader ownership token: whoever reads the inbound
endpoint (a synchronous command, the listener thread, or the time-sync
engine) must hold it, so two readers can never interleave.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from ..errors import ListenerStateError, TransportError
from ..models import DeviceInfo, Endpoint
from ..transport.base import Transport

logger = logging.getLogger(__name__)


class EndpointGuard:
    """Non-blocking single-owner token for the inbound endpoint.

    A plain Lock is used (not an RLock) because the listener claims the token
    on the caller's thread in start() and releases it from its polling thread.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._owner: Optional[str] = None

    @property
    def owner(self) -> Optional[str]:
        return self._owner

    def acquire(self, owner: str, timeout: Optional[float] = None) -> None:
        """Take the token.

        Args:
            owner: Name of the reader, used in error messages
            timeout: Seconds to wait for the current owner; None fails at once

        Raises:
            ListenerStateError: If another reader holds it
        """
        if timeout is None:
            acquired = self._lock.acquire(blocking=False)
        else:
            acquired = self._lock.acquire(timeout=timeout)
        if not acquired:
            raise ListenerStateError(
                f"Inbound endpoint busy: held by {self._owner}, requested by {owner}"
            )
        self._owner = owner

    def release(self) -> None:
        self._owner = None
        self._lock.release()

    @contextmanager
    def claim(self, owner: str) -> Iterator[None]:
        self.acquire(owner)
        try:
            yield
        finally:
            self.release()

    def is_held(self) -> bool:
        return self._lock.locked()


class ProbeLink:
    """Transport handle and endpoint pair of the currently connected probe."""

    def __init__(self, transport: Transport):
        self.transport = transport
        self.reader = EndpointGuard()

        self._lock = threading.Lock()
        self._device: Optional[DeviceInfo] = None
        self._handle: Any = None
        self._endpoint_in: Optional[Endpoint] = None
        self._endpoint_out: Optional[Endpoint] = None

    @property
    def device(self) -> Optional[DeviceInfo]:
        return self._device

    @property
    def handle(self) -> Any:
        return self._handle

    @property
    def endpoint_in(self) -> Optional[Endpoint]:
        return self._endpoint_in

    @property
    def endpoint_out(self) -> Optional[Endpoint]:
        return self._endpoint_out

    def is_connected(self) -> bool:
        return self._endpoint_in is not None and self._endpoint_out is not None

    def require_connected(self) -> None:
        if not self.is_connected():
            raise TransportError("Not connected to probe")

    def attach(
        self,
        device: DeviceInfo,
        handle: Any,
        endpoint_in: Optional[Endpoint],
        endpoint_out: Optional[Endpoint],
    ) -> None:
        with self._lock:
            self._device = device
            self._handle = handle
            self._endpoint_in = endpoint_in
            self._endpoint_out = endpoint_out

    def release(self) -> None:
        """Close the handle and forget the endpoints.

        Callers must make sure no reader holds the token first.
        """
        with self._lock:
            handle = self._handle
            self._endpoint_in = None
            self._endpoint_out = None
            self._handle = None
            self._device = None

        if handle is not None:
            try:
                self.transport.close(handle)
            except Exception as e:
                logger.error(f"Error closing transport handle: {e}")
