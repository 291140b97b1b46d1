"""Abstract collaborators the probe library talks to.

The probe core never touches hardware directly. It is written against these
interfaces so the same connection, command and listener logic can run on a
pyserial port, a raw USB stack, or a scripted mock.

Key principles:
- Every wait is bounded by an explicit timeout
- Timeouts on reads are normal and reported as None, not raised
- Real failures raise TransportError
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import Future
from typing import Any, Callable, List, Optional, Tuple

from ..models import DeviceInfo, Endpoint


class Transport(ABC):
    """Raw bulk-transfer access to an attached device.

    A handle returned by open() is opaque to callers; it is only ever passed
    back into the same transport (or to a TimeSyncEngine built for it).
    """

    @abstractmethod
    def open(self, device: DeviceInfo) -> Any:
        """Open the device.

        Returns:
            Opaque connection handle

        Raises:
            TransportError: If the device cannot be opened
        """
        pass

    @abstractmethod
    def claim_interface(self, handle: Any, interface_index: int) -> None:
        """Claim exclusive access to an interface of the opened device.

        Raises:
            TransportError: If the interface cannot be claimed
        """
        pass

    @abstractmethod
    def resolve_endpoints(
        self,
        handle: Any,
        interface_index: int,
        in_index: int,
        out_index: int,
    ) -> Tuple[Endpoint, Endpoint]:
        """Look up the (inbound, outbound) endpoint pair of a claimed interface."""
        pass

    @abstractmethod
    def bulk_read(
        self,
        handle: Any,
        endpoint: Endpoint,
        length: int,
        timeout_ms: int,
    ) -> Optional[bytes]:
        """Read up to length bytes from an inbound endpoint.

        Returns:
            Bytes received (possibly empty for a zero-length packet),
            or None if nothing arrived before the timeout

        Raises:
            TransportError: On I/O failure (e.g. device unplugged)
        """
        pass

    @abstractmethod
    def bulk_write(
        self,
        handle: Any,
        endpoint: Endpoint,
        data: bytes,
        timeout_ms: int,
    ) -> int:
        """Write data to an outbound endpoint.

        Returns:
            Number of bytes written

        Raises:
            TransportError: On I/O failure or write timeout
        """
        pass

    @abstractmethod
    def close(self, handle: Any) -> None:
        """Release the handle. Should be safe to call on a broken handle."""
        pass


class DeviceEnumerator(ABC):
    """Lists devices currently attached to the host."""

    @abstractmethod
    def list_connected_devices(self) -> List[DeviceInfo]:
        pass


class PermissionBroker(ABC):
    """Grants or denies access to a device, possibly asking the user."""

    @abstractmethod
    def request_permission(self, device: DeviceInfo) -> Future:
        """Request access to a device.

        Returns:
            Future resolving to True if access was granted, False otherwise
        """
        pass


class DetachMonitor(ABC):
    """Notifies when a watched device is removed from the host."""

    @abstractmethod
    def watch(self, device: DeviceInfo, callback: Callable[[DeviceInfo], None]) -> None:
        """Invoke callback(device) once the device disappears."""
        pass

    @abstractmethod
    def unwatch(self, device: DeviceInfo) -> None:
        pass

    def shutdown(self) -> None:
        """Release any background resources."""
        pass
