"""Exception hierarchy for the latency probe library."""
from __future__ import annotations

from typing import Optional


class ProbeError(RuntimeError):
    """Base class for all probe errors."""
    pass


class TransportError(ProbeError):
    """Raised when the probe is not connected or an I/O operation fails."""
    pass


class ProtocolError(ProbeError):
    """Raised when the probe answers with something other than what was expected."""
    def __init__(self, message: str, expected: Optional[str] = None, actual: Optional[str] = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class ListenerStateError(ProbeError):
    """Raised when an operation is invalid for the current listener state."""
    pass


class ParseError(ProbeError):
    """Raised when a trigger frame or numeric reply cannot be parsed."""
    pass


class PermissionDenied(ProbeError):
    """Raised when access to the probe device is refused."""
    pass


class DeviceNotFound(ProbeError):
    """Raised when no matching probe device is attached."""
    pass
