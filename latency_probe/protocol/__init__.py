"""Wire protocol of the latency probe: command bytes and trigger frames."""

from .commands import PROTOCOL_VERSION, TRIGGER_ACK, encode_command, flip_case
from .parser import TriggerParser

__all__ = [
    "PROTOCOL_VERSION",
    "TRIGGER_ACK",
    "encode_command",
    "flip_case",
    "TriggerParser",
]
