"""Parser for asynchronous trigger frames sent by the probe.

Trigger frames are ASCII lines of the form ``G <TAG> <time> <value> <count>``
where TAG is a single uppercase letter. Pure functions with no side effects.
"""
from __future__ import annotations

import re

from ..errors import ParseError
from ..models import TriggerMessage
from .commands import TRIGGER_ACK

TRIGGER_FRAME_PATTERN = re.compile(r"G\s+[A-Z]\s+\d+\s+\d+.*", re.DOTALL)


class TriggerParser:
    """Classifies raw inbound frames and turns trigger frames into TriggerMessages."""

    @staticmethod
    def is_trigger_frame(frame: str) -> bool:
        """Check whether a raw frame is a trigger frame.

        Examples:
            >>> TriggerParser.is_trigger_frame("G T 12345 7")
            True
            >>> TriggerParser.is_trigger_frame("G t 12345 7")
            False
        """
        return TRIGGER_FRAME_PATTERN.fullmatch(frame.strip()) is not None

    @staticmethod
    def parse_frame(frame: str) -> TriggerMessage:
        """Parse a complete trigger frame, including its leading 'G'.

        Raises:
            ParseError: If the frame is not a well-formed trigger frame
        """
        if not TriggerParser.is_trigger_frame(frame):
            raise ParseError(f"Malformed trigger data: {frame!r}")
        body = frame.strip()[len(TRIGGER_ACK):].strip()
        return TriggerMessage.parse(body)
