"""Probe command bytes and the acknowledgment convention.

Every command is a single ASCII character. The probe acknowledges a command
by answering with the same letter in the opposite case ('V' -> 'v');
non-letters are acknowledged with themselves.
"""
from __future__ import annotations

PROTOCOL_VERSION = "2"

CMD_PING_DELAYED = 'D'      # Ping with a delay
CMD_RESET = 'F'             # Reset all vars
CMD_SYNC_SEND = 'I'         # Send some digits for clock sync
CMD_PING = 'P'              # Ping with a single byte
CMD_VERSION = 'V'           # Firmware protocol version
CMD_SYNC_READOUT = 'R'      # Read out sync times
CMD_GSHOCK = 'G'            # Send last shock time and watch for another shock
CMD_TIME_NOW = 'T'          # Current time
CMD_SYNC_ZERO = 'Z'         # Initial zero
CMD_AUTO_SCREEN_ON = 'C'    # Send a message on screen color change
CMD_AUTO_SCREEN_OFF = 'c'
CMD_SEND_LAST_SCREEN = 'E'  # Send info about last screen color change
CMD_BRIGHTNESS_CURVE = 'U'  # Probe screen for brightness vs time curve
CMD_AUTO_LASER_ON = 'L'     # Send messages on state change of the laser
CMD_AUTO_LASER_OFF = 'l'
CMD_SEND_LAST_LASER = 'J'
CMD_AUDIO = 'A'             # Start watching for signal on audio out line
CMD_BEEP = 'B'              # Generate a tone into the mic and send timestamp
CMD_MIDI = 'M'              # Start listening for a MIDI message
CMD_NOTE = 'N'              # Generate a MIDI NoteOn message

TRIGGER_ACK = 'G'


def flip_case(c: str) -> str:
    """Return the acknowledgment character for command character c.

    Examples:
        >>> flip_case('V')
        'v'
        >>> flip_case('r')
        'R'
        >>> flip_case('#')
        '#'
    """
    if c.isupper():
        return c.lower()
    if c.islower():
        return c.upper()
    return c


def encode_command(c: str) -> bytes:
    """Encode a command character as the single byte sent on the wire."""
    if len(c) != 1:
        raise ValueError(f"Command must be a single character, got {c!r}")
    return c.encode('ascii')
