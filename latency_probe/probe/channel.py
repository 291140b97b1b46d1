"""Synchronous command/acknowledgment exchange with the probe.

Each command is one ASCII byte. The probe answers with one frame that starts
with the command's case-flipped acknowledgment byte, optionally followed by a
payload:

    host  -> 'V'
    probe -> 'v2\\n'        (ack 'v', payload '2')

Reading the reply requires exclusive use of the inbound endpoint, so every
read claims the link's reader token and fails fast while the trigger
listener owns it.
"""
from __future__ import annotations

import logging
from typing import Optional

from ..config import ProbeConfig
from ..errors import ListenerStateError, ParseError, ProtocolError, TransportError
from ..models import ListenerState, TriggerMessage
from ..protocol.commands import CMD_GSHOCK, TRIGGER_ACK, encode_command, flip_case
from .link import ProbeLink
from .listener import TriggerListener

logger = logging.getLogger(__name__)


class CommandChannel:
    """Request/response protocol on top of a connected ProbeLink.

    Example:
        >>> version = channel.command(CMD_VERSION)
        >>> version
        '2'
        >>> channel.command(CMD_SYNC_ZERO)   # ack 'z', empty payload
        ''
    """

    def __init__(
        self,
        link: ProbeLink,
        listener: TriggerListener,
        config: Optional[ProbeConfig] = None,
    ):
        self._link = link
        self._listener = listener
        self._config = config or ProbeConfig()

    def send_byte(self, c: str) -> None:
        """Write a single command byte.

        Raises:
            TransportError: If not connected or the write fails
        """
        self._link.require_connected()
        self._link.transport.bulk_write(
            self._link.handle,
            self._link.endpoint_out,
            encode_command(c),
            self._config.write_timeout_ms,
        )

    def read_one(self) -> str:
        """Read one response frame.

        Raises:
            ListenerStateError: If the listener is not stopped
            TransportError: If not connected or nothing arrives in time
        """
        self._require_listener_stopped()
        self._link.require_connected()

        with self._link.reader.claim("command"):
            data = self._link.transport.bulk_read(
                self._link.handle,
                self._link.endpoint_in,
                self._config.command_buffer_size,
                self._config.read_timeout_ms,
            )

        if data is None:
            raise TransportError("Timed out reading from probe")

        text = data.decode('ascii', errors='replace')
        logger.debug(f"read_one() received: {text!r}")
        return text

    def send_receive(self, c: str) -> str:
        """Send a command byte and return the raw reply frame."""
        self.send_byte(c)
        return self.read_one()

    def command(self, cmd: str, expected_ack: Optional[str] = None) -> str:
        """Send a command and check its acknowledgment.

        Args:
            cmd: Command character
            expected_ack: First character of a valid reply; defaults to the
                case-flipped command

        Returns:
            Reply payload with the ack stripped and whitespace trimmed.
            Empty if the listener is running (the command is only sent and
            any reply goes to the listener).

        Raises:
            ProtocolError: If the reply does not start with expected_ack
            ListenerStateError: If the listener is starting or stopping
            TransportError: If not connected or the exchange times out
        """
        if expected_ack is None:
            expected_ack = flip_case(cmd)

        if (self._listener.state is ListenerState.RUNNING
                and self._config.fire_and_forget_while_listening):
            # TODO: correlate the reply once the listener can route acks
            self.send_byte(cmd)
            return ""

        self._require_listener_stopped()
        response = self.send_receive(cmd)
        if not response.startswith(expected_ack):
            raise ProtocolError(
                f'Unexpected response from probe. Expected "{expected_ack}", got "{response}"',
                expected=expected_ack,
                actual=response,
            )
        return response[len(expected_ack):].strip()

    def read_all(self) -> str:
        """Read everything the probe sends until a read times out.

        Text sent as separate packets on the probe side arrives in separate
        reads; this concatenates them.

        Raises:
            ListenerStateError: If the listener is not stopped
        """
        self._require_listener_stopped()
        self._link.require_connected()

        chunks = []
        with self._link.reader.claim("read_all"):
            while True:
                data = self._link.transport.bulk_read(
                    self._link.handle,
                    self._link.endpoint_in,
                    self._config.bulk_buffer_size,
                    self._config.read_timeout_ms,
                )
                if data is None:
                    break
                chunks.append(data)

        text = b"".join(chunks).decode('ascii', errors='replace')
        logger.debug(f"read_all() received: {text!r}")
        return text

    def read_trigger_message(self, cmd: str) -> TriggerMessage:
        """Send a command whose reply is a trigger frame and parse it.

        Raises:
            ParseError: If the reply body is not a valid trigger message
        """
        return TriggerMessage.parse(self.command(cmd, TRIGGER_ACK))

    def read_last_shock_time(self) -> int:
        """Ask the probe for the time of the last detected shock.

        Raises:
            ParseError: If the reply is not an integer
        """
        reply = self.send_receive(CMD_GSHOCK)
        logger.info(f"Received shock reply: {reply!r}")
        try:
            return int(reply.strip())
        except ValueError as e:
            raise ParseError(f"Bad reply for shock time: {reply!r}") from e

    def _require_listener_stopped(self) -> None:
        state = self._listener.state
        if state is not ListenerState.STOPPED:
            raise ListenerStateError(f"Listener is {state.value}")
