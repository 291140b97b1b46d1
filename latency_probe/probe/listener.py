"""Background listener for asynchronous trigger frames.

While running, the listener is the only reader of the probe's inbound
endpoint. It polls with a bounded read timeout, and hands every non-empty
frame to a separate dispatcher thread, where the frame is classified, parsed
into a TriggerMessage and passed to the registered handler. Handler work
therefore never delays the next read.

State machine:

    STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED

stop() is cooperative: it only flips the state and waits for the polling
thread to notice, so stopping takes at most about one read timeout.
"""
from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Optional, Tuple

from ..config import ProbeConfig
from ..errors import ListenerStateError, ParseError, TransportError
from ..models import ListenerState, TriggerMessage
from ..protocol.parser import TriggerParser
from .link import ProbeLink

logger = logging.getLogger(__name__)

TriggerHandler = Callable[[TriggerMessage], None]

DISPATCH_QUEUE_SIZE = 1000
DISPATCH_POLL_INTERVAL = 0.1  # seconds


class CallbackDispatcher:
    """Runs posted callables one at a time on a dedicated thread."""

    def __init__(self, name: str = "ProbeCallbacks", maxsize: int = DISPATCH_QUEUE_SIZE):
        self._name = name
        self._queue: queue.Queue[Optional[Tuple[Callable[..., Any], tuple]]] = queue.Queue(maxsize=maxsize)
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._thread = threading.Thread(
                target=self._dispatch_loop,
                daemon=True,
                name=self._name
            )
            self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            thread = self._thread
            self._thread = None
        if thread and thread.is_alive() and thread is not threading.current_thread():
            # Wake up queue.get
            try:
                self._queue.put_nowait(None)
            except queue.Full:
                pass
            thread.join(timeout=timeout)

    def post(self, fn: Callable[..., Any], *args: Any) -> None:
        """Queue fn(*args) for the dispatcher thread.

        If the queue is full the item is dropped and logged.
        """
        try:
            self._queue.put_nowait((fn, args))
        except queue.Full:
            logger.warning("Callback queue full, dropped item")

    def _dispatch_loop(self) -> None:
        while self._running:
            try:
                item = self._queue.get(timeout=DISPATCH_POLL_INTERVAL)
            except queue.Empty:
                continue
            if item is None:
                continue
            fn, args = item
            try:
                fn(*args)
            except Exception as e:
                logger.error(f"Error in dispatched callback: {e}")


class TriggerListener:
    """Polls the probe for trigger frames on a background thread.

    Example:
        >>> listener.set_handler(lambda msg: print(msg.tag, msg.timestamp))
        >>> listener.start()
        >>> # ... probe reports events ...
        >>> listener.stop()
    """

    def __init__(
        self,
        link: ProbeLink,
        config: Optional[ProbeConfig] = None,
        dispatcher: Optional[CallbackDispatcher] = None,
    ):
        self._link = link
        self._config = config or ProbeConfig()
        self._dispatcher = dispatcher or CallbackDispatcher()

        self._state = ListenerState.STOPPED
        self._state_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

        self._handler: Optional[TriggerHandler] = None

    @property
    def state(self) -> ListenerState:
        return self._state

    def is_stopped(self) -> bool:
        return self._state is ListenerState.STOPPED

    def is_running(self) -> bool:
        return self._state is ListenerState.RUNNING

    def set_handler(self, handler: TriggerHandler) -> None:
        """Register the handler that receives parsed trigger messages.

        Replaces any previous handler. Frames already queued for dispatch are
        delivered to whichever handler is registered when they are dispatched.
        """
        self._handler = handler

    def clear_handler(self) -> None:
        self._handler = None

    def start(self) -> None:
        """Start polling for trigger frames.

        Raises:
            TransportError: If the probe is not connected
            ListenerStateError: If the listener is not stopped, or a
                synchronous read currently owns the inbound endpoint
        """
        self._link.require_connected()

        with self._state_lock:
            if self._state is not ListenerState.STOPPED:
                raise ListenerStateError(f"Listener is {self._state.value}")
            self._link.reader.acquire("listener")
            self._state = ListenerState.STARTING

        logger.info("Starting listener")
        self._dispatcher.start()

        thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="ProbeTriggerListener"
        )
        self._thread = thread
        try:
            thread.start()
        except RuntimeError:
            self._link.reader.release()
            with self._state_lock:
                self._state = ListenerState.STOPPED
            raise

    def stop(self) -> None:
        """Ask the polling thread to exit and wait for it."""
        with self._state_lock:
            if self._state is ListenerState.STOPPED:
                return
            self._state = ListenerState.STOPPING

        logger.info("Stopping listener")
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return

        thread.join(timeout=self._config.join_timeout_s)
        if thread.is_alive():
            logger.error(
                f"Error while stopping listener: thread still running after "
                f"{self._config.join_timeout_s}s"
            )
            return

        self._thread = None
        logger.info("Listener stopped")

    def shutdown(self) -> None:
        """Stop polling and the callback dispatcher."""
        self.stop()
        self._dispatcher.stop()

    def _poll_loop(self) -> None:
        with self._state_lock:
            # stop() may already have been called while STARTING
            if self._state is ListenerState.STARTING:
                self._state = ListenerState.RUNNING

        transport = self._link.transport
        handle = self._link.handle
        endpoint_in = self._link.endpoint_in

        try:
            while self._state is ListenerState.RUNNING:
                try:
                    data = transport.bulk_read(
                        handle,
                        endpoint_in,
                        self._config.bulk_buffer_size,
                        self._config.read_timeout_ms,
                    )
                except TransportError as e:
                    logger.error(f"Listener read error: {e}")
                    break

                if not data:
                    continue

                text = data.decode('ascii', errors='replace')
                logger.debug(f"Listener received data: {text!r}")
                if self._handler is None:
                    continue
                # One read may carry several frames
                for frame in text.splitlines():
                    if frame.strip():
                        self._dispatcher.post(self._deliver, frame)
        finally:
            self._link.reader.release()
            with self._state_lock:
                self._state = ListenerState.STOPPED

    def _deliver(self, frame: str) -> None:
        """Classify, parse and hand one frame to the current handler."""
        handler = self._handler
        if handler is None:
            return

        if not TriggerParser.is_trigger_frame(frame):
            logger.warning(f"Malformed trigger data: {frame!r}")
            return

        try:
            message = TriggerParser.parse_frame(frame)
        except ParseError as e:
            logger.warning(f"Failed to parse trigger frame: {e}")
            return

        try:
            handler(message)
        except Exception as e:
            logger.error(f"Error in trigger handler: {e}")
