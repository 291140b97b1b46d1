"""Line framing for byte-stream transports.

A serial port has no packet boundaries: one read may return several probe
lines, or only part of one. LineBuffer collects the raw bytes and hands them
back one newline-terminated line at a time.
"""
import logging
import threading

logger = logging.getLogger(__name__)


class LineBuffer:
    """Thread-safe byte buffer that yields complete lines."""

    def __init__(self, max_size: int = 64 * 1024):
        """Initialize buffer.

        Args:
            max_size: Maximum buffer size in bytes. If exceeded, oldest data is dropped.
        """
        self._max_size = max_size
        self._buffer = bytearray()
        self._lock = threading.Lock()

    def write(self, data: bytes) -> None:
        if not data:
            return

        with self._lock:
            self._buffer.extend(data)
            overflow = len(self._buffer) - self._max_size
            if overflow > 0:
                del self._buffer[:overflow]
                logger.warning(f"Line buffer overflow: dropped {overflow} bytes of old data.")

    def read_line(self, max_length: int = -1) -> bytes:
        """Take one line ending in \\n off the buffer.

        Args:
            max_length: Longest line to return. Without a newline in the
                first max_length bytes, those bytes are returned as is so an
                unterminated stream cannot stall the reader.

        Returns:
            Line bytes including \\n, or empty bytes if no complete line is buffered.
        """
        with self._lock:
            idx = self._buffer.find(b'\n')
            if idx == -1:
                if 0 < max_length <= len(self._buffer):
                    end = max_length
                else:
                    return b""
            else:
                end = idx + 1
                if 0 < max_length < end:
                    end = max_length

            line = bytes(self._buffer[:end])
            del self._buffer[:end]
            return line

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._buffer)

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()
