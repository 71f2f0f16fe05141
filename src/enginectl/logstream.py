"""
Decoder for the engine's multiplexed stdout/stderr log stream.

Wire format, one frame after another:

    [stream:1][0:3][length:4 big-endian][payload:length]

where stream is 1 for stdout and 2 for stderr. The log endpoint body is a
concatenation of such frames and arrives in fetch-sized chunks that cut
frames at arbitrary byte offsets, so the decoder buffers until a whole
frame is available and never guesses. An unknown stream byte is a
ProtocolError; the decoder does not scan for the next plausible header.
"""

import logging
import struct
from collections import deque
from typing import Deque, Iterable, Iterator, List, Optional

from docker.utils.socket import STDERR as STDERR_FRAME
from docker.utils.socket import STDOUT as STDOUT_FRAME

from .errors import ProtocolError
from .model import LogLine, STDOUT, STDERR

logger = logging.getLogger(__name__)

HEADER_SIZE = 8
_HEADER = struct.Struct('>BxxxL')
_STREAMS = {STDOUT_FRAME: STDOUT, STDERR_FRAME: STDERR}


def _payload_lines(stream: str, payload: bytes) -> Iterator[LogLine]:
    text = payload.decode('utf-8', errors='replace')
    for line in text.split('\n'):
        line = line.rstrip()
        if line:
            yield LogLine(stream, line)


class LogStreamDecoder:
    """Incremental frame decoder; one instance per log stream."""

    def __init__(self):
        self._buffer = bytearray()
        self._error: Optional[ProtocolError] = None

    @property
    def pending(self) -> int:
        """Bytes buffered while waiting for the rest of a frame."""
        return len(self._buffer)

    @property
    def failed(self) -> bool:
        return self._error is not None

    def feed(self, chunk: bytes) -> Iterator[LogLine]:
        """
        Buffer chunk and return a lazy iterator over the lines it completes.

        Frames are consumed from the buffer as the iterator advances, so
        lines always come out in wire order no matter how the input was
        split across calls.

        Raises:
            ProtocolError: (while iterating) a frame header names an
                unknown stream; the decoder stays failed afterwards
        """
        if self._error is None:
            self._buffer += chunk
        return self._drain()

    def _drain(self) -> Iterator[LogLine]:
        while True:
            if self._error is not None:
                raise self._error
            if len(self._buffer) < HEADER_SIZE:
                return
            stream_byte, length = _HEADER.unpack_from(self._buffer)
            stream = _STREAMS.get(stream_byte)
            if stream is None:
                self._error = ProtocolError(
                    f"Unrecognized log stream byte 0x{stream_byte:02x} in frame header"
                )
                logger.warning(str(self._error))
                raise self._error
            end = HEADER_SIZE + length
            if len(self._buffer) < end:
                return
            payload = bytes(self._buffer[HEADER_SIZE:end])
            del self._buffer[:end]
            yield from _payload_lines(stream, payload)

    def decode_all(self, chunks: Iterable[bytes]) -> List[LogLine]:
        lines: List[LogLine] = []
        for chunk in chunks:
            lines.extend(self.feed(chunk))
        return lines


def decode(data: bytes) -> List[LogLine]:
    """Decode a complete log body in one call."""
    return list(LogStreamDecoder().feed(data))


class LogRing:
    """Bounded, ordered line buffer that keeps the newest max_lines."""

    def __init__(self, max_lines: int = 1000):
        self.max_lines = max_lines
        self._lines: Deque[LogLine] = deque(maxlen=max_lines)

    def append(self, line: LogLine) -> None:
        self._lines.append(line)

    def extend(self, lines: Iterable[LogLine]) -> None:
        self._lines.extend(lines)

    def clear(self) -> None:
        self._lines.clear()

    def lines(self) -> List[LogLine]:
        return list(self._lines)

    def texts(self) -> List[str]:
        return [line.text for line in self._lines]

    def __len__(self) -> int:
        return len(self._lines)
