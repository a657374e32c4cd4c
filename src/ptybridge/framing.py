"""Line framer: turns the helper's stdout byte stream into messages."""

from __future__ import annotations

import logging
from typing import Callable

from ptybridge.errors import ProtocolError
from ptybridge.protocol import Message, UnknownMessage, decode_message

logger = logging.getLogger(__name__)


class LineFramer:
    """Accumulates bytes and yields one message per complete line.

    Chunk boundaries are irrelevant: a message split over several
    ``feed()`` calls, or several messages in one call, decode the same as
    the whole stream fed at once. Lines are decoded as bytes only once they
    are complete, so a UTF-8 sequence split across chunks is never mangled.

    A malformed line is reported (log + ``on_error``) and skipped; the rest
    of the buffer is still processed. Empty lines (and a trailing ``\\r``)
    are tolerated: they carry no message and are skipped with a debug log.
    A line with an unrecognized ``type`` comes back as ``UnknownMessage``
    for the caller to ignore.
    """

    def __init__(self, on_error: Callable[[ProtocolError], None] | None = None) -> None:
        self._buffer = bytearray()
        self._on_error = on_error

    def feed(self, data: bytes) -> list[Message | UnknownMessage]:
        """Append ``data`` and return every message completed by it, in order."""
        self._buffer.extend(data)
        messages: list[Message | UnknownMessage] = []
        start = 0
        while True:
            end = self._buffer.find(b"\n", start)
            if end == -1:
                break
            line = bytes(self._buffer[start:end])
            start = end + 1
            if line.endswith(b"\r"):
                line = line[:-1]
            if not line.strip():
                logger.debug("Skipping blank line from helper")
                continue
            try:
                messages.append(decode_message(line))
            except ProtocolError as e:
                self._report(e)
        # Keep only the unterminated tail
        del self._buffer[:start]
        return messages

    def _report(self, error: ProtocolError) -> None:
        raw = error.line if isinstance(error.line, bytes) else error.line.encode()
        logger.warning("Malformed line from helper (%s): %r", error, raw[:200])
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception:
            logger.exception("Error in protocol error callback")

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet terminated by a newline."""
        return len(self._buffer)

    def reset(self) -> None:
        """Discard any partial line."""
        self._buffer.clear()
