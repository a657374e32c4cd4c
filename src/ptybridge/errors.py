"""Exception types for ptybridge."""

from __future__ import annotations


class PtyBridgeError(Exception):
    """Base class for all ptybridge errors."""


class HelperSpawnError(PtyBridgeError):
    """The helper process could not be started."""


class BridgeClosedError(PtyBridgeError):
    """The bridge was shut down or lost its helper process."""


class ProtocolError(PtyBridgeError):
    """A line from the helper could not be decoded into a message.

    The raw line is kept on ``line`` (without its newline) so the caller can
    log or inspect it.
    """

    def __init__(self, message: str, line: bytes | str = b"") -> None:
        super().__init__(message)
        self.line = line


class SessionOptionsError(PtyBridgeError, ValueError):
    """``spawn()`` was given options the protocol cannot carry."""
