"""PTY sessions hosted by an out-of-process helper.

A single helper process owns the pseudo-terminals; the host creates,
writes to, resizes and tears down sessions through a newline-delimited
JSON protocol on the helper's stdin/stdout.
"""

from ptybridge.bridge import BridgeStats, ProcessBridge, SpawnOptions
from ptybridge.config import BridgeConfig
from ptybridge.errors import (
    BridgeClosedError,
    HelperSpawnError,
    ProtocolError,
    PtyBridgeError,
    SessionOptionsError,
)
from ptybridge.handle import HandleStatus, SessionHandle
from ptybridge.resolver import CreatedResolver, FifoResolver, RequestIdResolver

__all__ = [
    "BridgeClosedError",
    "BridgeConfig",
    "BridgeStats",
    "CreatedResolver",
    "FifoResolver",
    "HandleStatus",
    "HelperSpawnError",
    "ProcessBridge",
    "ProtocolError",
    "PtyBridgeError",
    "RequestIdResolver",
    "SessionHandle",
    "SessionOptionsError",
    "SpawnOptions",
]
