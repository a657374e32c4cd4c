"""Strategies for matching 'created' acknowledgements to pending sessions.

The default protocol has no correlation field: the helper answers 'create'
requests in the order they were sent, so the oldest pending session gets
the next 'created'. ``RequestIdResolver`` instead tags each 'create' with a
``request_id`` that a cooperating helper echoes back.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Protocol, runtime_checkable

from ptybridge.handle import SessionHandle
from ptybridge.protocol import CreatedMessage, CreateMessage

logger = logging.getLogger(__name__)


@runtime_checkable
class CreatedResolver(Protocol):
    """Protocol for 'created' matching strategies."""

    def register(self, handle: SessionHandle, message: CreateMessage) -> None:
        """Track ``handle`` as awaiting the ack for ``message`` (not yet sent)."""
        ...

    def resolve(self, message: CreatedMessage) -> SessionHandle | None:
        """Return the pending handle ``message`` belongs to, removing it."""
        ...

    def discard(self, handle: SessionHandle) -> bool:
        """Make ``handle`` ineligible for future matches. True if it was pending."""
        ...

    @property
    def pending_count(self) -> int: ...


class FifoResolver:
    """Match acks to sessions in creation order.

    Handles the host destroyed before their ack arrived stay queued: the
    helper still answers their 'create', and skipping them would shift
    every later assignment by one.
    """

    def __init__(self) -> None:
        self._pending: deque[SessionHandle] = deque()

    def register(self, handle: SessionHandle, message: CreateMessage) -> None:
        self._pending.append(handle)

    def resolve(self, message: CreatedMessage) -> SessionHandle | None:
        if not self._pending:
            return None
        return self._pending.popleft()

    def discard(self, handle: SessionHandle) -> bool:
        try:
            self._pending.remove(handle)
        except ValueError:
            return False
        return True

    @property
    def pending_count(self) -> int:
        return len(self._pending)


class RequestIdResolver:
    """Match acks by a ``request_id`` stamped on each 'create'.

    An ack without ``request_id`` (helper does not echo it) falls back to
    the oldest pending session, which is what ``FifoResolver`` would pick.
    """

    def __init__(self) -> None:
        self._pending: dict[int, SessionHandle] = {}
        self._next_request_id = 0

    def register(self, handle: SessionHandle, message: CreateMessage) -> None:
        request_id = self._next_request_id
        self._next_request_id += 1
        message.request_id = request_id
        self._pending[request_id] = handle

    def resolve(self, message: CreatedMessage) -> SessionHandle | None:
        if message.request_id is None:
            if not self._pending:
                return None
            oldest = next(iter(self._pending))
            return self._pending.pop(oldest)
        handle = self._pending.pop(message.request_id, None)
        if handle is None:
            logger.debug("No pending session for request_id %d", message.request_id)
        return handle

    def discard(self, handle: SessionHandle) -> bool:
        for request_id, pending in self._pending.items():
            if pending is handle:
                del self._pending[request_id]
                return True
        return False

    @property
    def pending_count(self) -> int:
        return len(self._pending)


def make_resolver(name: str) -> CreatedResolver:
    """Build a resolver from its config name ('fifo' or 'request_id')."""
    if name == "fifo":
        return FifoResolver()
    if name == "request_id":
        return RequestIdResolver()
    raise ValueError(f"Unknown resolver: {name!r}")
