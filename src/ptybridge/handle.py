"""Host-side proxy for one PTY session in the helper."""

from __future__ import annotations

import enum
import logging
from typing import Callable, Sequence

from ptybridge.protocol import ResizeMessage, SessionMessage, WriteMessage

logger = logging.getLogger(__name__)

DataCallback = Callable[[str], None]
ExitCallback = Callable[[], None]
SendFunc = Callable[[SessionMessage], None]


class HandleStatus(enum.Enum):
    """Lifecycle states for a session handle."""

    UNASSIGNED = "unassigned"  # 'create' sent, no 'created' yet
    ASSIGNED = "assigned"  # Helper id known, messages go straight out
    DEAD = "dead"  # Closed, timed out, helper gone, or destroyed


class SessionHandle:
    """A PTY session as seen by the host.

    Returned by ``ProcessBridge.spawn()`` before the helper has confirmed the
    session. Until then ``id`` is None and every write/resize is queued;
    when the bridge assigns the id the queue is flushed in the order the
    calls were made, with the id filled in on each message.

    Callbacks are single slots: registering again replaces the previous
    callback. Output that arrives before ``on_data()`` is called is lost.
    """

    def __init__(self, send: SendFunc, argv: Sequence[str] = ()) -> None:
        self.argv: list[str] = list(argv)
        self._send = send
        self._id: int | None = None
        self._status = HandleStatus.UNASSIGNED
        # Pre-assignment write queue
        self._queue: list[SessionMessage] = []
        self._data_callback: DataCallback | None = None
        self._exit_callback: ExitCallback | None = None

    @property
    def id(self) -> int | None:
        """Helper-assigned session id, or None while unassigned."""
        return self._id

    @property
    def status(self) -> HandleStatus:
        return self._status

    @property
    def alive(self) -> bool:
        return self._status != HandleStatus.DEAD

    @property
    def pending_writes(self) -> int:
        """Number of messages queued until the id is known."""
        return len(self._queue)

    # --- Host API ---

    def write(self, data: str) -> None:
        """Send input to the session, queueing it if the id is not known yet."""
        self._submit(WriteMessage(id=self._id, data=data))

    def resize(self, columns: int, rows: int) -> None:
        """Resize the session's terminal, queueing it like ``write()``.

        A size below 1x1 is dropped with a warning.
        """
        if columns < 1 or rows < 1:
            logger.warning(
                "Ignoring resize of session %s to %dx%d", self._label(), columns, rows
            )
            return
        self._submit(ResizeMessage(id=self._id, rows=rows, columns=columns))

    def on_data(self, callback: DataCallback) -> None:
        """Register the output callback, replacing any previous one."""
        self._data_callback = callback

    def on_exit(self, callback: ExitCallback) -> None:
        """Register the exit callback, replacing any previous one."""
        self._exit_callback = callback

    def destroy(self) -> None:
        """Release host-side state for this handle.

        Queued messages are dropped and both callbacks are cleared. Nothing
        is sent to the helper; the session itself ends with a 'closed'
        message or when the whole helper is terminated.
        """
        if self._status != HandleStatus.DEAD:
            logger.debug("Session %s destroyed by host", self._label())
        self._status = HandleStatus.DEAD
        self._queue.clear()
        self._data_callback = None
        self._exit_callback = None

    # --- Bridge API ---

    def assign(self, session_id: int) -> None:
        """Record the helper's id and flush queued messages.

        Called by the bridge when the matching 'created' arrives. A handle
        that already died keeps the id, so later events for it can be
        recognized and dropped, but nothing is flushed.
        """
        self._id = session_id
        if self._status == HandleStatus.DEAD:
            self._queue.clear()
            return
        self._status = HandleStatus.ASSIGNED
        queued, self._queue = self._queue, []
        if queued:
            logger.debug("Flushing %d queued messages for session %d", len(queued), session_id)
        for message in queued:
            message.id = session_id
            self._send(message)

    def deliver(self, data: str) -> None:
        """Pass helper output to the data callback, if any."""
        if self._status == HandleStatus.DEAD or self._data_callback is None:
            return
        try:
            self._data_callback(data)
        except Exception:
            logger.exception("Error in data callback for session %s", self._label())

    def exit(self) -> None:
        """Mark the session dead and fire the exit callback exactly once."""
        if self._status == HandleStatus.DEAD:
            return
        self._status = HandleStatus.DEAD
        self._queue.clear()
        logger.debug("Session %s exited", self._label())
        if self._exit_callback is not None:
            try:
                self._exit_callback()
            except Exception:
                logger.exception("Error in exit callback for session %s", self._label())

    # --- Internal ---

    def _submit(self, message: SessionMessage) -> None:
        if self._status == HandleStatus.DEAD:
            logger.debug("Dropping %s for dead session %s", message.type, self._label())
        elif self._status == HandleStatus.UNASSIGNED:
            self._queue.append(message)
        else:
            self._send(message)

    def _label(self) -> str:
        return str(self._id) if self._id is not None else "<unassigned>"

    def __repr__(self) -> str:
        return f"SessionHandle(id={self._id}, status={self._status.value}, argv={self.argv!r})"
