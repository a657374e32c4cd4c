"""Many PTY sessions multiplexed over one helper process.

The helper owns the real pseudo-terminals. The host talks to it over the
helper's stdin/stdout using the line protocol in ``ptybridge.protocol``:

    spawn()    -> 'create' sent, handle returned at once (id unknown)
    'created'  -> oldest pending handle gets the id, queued writes flushed
    'output'   -> routed to the handle's data callback
    'closed'   -> handle marked dead, exit callback fired once
    destroy()  -> 'terminate' sent to the helper

Everything runs on one asyncio event loop thread; no locking is needed as
long as the host calls into the bridge from that thread.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from pydantic import BaseModel, ValidationError

from ptybridge.config import BridgeConfig
from ptybridge.errors import (
    BridgeClosedError,
    HelperSpawnError,
    ProtocolError,
    SessionOptionsError,
)
from ptybridge.framing import LineFramer
from ptybridge.handle import HandleStatus, SessionHandle
from ptybridge.protocol import (
    ClosedMessage,
    CreatedMessage,
    CreateMessage,
    Message,
    OutputMessage,
    TerminateMessage,
    UnknownMessage,
    encode_message,
)
from ptybridge.resolver import CreatedResolver, make_resolver

logger = logging.getLogger(__name__)

# Longest helper stderr line buffered before it is logged in pieces
_MAX_STDERR_LINE = 64 * 1024
# Longest stderr text put into a single log record
_MAX_STDERR_LOG = 1000


class ByteWriter(Protocol):
    """The part of ``asyncio.StreamWriter`` the bridge writes through."""

    def write(self, data: bytes) -> None: ...


@dataclass
class SpawnOptions:
    """Per-session options for ``ProcessBridge.spawn()``.

    ``rows``/``cols`` default to the bridge config (24x80 out of the box).
    """

    rows: int | None = None
    cols: int | None = None
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class BridgeStats:
    """Counters for protocol events the bridge absorbed instead of raising."""

    malformed_lines: int = 0
    unmatched_created: int = 0
    dropped_output: int = 0
    dropped_closed: int = 0
    unexpected_messages: int = 0
    timed_out: int = 0


class ProcessBridge:
    """Drives PTY sessions that live in a separate helper process.

    Use ``await ProcessBridge.start(config)`` to launch the helper. The
    constructor alone wires the bridge to any byte writer, with helper
    output pushed in through ``feed()``.
    """

    def __init__(
        self,
        stdin: ByteWriter,
        config: BridgeConfig | None = None,
        resolver: CreatedResolver | None = None,
    ) -> None:
        self._stdin = stdin
        self._config = config if config is not None else BridgeConfig()
        self._resolver = resolver if resolver is not None else make_resolver(self._config.resolver)
        self._framer = LineFramer(on_error=self._on_protocol_error)
        # Every handle ever spawned, in creation order. Never shrinks.
        self._handles: list[SessionHandle] = []
        self._by_id: dict[int, SessionHandle] = {}
        self._timers: dict[SessionHandle, asyncio.TimerHandle] = {}
        self._terminated = False
        self._helper_gone = False
        self._process: asyncio.subprocess.Process | None = None
        self._tasks: list[asyncio.Task] = []
        self.stats = BridgeStats()

    # --- Lifecycle ---

    @classmethod
    async def start(
        cls,
        config: BridgeConfig | None = None,
        resolver: CreatedResolver | None = None,
    ) -> ProcessBridge:
        """Launch the helper process and return a bridge connected to it.

        Raises:
            HelperSpawnError: No helper command is configured or the helper
                could not be started. Not retried.
        """
        if config is None:
            config = BridgeConfig.load()
        if not config.helper_command:
            raise HelperSpawnError("No helper command configured")

        env = {**os.environ, **config.helper_env}
        try:
            process = await asyncio.create_subprocess_exec(
                *config.helper_command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=config.helper_cwd,
            )
        except OSError as e:
            logger.error("Failed to start helper %s: %s", config.helper_command, e)
            raise HelperSpawnError(
                f"Failed to start helper {config.helper_command[0]!r}: {e}"
            ) from e

        assert process.stdin is not None
        bridge = cls(process.stdin, config=config, resolver=resolver)
        bridge._attach(process)
        logger.info(
            "Helper started: pid=%d cmd=%s",
            process.pid,
            " ".join(config.helper_command),
        )
        return bridge

    def _attach(self, process: asyncio.subprocess.Process) -> None:
        self._process = process
        self._tasks = [
            asyncio.create_task(self._read_stdout(process)),
            asyncio.create_task(self._read_stderr(process)),
        ]

    def destroy(self) -> None:
        """Tell the helper to shut down. Does not wait for it to exit."""
        if self._terminated:
            return
        self._send(TerminateMessage())
        self._terminated = True
        self._cancel_timers()
        logger.info("Sent terminate to helper")

    async def wait_closed(self, timeout: float | None = None) -> int | None:
        """Wait for the helper to exit, killing it after ``timeout`` seconds.

        Returns the helper's exit code, or None when no process is attached.
        """
        if self._process is None:
            return None
        if timeout is None:
            timeout = self._config.shutdown_timeout
        process = self._process
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        try:
            code = await asyncio.wait_for(process.wait(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Helper did not exit within %.1fs, killing", timeout)
            try:
                process.kill()
            except ProcessLookupError:
                logger.debug("Helper already gone: %d", process.pid)
            try:
                code = await asyncio.wait_for(process.wait(), timeout)
            except asyncio.TimeoutError:
                # Killed, but its pipes are still held open elsewhere
                code = process.returncode
        await self._finish_tasks(timeout)
        logger.info("Helper exited (code=%s)", code)
        return code

    async def _finish_tasks(self, timeout: float | None) -> None:
        """Let the reader tasks reach EOF, cancelling any still running after ``timeout``."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            logger.warning("Cancelling helper reader task still running after exit")
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def drain(self) -> None:
        """Wait until queued bytes have been handed to the helper's stdin."""
        if self._process is None or self._process.stdin is None:
            return
        try:
            await self._process.stdin.drain()
        except ConnectionError as e:
            logger.debug("Helper stdin closed while draining: %s", e)

    async def __aenter__(self) -> ProcessBridge:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.destroy()
        await self.wait_closed()

    # --- Sessions ---

    def spawn(
        self,
        file: str,
        args: Sequence[str] = (),
        options: SpawnOptions | None = None,
    ) -> SessionHandle:
        """Start ``file`` with ``args`` in a new PTY session.

        Returns immediately. The handle has no id until the helper answers;
        writes and resizes made before then are queued, not lost.

        Raises:
            BridgeClosedError: After ``destroy()`` or once the helper is gone.
            SessionOptionsError: Size or argv the protocol rejects (e.g. 0 rows).
        """
        if self.closed:
            raise BridgeClosedError("Bridge is closed; cannot spawn new sessions")

        options = options or SpawnOptions()
        rows = options.rows if options.rows is not None else self._config.default_rows
        columns = options.cols if options.cols is not None else self._config.default_columns
        argv = [file, *args]

        try:
            message = CreateMessage(
                argv=argv, rows=rows, columns=columns, env=dict(options.env)
            )
        except ValidationError as e:
            raise SessionOptionsError(f"Invalid spawn options for {file!r}: {e}") from e

        handle = SessionHandle(self._send, argv=argv)
        self._handles.append(handle)
        self._resolver.register(handle, message)
        self._send(message)
        self._schedule_create_timeout(handle)
        logger.debug("Spawn requested: %s (%dx%d)", " ".join(argv), columns, rows)
        return handle

    def get(self, session_id: int) -> SessionHandle | None:
        """Look up a handle by its assigned id."""
        return self._by_id.get(session_id)

    @property
    def handles(self) -> tuple[SessionHandle, ...]:
        """All handles spawned on this bridge, in creation order."""
        return tuple(self._handles)

    @property
    def closed(self) -> bool:
        """True after ``destroy()`` or once the helper's output has ended."""
        return self._terminated or self._helper_gone

    # --- Incoming stream ---

    def feed(self, data: bytes) -> None:
        """Process a chunk of the helper's stdout."""
        for message in self._framer.feed(data):
            self._dispatch(message)

    def _dispatch(self, message: Message | UnknownMessage) -> None:
        if isinstance(message, CreatedMessage):
            self._on_created(message)
        elif isinstance(message, OutputMessage):
            self._on_output(message)
        elif isinstance(message, ClosedMessage):
            self._on_closed(message)
        else:
            self.stats.unexpected_messages += 1
            logger.debug("Ignoring unexpected %r message from helper", message.type)

    def _on_created(self, message: CreatedMessage) -> None:
        handle = self._resolver.resolve(message)
        if handle is None:
            self.stats.unmatched_created += 1
            logger.warning("'created' for session %d with no pending spawn; ignoring", message.id)
            return

        timer = self._timers.pop(handle, None)
        if timer is not None:
            timer.cancel()
        previous = self._by_id.get(message.id)
        if previous is not None and previous.alive:
            logger.warning("Helper reused live session id %d", message.id)
        self._by_id[message.id] = handle
        handle.assign(message.id)
        logger.info("Session %d created: %s", message.id, " ".join(handle.argv))

    def _on_output(self, message: OutputMessage) -> None:
        handle = self._by_id.get(message.id)
        if handle is None or not handle.alive:
            self.stats.dropped_output += 1
            logger.debug("Dropping output for unknown or dead session %d", message.id)
            return
        handle.deliver(message.data)

    def _on_closed(self, message: ClosedMessage) -> None:
        handle = self._by_id.get(message.id)
        if handle is None:
            self.stats.dropped_closed += 1
            logger.debug("Dropping 'closed' for unknown session %d", message.id)
            return
        handle.exit()

    def _on_protocol_error(self, error: ProtocolError) -> None:
        self.stats.malformed_lines += 1

    # --- Outgoing stream ---

    def _send(self, message: BaseModel) -> None:
        if self.closed:
            logger.debug("Bridge closed, dropping %s", message.__class__.__name__)
            return
        data = encode_message(message)
        logger.debug("host >>> helper: %r", data)
        try:
            self._stdin.write(data)
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning("Helper stdin closed: %s", e)
            self._on_helper_gone()

    # --- Helper process I/O ---

    async def _read_stdout(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        try:
            while True:
                data = await process.stdout.read(self._config.read_chunk_size)
                if not data:
                    break
                self.feed(data)
        except Exception:
            logger.exception("Helper stdout reader failed")
        finally:
            if self._framer.pending:
                logger.warning(
                    "Helper output ended with %d unterminated bytes", self._framer.pending
                )
                self._framer.reset()
            self._on_helper_gone()

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> None:
        """Log the helper's stderr line by line, never leaving the pipe unread."""
        assert process.stderr is not None
        pending = bytearray()
        try:
            while True:
                data = await process.stderr.read(self._config.read_chunk_size)
                if not data:
                    break
                pending.extend(data)
                *lines, rest = pending.split(b"\n")
                for line in lines:
                    _log_stderr(line)
                pending = bytearray(rest)
                if len(pending) >= _MAX_STDERR_LINE:
                    _log_stderr(pending)
                    pending.clear()
        except Exception:
            logger.exception("Helper stderr reader failed")
        finally:
            if pending:
                _log_stderr(pending)

    def _on_helper_gone(self) -> None:
        """Treat the end of the helper's output as an exit for every session."""
        if self._helper_gone:
            return
        self._helper_gone = True
        self._cancel_timers()
        live = [h for h in self._handles if h.alive]
        if live:
            logger.info("Helper output closed; ending %d live sessions", len(live))
        for handle in live:
            handle.exit()

    # --- Create timeouts ---

    def _schedule_create_timeout(self, handle: SessionHandle) -> None:
        timeout = self._config.create_timeout
        if timeout is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; create timeout not armed")
            return
        self._timers[handle] = loop.call_later(timeout, self._on_create_timeout, handle)

    def _on_create_timeout(self, handle: SessionHandle) -> None:
        self._timers.pop(handle, None)
        if handle.status != HandleStatus.UNASSIGNED:
            return
        self._resolver.discard(handle)
        self.stats.timed_out += 1
        logger.warning(
            "No 'created' for %s within %.1fs; giving up",
            " ".join(handle.argv),
            self._config.create_timeout,
        )
        handle.exit()

    def _cancel_timers(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()


def _log_stderr(line: bytes | bytearray) -> None:
    text = bytes(line).decode("utf-8", errors="replace").rstrip()
    if not text:
        return
    if len(text) > _MAX_STDERR_LOG:
        text = f"{text[:_MAX_STDERR_LOG]}... ({len(line)} bytes)"
    logger.warning("helper stderr: %s", text)
