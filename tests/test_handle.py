"""Tests for ptybridge.handle.SessionHandle."""

from __future__ import annotations

from ptybridge.handle import HandleStatus, SessionHandle
from ptybridge.protocol import ResizeMessage, SessionMessage, WriteMessage


def _make_handle() -> tuple[SessionHandle, list[SessionMessage]]:
    sent: list[SessionMessage] = []
    return SessionHandle(sent.append, argv=["bash"]), sent


# ---------------------------------------------------------------------------
# Queueing before assignment
# ---------------------------------------------------------------------------


class TestPendingQueue:
    def test_starts_unassigned(self) -> None:
        handle, _ = _make_handle()
        assert handle.id is None
        assert handle.status == HandleStatus.UNASSIGNED
        assert handle.alive

    def test_writes_queued_until_assigned(self) -> None:
        handle, sent = _make_handle()
        handle.write("a")
        handle.resize(100, 30)
        handle.write("b")
        assert sent == []
        assert handle.pending_writes == 3

        handle.assign(7)
        assert handle.status == HandleStatus.ASSIGNED
        assert handle.pending_writes == 0
        assert [type(m) for m in sent] == [WriteMessage, ResizeMessage, WriteMessage]
        assert [m.id for m in sent] == [7, 7, 7]
        assert sent[0].data == "a"
        assert (sent[1].columns, sent[1].rows) == (100, 30)
        assert sent[2].data == "b"

    def test_writes_after_assignment_go_straight_out(self) -> None:
        handle, sent = _make_handle()
        handle.assign(2)
        handle.write("x")
        assert handle.pending_writes == 0
        assert len(sent) == 1
        assert sent[0].id == 2

    def test_invalid_resize_dropped_while_unassigned(self) -> None:
        handle, sent = _make_handle()
        handle.resize(0, 24)
        handle.resize(80, 0)
        assert handle.pending_writes == 0
        handle.assign(1)
        assert sent == []

    def test_invalid_resize_dropped_when_assigned(self) -> None:
        handle, sent = _make_handle()
        handle.assign(1)
        handle.resize(-5, 24)
        handle.resize(80, 40)
        assert [(m.columns, m.rows) for m in sent] == [(80, 40)]
        assert handle.alive


# ---------------------------------------------------------------------------
# Callbacks
# ---------------------------------------------------------------------------


class TestCallbacks:
    def test_deliver_calls_data_callback(self) -> None:
        handle, _ = _make_handle()
        received: list[str] = []
        handle.on_data(received.append)
        handle.deliver("hello")
        assert received == ["hello"]

    def test_on_data_replaces_previous(self) -> None:
        handle, _ = _make_handle()
        first: list[str] = []
        second: list[str] = []
        handle.on_data(first.append)
        handle.on_data(second.append)
        handle.deliver("x")
        assert first == []
        assert second == ["x"]

    def test_deliver_without_callback_is_dropped(self) -> None:
        handle, _ = _make_handle()
        handle.deliver("lost")  # Should not raise

    def test_exit_fires_once(self) -> None:
        handle, _ = _make_handle()
        calls: list[int] = []
        handle.on_exit(lambda: calls.append(1))
        handle.exit()
        handle.exit()
        assert calls == [1]
        assert handle.status == HandleStatus.DEAD
        assert not handle.alive

    def test_exit_without_callback_still_kills(self) -> None:
        handle, _ = _make_handle()
        handle.exit()
        assert not handle.alive

    def test_callback_exception_is_contained(self) -> None:
        handle, _ = _make_handle()

        def boom(data: str) -> None:
            raise ValueError("bad")

        handle.on_data(boom)
        handle.deliver("x")  # Logged, not raised
        assert handle.alive

    def test_no_data_after_exit(self) -> None:
        handle, _ = _make_handle()
        received: list[str] = []
        handle.on_data(received.append)
        handle.exit()
        handle.deliver("late")
        assert received == []


# ---------------------------------------------------------------------------
# Dead handles and destroy()
# ---------------------------------------------------------------------------


class TestDeadHandle:
    def test_writes_after_exit_dropped(self) -> None:
        handle, sent = _make_handle()
        handle.assign(1)
        handle.exit()
        handle.write("x")
        handle.resize(80, 24)
        assert sent == []

    def test_exit_while_unassigned_drops_queue(self) -> None:
        handle, sent = _make_handle()
        handle.write("x")
        handle.exit()
        handle.assign(4)
        assert handle.id == 4
        assert handle.status == HandleStatus.DEAD
        assert sent == []

    def test_destroy_clears_without_exit(self) -> None:
        handle, sent = _make_handle()
        calls: list[int] = []
        handle.on_exit(lambda: calls.append(1))
        handle.write("x")
        handle.destroy()
        assert handle.status == HandleStatus.DEAD
        assert handle.pending_writes == 0
        handle.exit()
        assert calls == []
        handle.assign(3)
        assert sent == []

    def test_never_revives(self) -> None:
        handle, _ = _make_handle()
        handle.assign(1)
        handle.exit()
        handle.assign(2)
        assert not handle.alive
