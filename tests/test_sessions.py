import asyncio

import pytest

from wearable_relay.sessions import Session, SessionRegistry


class _Sink:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def __call__(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)


def _drain(session: Session) -> list:
    out = []
    while session.pending():
        out.append(session._outbox.get_nowait())
    return out


def test_join_before_broadcast_receives_and_join_after_does_not():
    reg = SessionRegistry()
    early = reg.open(_Sink())
    late = reg.open(_Sink())

    reg.join(early.connection_id, "u1")
    assert reg.broadcast("u1", {"n": 1}) == 1
    reg.join(late.connection_id, "u1")

    assert _drain(early) == [{"n": 1}]
    assert _drain(late) == []


def test_join_is_idempotent():
    reg = SessionRegistry()
    s = reg.open(_Sink())
    reg.join(s.connection_id, "u1")
    reg.join(s.connection_id, "u1")
    assert reg.group_members("u1") == [s.connection_id]
    assert reg.broadcast("u1", {"n": 1}) == 1
    assert _drain(s) == [{"n": 1}]


def test_second_join_moves_connection_to_new_group():
    reg = SessionRegistry()
    s = reg.open(_Sink())
    reg.join(s.connection_id, "u1")
    reg.join(s.connection_id, "u2")
    assert reg.group_members("u1") == []
    assert reg.group_members("u2") == [s.connection_id]
    assert reg.broadcast("u1", {"n": 1}) == 0
    assert reg.group_count() == 1


def test_leave_without_join_is_noop():
    reg = SessionRegistry()
    s = reg.open(_Sink())
    assert reg.leave(s.connection_id) is None
    assert reg.leave("never-seen") is None


def test_leave_and_close_remove_from_group():
    reg = SessionRegistry()
    a = reg.open(_Sink())
    b = reg.open(_Sink())
    reg.join(a.connection_id, "u1")
    reg.join(b.connection_id, "u1")

    assert reg.leave(a.connection_id) == "u1"
    reg.close(b.connection_id)

    assert reg.group_members("u1") == []
    assert reg.session_count() == 1
    assert b.is_open is False
    assert reg.broadcast("u1", {"n": 1}) == 0


def test_join_unknown_connection_raises():
    reg = SessionRegistry()
    with pytest.raises(KeyError):
        reg.join("missing", "u1")


def test_closed_session_is_skipped_silently():
    reg = SessionRegistry()
    a = reg.open(_Sink())
    b = reg.open(_Sink())
    reg.join(a.connection_id, "u1")
    reg.join(b.connection_id, "u1")
    a.close()
    assert reg.broadcast("u1", {"n": 1}) == 1
    assert _drain(b) == [{"n": 1}]


def test_full_outbox_drops_oldest():
    s = Session(_Sink(), max_queue=3)
    for i in range(5):
        assert s.offer({"n": i}) is True
    assert s.dropped == 2
    assert _drain(s) == [{"n": 2}, {"n": 3}, {"n": 4}]


def test_slow_member_does_not_block_others():
    reg = SessionRegistry(max_queue=2)
    slow = reg.open(_Sink())
    fast = reg.open(_Sink())
    reg.join(slow.connection_id, "u1")
    reg.join(fast.connection_id, "u1")

    async def run():
        writer = asyncio.create_task(fast.run_writer())
        for i in range(10):
            reg.broadcast("u1", {"n": i})
            for _ in range(3):
                await asyncio.sleep(0)
        fast.close()
        assert fast.offer({"n": 99}) is False
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass

    asyncio.run(run())
    assert [m["n"] for m in fast._send.sent] == list(range(10))
    assert [m["n"] for m in _drain(slow)] == [8, 9]
    assert slow.dropped == 8


def test_writer_failure_closes_session_and_leaves_group():
    reg = SessionRegistry()
    broken = reg.open(_Sink(fail=True))
    reg.join(broken.connection_id, "u1")

    async def run():
        writer = asyncio.create_task(broken.run_writer(on_failure=lambda s: reg.close(s.connection_id)))
        reg.broadcast("u1", {"n": 1})
        await asyncio.wait_for(writer, timeout=1)

    asyncio.run(run())
    assert broken.is_open is False
    assert reg.group_members("u1") == []
    assert reg.session_count() == 0
