import pytest

from fakes import OFFER_SDP, FakeMediaEngine
from rtclink.codec import IceMessage
from rtclink.ice import IceExchange
from rtclink.session import Session
from rtclink.types import IceCandidate, Role, SdpKind, SessionDescription


def make(open_=True, **engine_kw):
    session = Session(role=Role.ANSWERER)
    engine = FakeMediaEngine(**engine_kw)
    sent = []
    state = {"open": open_}

    def emit(msg):
        sent.append(msg)
        return True

    ice = IceExchange(session, engine, emit, lambda: state["open"])
    return ice, session, engine, sent, state


async def set_remote(session, engine):
    desc = SessionDescription(SdpKind.OFFER, OFFER_SDP)
    await engine.set_remote_description(desc)
    session.remote_description = desc


def test_local_candidate_sent_when_open():
    ice, session, engine, sent, _ = make()
    ice.on_local_candidate(IceCandidate("candidate:1 1 UDP 1 10.0.0.1 9 typ host", 0))
    assert sent == [IceMessage("candidate:1 1 UDP 1 10.0.0.1 9 typ host", 0)]
    assert session.pending_local_candidates == []


def test_local_candidates_held_until_channel_opens():
    ice, session, engine, sent, state = make(open_=False)
    ice.on_local_candidate(IceCandidate("one", 0))
    ice.on_local_candidate(IceCandidate("two", 0))
    assert sent == []

    state["open"] = True
    assert ice.flush_local() == 2
    assert [m.candidate for m in sent] == ["one", "two"]
    assert session.pending_local_candidates == []


@pytest.mark.asyncio
@pytest.mark.parametrize("count", [0, 1, 3, 25])
async def test_remote_candidates_wait_for_remote_description(count):
    ice, session, engine, sent, _ = make()
    candidates = [IceCandidate(f"candidate:{i}", i % 2) for i in range(count)]
    for c in candidates:
        await ice.on_remote_candidate(c)

    assert engine.applied == []
    assert session.pending_remote_candidates == candidates

    await set_remote(session, engine)
    assert await ice.flush() == count
    assert engine.applied == candidates
    assert engine.applied_before_remote == 0
    assert session.pending_remote_candidates == []


@pytest.mark.asyncio
async def test_remote_candidate_applied_immediately_once_described():
    ice, session, engine, sent, _ = make()
    await set_remote(session, engine)
    await ice.on_remote_candidate(IceCandidate("late", 0))
    assert engine.applied == [IceCandidate("late", 0)]
    assert session.pending_remote_candidates == []


@pytest.mark.asyncio
async def test_end_of_candidates_is_not_applied():
    ice, session, engine, sent, _ = make()
    await ice.on_remote_candidate(IceCandidate("", 0))
    assert session.pending_remote_candidates == []
    await set_remote(session, engine)
    await ice.on_remote_candidate(IceCandidate("  ", 0))
    assert engine.applied == []


@pytest.mark.asyncio
async def test_rejected_candidate_is_skipped():
    ice, session, engine, sent, _ = make(bad_candidates=("bad",))
    for name in ("first", "bad", "last"):
        await ice.on_remote_candidate(IceCandidate(name, 0))
    await set_remote(session, engine)

    assert await ice.flush() == 2
    assert [c.candidate for c in engine.applied] == ["first", "last"]
