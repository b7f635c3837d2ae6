import asyncio

import pytest

from fakes import ANSWER_SDP, OFFER_SDP, FakeMediaEngine, spin
from rtclink.codec import SdpMessage
from rtclink.errors import MalformedSignalingMessage, NegotiationInProgress, NegotiationRejected
from rtclink.ice import IceExchange
from rtclink.negotiation import NegotiationEngine, local_kind, remote_kind
from rtclink.session import Session
from rtclink.types import IceCandidate, Role, SdpKind, SessionDescription

OFFER = SessionDescription(SdpKind.OFFER, OFFER_SDP)
ANSWER = SessionDescription(SdpKind.ANSWER, ANSWER_SDP)


def make(role, **engine_kw):
    session = Session(role=role)
    engine = FakeMediaEngine(**engine_kw)
    sent = []

    def emit(msg):
        sent.append(msg)
        return True

    ice = IceExchange(session, engine, emit, lambda: True)
    progress = []
    neg = NegotiationEngine(session, engine, ice, emit, on_progress=lambda: progress.append(1))
    return neg, session, engine, sent, progress


def test_kinds_for_roles():
    assert local_kind(Role.OFFERER) is SdpKind.OFFER
    assert remote_kind(Role.OFFERER) is SdpKind.ANSWER
    assert local_kind(Role.ANSWERER) is SdpKind.ANSWER
    assert remote_kind(Role.ANSWERER) is SdpKind.OFFER


@pytest.mark.asyncio
async def test_offerer_creates_adopts_and_sends_offer():
    neg, session, engine, sent, progress = make(Role.OFFERER)
    await neg.on_negotiation_needed()

    assert engine.calls == ["create_offer", "set_local:offer"]
    assert sent == [SdpMessage(SdpKind.OFFER, OFFER_SDP)]
    assert session.local_description == OFFER
    assert session.local_acknowledged
    assert progress


@pytest.mark.asyncio
async def test_second_trigger_after_offer_is_ignored():
    neg, session, engine, sent, _ = make(Role.OFFERER)
    await neg.on_negotiation_needed()
    await neg.on_negotiation_needed()

    assert engine.calls.count("create_offer") == 1
    assert len(sent) == 1


@pytest.mark.asyncio
async def test_concurrent_trigger_is_reported():
    neg, session, engine, sent, _ = make(Role.OFFERER)
    engine.gate = asyncio.Event()
    first = asyncio.create_task(neg.on_negotiation_needed())
    await spin()
    assert neg.offer_in_flight

    with pytest.raises(NegotiationInProgress):
        await neg.on_negotiation_needed()

    engine.gate.set()
    await first
    assert not neg.offer_in_flight
    assert len(sent) == 1


@pytest.mark.asyncio
async def test_answerer_ignores_negotiation_needed():
    neg, session, engine, sent, _ = make(Role.ANSWERER)
    await neg.on_negotiation_needed()
    assert engine.calls == []
    assert sent == []


@pytest.mark.asyncio
async def test_answerer_answers_offer_exactly_once():
    neg, session, engine, sent, _ = make(Role.ANSWERER)
    await neg.on_remote_sdp(OFFER)

    assert engine.calls == ["set_remote:offer", "create_answer", "set_local:answer"]
    assert session.remote_description == OFFER
    assert session.local_description == ANSWER
    assert sent == [SdpMessage(SdpKind.ANSWER, ANSWER_SDP)]

    with pytest.raises(MalformedSignalingMessage):
        await neg.on_remote_sdp(OFFER)
    assert len(sent) == 1


@pytest.mark.asyncio
async def test_offerer_never_accepts_an_offer():
    neg, session, engine, sent, _ = make(Role.OFFERER)
    await neg.on_negotiation_needed()
    with pytest.raises(MalformedSignalingMessage):
        await neg.on_remote_sdp(SessionDescription(SdpKind.OFFER, OFFER_SDP))
    assert session.remote_description is None
    assert "set_remote:offer" not in engine.calls


@pytest.mark.asyncio
async def test_answerer_never_accepts_an_answer():
    neg, session, engine, sent, _ = make(Role.ANSWERER)
    with pytest.raises(MalformedSignalingMessage):
        await neg.on_remote_sdp(ANSWER)
    assert engine.calls == []


@pytest.mark.asyncio
async def test_answer_before_offer_is_dropped():
    neg, session, engine, sent, _ = make(Role.OFFERER)
    with pytest.raises(MalformedSignalingMessage):
        await neg.on_remote_sdp(ANSWER)
    assert session.remote_description is None


@pytest.mark.asyncio
async def test_offerer_adopts_answer_without_sending():
    neg, session, engine, sent, _ = make(Role.OFFERER)
    await neg.on_negotiation_needed()
    await neg.on_remote_sdp(ANSWER)

    assert session.remote_description == ANSWER
    assert engine.remote == ANSWER
    assert len(sent) == 1


@pytest.mark.asyncio
async def test_body_without_version_line_is_malformed():
    neg, session, engine, sent, _ = make(Role.ANSWERER)
    with pytest.raises(MalformedSignalingMessage):
        await neg.on_remote_sdp(SessionDescription(SdpKind.OFFER, "hello"))
    assert engine.calls == []


@pytest.mark.asyncio
async def test_engine_failure_rejects_negotiation():
    neg, session, engine, sent, _ = make(Role.ANSWERER, reject_remote=True)
    with pytest.raises(NegotiationRejected):
        await neg.on_remote_sdp(OFFER)
    assert session.remote_description is None
    assert sent == []


@pytest.mark.asyncio
async def test_buffered_candidates_flushed_before_answer():
    neg, session, engine, sent, _ = make(Role.ANSWERER)
    session.pending_remote_candidates.extend([IceCandidate("a", 0), IceCandidate("b", 0)])
    await neg.on_remote_sdp(OFFER)

    assert [c.candidate for c in engine.applied] == ["a", "b"]
    assert engine.applied_before_remote == 0
    assert session.pending_remote_candidates == []
    assert engine.calls.index("add_candidate") < engine.calls.index("create_answer")
