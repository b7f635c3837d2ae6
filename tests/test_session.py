import asyncio
import logging

import pytest

from fakes import (
    FakeChannel,
    FakeMediaEngine,
    answer_msg,
    h264_pad,
    ice_msg,
    offer_msg,
    settle,
    spin,
)
from rtclink.errors import (
    InvalidStateTransition,
    MediaEngineError,
    NegotiationRejected,
    TransportError,
)
from rtclink.session import Session, SessionLifecycle
from rtclink.types import Role, SessionState


async def started(role, channel=None, **engine_kw):
    channel = channel or FakeChannel()
    engine = FakeMediaEngine(**engine_kw)
    lc = SessionLifecycle(role, channel, engine)
    await lc.start()
    return lc, channel, engine


async def closed(lc):
    await asyncio.wait_for(lc.wait_closed(), timeout=2)


def test_state_machine_rejects_skipping_states():
    session = Session(role=Role.OFFERER)
    with pytest.raises(InvalidStateTransition):
        session.transition(SessionState.STREAMING)
    session.transition(SessionState.CONNECTING)
    session.transition(SessionState.CLOSED)
    for state in SessionState:
        with pytest.raises(InvalidStateTransition):
            session.transition(state)


def test_ready_to_stream_depends_on_role():
    answerer = Session(role=Role.ANSWERER, local_description=object(), remote_description=object())
    assert not answerer.ready_to_stream
    answerer.receive_chain_built = True
    assert answerer.ready_to_stream

    offerer = Session(role=Role.OFFERER, local_description=object(), remote_description=object())
    assert not offerer.ready_to_stream
    offerer.local_acknowledged = True
    assert offerer.ready_to_stream


@pytest.mark.asyncio
async def test_answerer_answers_offer():
    lc, channel, engine = await started(Role.ANSWERER)
    assert lc.state is SessionState.SIGNALING_OPEN

    channel.deliver(offer_msg())
    await settle(lc)

    assert engine.remote is not None
    assert [m["sdp"]["type"] for m in channel.messages()] == ["answer"]
    assert lc.state is SessionState.NEGOTIATING

    engine.announce(h264_pad())
    await settle(lc)
    assert lc.session.receive_chain_built
    assert lc.state is SessionState.STREAMING
    await lc.close()


@pytest.mark.asyncio
async def test_candidates_before_offer_are_buffered_then_applied_in_order():
    lc, channel, engine = await started(Role.ANSWERER)
    for name in ("c1", "c2", "c3"):
        channel.deliver(ice_msg(f"candidate:{name} 1 UDP 1 10.0.0.1 9 typ host"))
    await settle(lc)

    assert engine.applied == []
    assert len(lc.session.pending_remote_candidates) == 3

    channel.deliver(offer_msg())
    await settle(lc)

    assert [c.candidate.split()[0] for c in engine.applied] == ["candidate:c1", "candidate:c2", "candidate:c3"]
    assert engine.applied_before_remote == 0
    assert lc.session.pending_remote_candidates == []
    await lc.close()


@pytest.mark.asyncio
async def test_channel_closed_while_negotiating_sends_nothing():
    channel = FakeChannel()
    lc, channel, engine = await started(Role.ANSWERER, channel=channel)
    engine.gate = asyncio.Event()

    channel.deliver(offer_msg())
    await spin()
    assert lc.state is SessionState.NEGOTIATING

    channel.hang_up()
    await closed(lc)
    engine.gate.set()
    await spin()

    assert lc.state is SessionState.CLOSED
    assert engine.interrupted
    assert channel.sent == []
    assert lc.error is None
    assert engine.close_calls == 1
    assert channel.close_calls == 1


@pytest.mark.asyncio
async def test_two_matching_pads_build_one_chain():
    lc, channel, engine = await started(Role.ANSWERER)
    channel.deliver(offer_msg())
    await settle(lc)

    engine.announce(h264_pad("src_0"))
    engine.announce(h264_pad("src_1"))
    await settle(lc)

    assert [pad.name for pad, _ in engine.spliced] == ["src_0"]
    await lc.close()


@pytest.mark.asyncio
async def test_offerer_sends_one_offer_and_streams_after_answer():
    lc, channel, engine = await started(Role.OFFERER)
    engine.need_negotiation()
    await settle(lc)
    assert [m["sdp"]["type"] for m in channel.messages()] == ["offer"]
    assert lc.state is SessionState.NEGOTIATING

    engine.need_negotiation()
    channel.deliver(answer_msg())
    await settle(lc)

    assert len(channel.messages()) == 1
    assert lc.state is SessionState.STREAMING
    await lc.close()


@pytest.mark.asyncio
async def test_offerer_drops_remote_offer():
    lc, channel, engine = await started(Role.OFFERER)
    engine.need_negotiation()
    channel.deliver(offer_msg())
    await settle(lc)

    assert lc.session.remote_description is None
    assert lc.state is SessionState.NEGOTIATING
    await lc.close()


@pytest.mark.asyncio
async def test_malformed_messages_do_not_end_session():
    lc, channel, engine = await started(Role.ANSWERER)
    channel.deliver("not json at all")
    channel.deliver({"event": "system/init"})
    channel.deliver({"sdp": {"type": "offer"}})
    await settle(lc)
    assert lc.state is SessionState.SIGNALING_OPEN

    channel.deliver(offer_msg())
    await settle(lc)
    assert [m["sdp"]["type"] for m in channel.messages()] == ["answer"]
    await lc.close()


@pytest.mark.asyncio
async def test_second_offer_gets_no_second_answer():
    lc, channel, engine = await started(Role.ANSWERER)
    channel.deliver(offer_msg())
    channel.deliver(offer_msg())
    await settle(lc)
    assert len(channel.messages()) == 1
    await lc.close()


@pytest.mark.asyncio
async def test_local_candidates_are_relayed():
    lc, channel, engine = await started(Role.OFFERER)
    engine.discover("candidate:1 1 UDP 1 192.0.2.1 5000 typ host", 0)
    await settle(lc)
    assert channel.messages() == [ice_msg("candidate:1 1 UDP 1 192.0.2.1 5000 typ host", 0)]
    await lc.close()


@pytest.mark.asyncio
async def test_negotiation_rejected_closes_session():
    lc, channel, engine = await started(Role.ANSWERER, reject_remote=True)
    channel.deliver(offer_msg())
    await closed(lc)

    assert lc.state is SessionState.CLOSED
    assert isinstance(lc.error, NegotiationRejected)
    assert channel.sent == []


@pytest.mark.asyncio
async def test_connect_failure_goes_straight_to_closed():
    channel = FakeChannel(fail_connect=True)
    engine = FakeMediaEngine()
    lc = SessionLifecycle(Role.OFFERER, channel, engine)

    error = await asyncio.wait_for(lc.run(), timeout=2)

    assert isinstance(error, TransportError)
    assert lc.state is SessionState.CLOSED
    assert "start" not in engine.calls
    assert channel.close_calls == 1
    assert engine.close_calls == 1


@pytest.mark.asyncio
async def test_engine_start_failure_closes_session():
    lc, channel, engine = await started(Role.OFFERER, fail_start=True)
    await closed(lc)
    assert isinstance(lc.error, MediaEngineError)
    assert channel.close_calls == 1


@pytest.mark.asyncio
async def test_channel_error_is_a_transport_error():
    lc, channel, engine = await started(Role.ANSWERER)
    channel.fail("connection reset by peer")
    await closed(lc)
    assert isinstance(lc.error, TransportError)


@pytest.mark.asyncio
async def test_engine_error_closes_session():
    lc, channel, engine = await started(Role.OFFERER)
    engine.callbacks.on_error(MediaEngineError("peer connection failed"))
    await closed(lc)
    assert isinstance(lc.error, MediaEngineError)


@pytest.mark.asyncio
async def test_shutdown_request_and_idempotent_close():
    lc, channel, engine = await started(Role.ANSWERER)
    lc.request_shutdown()
    lc.request_shutdown()
    await lc.close()
    await lc.close()

    assert lc.state is SessionState.CLOSED
    assert lc.error is None
    assert engine.close_calls == 1
    assert channel.close_calls == 1


@pytest.mark.asyncio
async def test_pad_on_sending_side_is_ignored():
    lc, channel, engine = await started(Role.OFFERER)
    engine.announce(h264_pad())
    await settle(lc)
    assert engine.spliced == []
    await lc.close()


@pytest.mark.asyncio
async def test_second_trigger_while_offer_in_flight_is_reported(caplog):
    lc, channel, engine = await started(Role.OFFERER)
    engine.gate = asyncio.Event()
    engine.need_negotiation()
    await spin()
    assert lc.negotiation.offer_in_flight

    with caplog.at_level(logging.ERROR, logger="rtclink.session"):
        engine.need_negotiation()
        engine.gate.set()
        await settle(lc)

    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert any("before the first offer was adopted" in r.getMessage() for r in errors)
    assert [m["sdp"]["type"] for m in channel.messages()] == ["offer"]
    assert engine.calls.count("create_offer") == 1
    assert lc.state is SessionState.NEGOTIATING
    assert lc.error is None
    await lc.close()


@pytest.mark.asyncio
async def test_shutdown_before_start_closes_without_connecting():
    channel = FakeChannel()
    engine = FakeMediaEngine()
    lc = SessionLifecycle(Role.ANSWERER, channel, engine)
    lc.request_shutdown()

    await lc.start()
    await closed(lc)

    assert lc.state is SessionState.CLOSED
    assert not channel.connected
    assert "start" not in engine.calls
    assert lc.error is None
