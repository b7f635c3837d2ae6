import pytest

from fakes import H264_CAPS, VP8_CAPS, FakeMediaEngine, h264_pad
from rtclink.media import IncomingPad
from rtclink.receive_chain import ReceiveChainBuilder
from rtclink.session import Session
from rtclink.types import CapabilityDescriptor, PadDirection, Role


def make(**engine_kw):
    session = Session(role=Role.ANSWERER)
    engine = FakeMediaEngine(**engine_kw)
    return ReceiveChainBuilder(session, engine), session, engine


@pytest.mark.asyncio
async def test_first_matching_pad_is_spliced():
    builder, session, engine = make()
    assert await builder.on_incoming_pad(h264_pad())
    assert session.receive_chain_built
    assert len(engine.spliced) == 1

    fragment = engine.spliced[0][1]
    assert fragment.queue.capacity == 10
    assert fragment.queue.leaky == "downstream"
    assert fragment.depayloader.request_keyframe is True
    assert fragment.depayloader.wait_for_keyframe is False
    assert fragment.parser.config_interval == 1
    assert fragment.sink.sync is False
    assert fragment.sink.qos is False
    assert fragment.sink.max_lateness == 0


@pytest.mark.asyncio
async def test_second_matching_pad_is_ignored():
    builder, session, engine = make()
    assert await builder.on_incoming_pad(h264_pad("src_0"))
    assert not await builder.on_incoming_pad(h264_pad("src_1"))
    assert [pad.name for pad, _ in engine.spliced] == ["src_0"]


@pytest.mark.asyncio
async def test_non_matching_pads_are_ignored():
    builder, session, engine = make()
    pads = [
        IncomingPad("vp8", VP8_CAPS),
        IncomingPad("audio", CapabilityDescriptor("audio", "opus", 111, 48000)),
        IncomingPad("nocaps", None),
        IncomingPad("sink", H264_CAPS, direction=PadDirection.SINK),
    ]
    for pad in pads:
        assert not await builder.on_incoming_pad(pad)
    assert engine.spliced == []
    assert not session.receive_chain_built

    assert await builder.on_incoming_pad(h264_pad())
    assert session.receive_chain_built


@pytest.mark.asyncio
async def test_encoding_name_matches_case_insensitively():
    builder, session, engine = make()
    pad = IncomingPad("src_0", CapabilityDescriptor.from_mime_type("VIDEO/h264", 102, 90000))
    assert await builder.on_incoming_pad(pad)


@pytest.mark.asyncio
@pytest.mark.parametrize("count", [2, 5, 12])
async def test_at_most_one_splice(count):
    builder, session, engine = make()
    for i in range(count):
        pad = h264_pad(f"src_{i}") if i % 2 == 0 else IncomingPad(f"src_{i}", VP8_CAPS)
        await builder.on_incoming_pad(pad)
    assert len(engine.spliced) == 1


@pytest.mark.asyncio
async def test_link_failure_keeps_session_and_allows_retry():
    builder, session, engine = make(splice_error="pads incompatible")
    assert not await builder.on_incoming_pad(h264_pad("src_0"))
    assert not session.receive_chain_built

    engine.splice_error = None
    assert await builder.on_incoming_pad(h264_pad("src_1"))
    assert session.receive_chain_built


@pytest.mark.asyncio
async def test_queue_capacity_is_configurable():
    session = Session(role=Role.ANSWERER)
    engine = FakeMediaEngine()
    builder = ReceiveChainBuilder(session, engine, queue_capacity=3)
    await builder.on_incoming_pad(h264_pad())
    assert engine.spliced[0][1].queue.capacity == 3
