"""aiortc implementation of the media engine contract.

The sender publishes one send-only H264 video transceiver and asks for an
offer as soon as the pipeline is up.  The receiver creates its transceivers
from the remote offer and announces each inbound track as an
:class:`~rtclink.media.IncomingPad`.

aiortc gathers ICE candidates while adopting the local description and
embeds them in it, so the adopted description is what must be sent to the
peer.  Peer candidates carry only an ``sdpMLineIndex``; aiortc routes them by
``mid``, which is looked up in the remote description.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Set

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCRtpReceiver,
    RTCRtpSender,
    RTCSessionDescription,
)
from aiortc.exceptions import InvalidStateError
from aiortc.sdp import SessionDescription as SdpDocument
from aiortc.sdp import candidate_from_sdp

from .chain import ReceiveChain
from .config import DEFAULT_STUN
from .errors import MalformedSignalingMessage, MediaEngineError, PipelineLinkFailure
from .fragment import ReceiveFragment
from .media import EngineCallbacks, IncomingPad, MediaEngine
from .sink import FrameSink, LatestFrameSink
from .sources import open_video_source
from .types import CapabilityDescriptor, IceCandidate, PadDirection, Role, SdpKind, SessionDescription

logger = logging.getLogger(__name__)

# Codecs that never carry the primary media of a section
_AUX_CODECS = {"rtx", "red", "ulpfec", "flexfec-03"}
_KEYFRAME_SSRC_POLLS = 50


def build_configuration(stun_url: str = DEFAULT_STUN, turn_url: Optional[str] = None,
                        turn_user: Optional[str] = None,
                        turn_pass: Optional[str] = None) -> RTCConfiguration:
    """Create an :class:`RTCConfiguration` with one STUN and an optional TURN server."""
    ice_servers = [RTCIceServer(urls=stun_url)]
    if turn_url:
        ice_servers.append(RTCIceServer(urls=turn_url, username=turn_user, credential=turn_pass))
    return RTCConfiguration(iceServers=ice_servers)


@dataclass
class _PadHandle:
    track: MediaStreamTrack
    receiver: Optional[RTCRtpReceiver]
    mid: Optional[str]


class AiortcMediaEngine(MediaEngine):
    """Media engine backed by an aiortc :class:`RTCPeerConnection`."""

    def __init__(
        self,
        role: Role,
        configuration: Optional[RTCConfiguration] = None,
        *,
        source_factory: Optional[Callable[[], MediaStreamTrack]] = None,
        sink_factory: Optional[Callable[[], FrameSink]] = None,
        video_codec: str = "H264",
    ) -> None:
        """Initialize the engine.

        :param role: Offerer publishes video, Answerer receives it
        :type role: Role
        :param configuration: ICE configuration for the peer connection
        :type configuration: Optional[RTCConfiguration]
        :param source_factory: Returns the outbound video track (Offerer)
        :type source_factory: Optional[Callable[[], MediaStreamTrack]]
        :param sink_factory: Returns the sink for each spliced receive fragment
        :type sink_factory: Optional[Callable[[], FrameSink]]
        :param video_codec: Encoding name to prefer when offering
        :type video_codec: str
        """
        self.role = role
        self.configuration = configuration or build_configuration()
        self.pc: Optional[RTCPeerConnection] = None
        self._source_factory = source_factory or open_video_source
        self._sink_factory = sink_factory or LatestFrameSink
        self._video_codec = video_codec
        self._callbacks: Optional[EngineCallbacks] = None
        self._remote_sdp: Optional[SdpDocument] = None
        self._source: Optional[MediaStreamTrack] = None
        self._chains: Dict[str, ReceiveChain] = {}
        self._pad_count = 0
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def chains(self) -> Dict[str, ReceiveChain]:
        """Spliced receive chains keyed by pad name."""
        return dict(self._chains)

    async def start(self, callbacks: EngineCallbacks) -> None:
        if self.pc is not None or self._closed:
            raise MediaEngineError("media engine already started or closed")
        self._callbacks = callbacks
        pc = self.pc = RTCPeerConnection(self.configuration)

        @pc.on("track")
        def on_track(track: MediaStreamTrack) -> None:
            logger.debug("Track event received: kind=%s", track.kind)
            self._on_track(track)

        @pc.on("iceconnectionstatechange")
        def on_ice_state() -> None:
            logger.info("iceConnectionState -> %s", pc.iceConnectionState)

        @pc.on("connectionstatechange")
        def on_connection_state() -> None:
            logger.info("connectionState -> %s", pc.connectionState)
            if pc.connectionState == "failed" and not self._closed:
                callbacks.on_error(MediaEngineError("peer connection failed"))

        if self.role is Role.OFFERER:
            try:
                self._source = self._source_factory()
            except MediaEngineError:
                await pc.close()
                self.pc = None
                raise
            transceiver = pc.addTransceiver(self._source, direction="sendonly")
            self._prefer_codec(transceiver)
            logger.info("Pipeline started, sending %s video", self._video_codec)
            asyncio.get_running_loop().call_soon(callbacks.on_negotiation_needed)
        else:
            logger.info("Pipeline started, waiting for offer")

    async def create_offer(self) -> SessionDescription:
        offer = await self._require_pc().createOffer()
        return SessionDescription(SdpKind.OFFER, offer.sdp)

    async def create_answer(self) -> SessionDescription:
        answer = await self._require_pc().createAnswer()
        return SessionDescription(SdpKind.ANSWER, answer.sdp)

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        pc = self._require_pc()
        await pc.setLocalDescription(RTCSessionDescription(sdp=description.sdp, type=description.kind.value))
        local = pc.localDescription
        candidates = sum(1 for line in local.sdp.splitlines() if line.startswith("a=candidate"))
        logger.info("Local %s adopted with %d ICE candidates", local.type, candidates)
        return SessionDescription(SdpKind(local.type), local.sdp)

    async def set_remote_description(self, description: SessionDescription) -> None:
        pc = self._require_pc()
        try:
            parsed = SdpDocument.parse(description.sdp)
        except (ValueError, IndexError, KeyError) as e:
            raise MalformedSignalingMessage(f"unparseable remote SDP: {e}") from e
        # track events fire inside setRemoteDescription and need the parsed SDP
        self._remote_sdp = parsed
        await pc.setRemoteDescription(RTCSessionDescription(sdp=description.sdp, type=description.kind.value))
        logger.info("Remote %s adopted (%d media sections)", description.kind.value, len(parsed.media))

    async def add_remote_candidate(self, candidate: IceCandidate) -> None:
        pc = self._require_pc()
        text = candidate.candidate.strip()
        if text.startswith("candidate:"):
            text = text[len("candidate:"):]
        try:
            ice = candidate_from_sdp(text)
        except (ValueError, IndexError) as e:
            raise MalformedSignalingMessage(f"unparseable ICE candidate {candidate.candidate!r}") from e
        ice.sdpMLineIndex = candidate.sdp_mline_index
        ice.sdpMid = self._mid_for_line(candidate.sdp_mline_index)
        if ice.sdpMid is None:
            raise MalformedSignalingMessage(
                f"ICE candidate references unknown media line {candidate.sdp_mline_index}"
            )
        try:
            await pc.addIceCandidate(ice)
        except (InvalidStateError, ValueError) as e:
            raise MalformedSignalingMessage(f"ICE candidate rejected: {e}") from e

    async def splice_fragment(self, pad: IncomingPad, fragment: ReceiveFragment) -> None:
        handle = pad.handle
        if not isinstance(handle, _PadHandle):
            raise PipelineLinkFailure(f"pad {pad.name} does not belong to this engine")
        if pad.name in self._chains:
            raise PipelineLinkFailure(f"pad {pad.name} is already linked")
        if handle.track.readyState != "live":
            raise PipelineLinkFailure(f"pad {pad.name} has ended")

        chain = ReceiveChain(handle.track, fragment, self._sink_factory())
        chain.start()
        self._chains[pad.name] = chain
        logger.info("Receive fragment linked to %s: %s", pad.name, fragment.describe())

        if not fragment.depayloader.wait_for_keyframe:
            logger.debug("Decoder output starts without waiting for a keyframe")
        if fragment.depayloader.request_keyframe and handle.receiver is not None:
            self._spawn(self._request_keyframe(handle.receiver))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for chain in list(self._chains.values()):
            await chain.stop()
        self._chains.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        if self._source is not None:
            self._source.stop()
            self._source = None
        if self.pc is not None:
            await self.pc.close()
            self.pc = None
        logger.info("Media engine closed")

    def _require_pc(self) -> RTCPeerConnection:
        if self.pc is None:
            raise MediaEngineError("media engine is not running")
        return self.pc

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _prefer_codec(self, transceiver: Any) -> None:
        mime = f"video/{self._video_codec}".lower()
        codecs = [c for c in RTCRtpSender.getCapabilities("video").codecs if c.mimeType.lower() == mime]
        if not codecs:
            logger.warning("Codec %s not available, keeping aiortc defaults", self._video_codec)
            return
        transceiver.setCodecPreferences(codecs)

    def _mid_for_line(self, index: int) -> Optional[str]:
        if self._remote_sdp is None:
            return None
        media = self._remote_sdp.media
        if 0 <= index < len(media):
            return media[index].rtp.muxId
        return None

    def _caps_for(self, kind: str, mid: Optional[str]) -> Optional[CapabilityDescriptor]:
        if self._remote_sdp is None:
            return None
        for media in self._remote_sdp.media:
            if media.kind != kind or (mid is not None and media.rtp.muxId != mid):
                continue
            for codec in _primary_codecs(media.rtp.codecs):
                return CapabilityDescriptor.from_mime_type(codec.mimeType, codec.payloadType, codec.clockRate)
        return None

    def _on_track(self, track: MediaStreamTrack) -> None:
        if self._callbacks is None:
            return
        transceiver = next(
            (t for t in self._require_pc().getTransceivers() if t.receiver.track is track), None
        )
        mid = transceiver.mid if transceiver else None
        pad = IncomingPad(
            name=f"src_{self._pad_count}",
            caps=self._caps_for(track.kind, mid),
            direction=PadDirection.SRC,
            handle=_PadHandle(track, transceiver.receiver if transceiver else None, mid),
        )
        self._pad_count += 1
        self._callbacks.on_incoming_pad(pad)

    async def _request_keyframe(self, receiver: RTCRtpReceiver) -> None:
        send_pli = getattr(receiver, "_send_rtcp_pli", None)
        if send_pli is None:
            logger.debug("Receiver cannot send PLI, skipping keyframe request")
            return
        # the SSRC is only known once the first packets arrived
        for _ in range(_KEYFRAME_SSRC_POLLS):
            sources = receiver.getSynchronizationSources()
            if sources:
                for source in sources:
                    await send_pli(source.source)
                logger.debug("Requested keyframe from %d source(s)", len(sources))
                return
            await asyncio.sleep(0.1)
        logger.debug("No RTP source seen yet, keyframe request skipped")


def _primary_codecs(codecs: Iterable[Any]) -> Iterable[Any]:
    for codec in codecs:
        if codec.mimeType.split("/")[-1].lower() not in _AUX_CODECS:
            yield codec


__all__ = ["AiortcMediaEngine", "build_configuration"]
