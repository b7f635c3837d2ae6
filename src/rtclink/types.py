"""Shared types and constants for rtclink sessions.

This module defines the records exchanged between the signaling layer,
the negotiation engine and the media engine, plus the single media
profile the receiver knows how to render.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


# ----------------------
# Enumerations
# ----------------------

class Role(Enum):
    """Negotiation role, fixed for the lifetime of a session."""
    OFFERER = "offerer"
    ANSWERER = "answerer"


class SdpKind(Enum):
    """Session description kinds carried on the wire."""
    OFFER = "offer"
    ANSWER = "answer"


class SessionState(Enum):
    """Session lifecycle states."""
    IDLE = "idle"
    CONNECTING = "connecting"
    SIGNALING_OPEN = "signaling_open"
    NEGOTIATING = "negotiating"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"


class PadDirection(Enum):
    """Direction of a media engine pad."""
    SRC = "src"
    SINK = "sink"


# ----------------------
# Data types
# ----------------------

@dataclass(frozen=True)
class SessionDescription:
    """An SDP offer or answer.

    :param kind: Whether this is an offer or an answer
    :type kind: SdpKind
    :param sdp: Raw SDP text
    :type sdp: str
    """
    kind: SdpKind
    sdp: str


@dataclass(frozen=True)
class IceCandidate:
    """A trickled ICE candidate.

    :param candidate: Candidate attribute value, with or without the
        ``candidate:`` prefix
    :type candidate: str
    :param sdp_mline_index: Index of the media section it belongs to
    :type sdp_mline_index: int
    """
    candidate: str
    sdp_mline_index: int

    @property
    def is_end_of_candidates(self) -> bool:
        return not self.candidate.strip()


@dataclass(frozen=True)
class MediaProfile:
    """A media category and encoding the receiver can render."""
    media: str
    encoding_name: str


@dataclass(frozen=True)
class CapabilityDescriptor:
    """Negotiated capabilities of an incoming pad.

    :param media: Media category (``"video"`` or ``"audio"``)
    :type media: str
    :param encoding_name: RTP encoding name, e.g. ``"H264"``
    :type encoding_name: str
    :param payload_type: RTP payload type, when known
    :type payload_type: Optional[int]
    :param clock_rate: RTP clock rate, when known
    :type clock_rate: Optional[int]
    """
    media: str
    encoding_name: str
    payload_type: Optional[int] = None
    clock_rate: Optional[int] = None

    @classmethod
    def from_mime_type(cls, mime_type: str, payload_type: Optional[int] = None,
                       clock_rate: Optional[int] = None) -> "CapabilityDescriptor":
        """Build a descriptor from a ``kind/encoding`` MIME type such as ``video/H264``."""
        media, _, encoding = mime_type.partition("/")
        return cls(
            media=media.lower(),
            encoding_name=encoding,
            payload_type=payload_type,
            clock_rate=clock_rate,
        )

    def matches(self, profile: MediaProfile) -> bool:
        """Return True when this descriptor satisfies ``profile``.

        Media categories and encoding names are compared case-insensitively;
        RTP encoding names are case-insensitive per RFC 4855.
        """
        return (
            self.media.lower() == profile.media.lower()
            and self.encoding_name.upper() == profile.encoding_name.upper()
        )

    def __str__(self) -> str:
        return f"{self.media}/{self.encoding_name} pt={self.payload_type} rate={self.clock_rate}"


H264_VIDEO = MediaProfile(media="video", encoding_name="H264")
