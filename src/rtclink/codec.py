"""JSON envelope codec for signaling messages.

Every frame on the signaling channel is a JSON object with exactly one
top-level key::

    {"sdp": {"type": "offer", "sdp": "v=0..."}}
    {"ice": {"candidate": "candidate:1 1 UDP ...", "sdpMLineIndex": 0}}
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Union

from .errors import DecodeError
from .types import IceCandidate, SdpKind, SessionDescription


@dataclass(frozen=True)
class SdpMessage:
    """An offer or answer relayed between peers."""
    kind: SdpKind
    sdp: str

    @classmethod
    def from_description(cls, description: SessionDescription) -> "SdpMessage":
        return cls(kind=description.kind, sdp=description.sdp)

    def to_description(self) -> SessionDescription:
        return SessionDescription(kind=self.kind, sdp=self.sdp)


@dataclass(frozen=True)
class IceMessage:
    """A single trickled ICE candidate."""
    candidate: str
    sdp_mline_index: int

    @classmethod
    def from_candidate(cls, candidate: IceCandidate) -> "IceMessage":
        return cls(candidate=candidate.candidate, sdp_mline_index=candidate.sdp_mline_index)

    def to_candidate(self) -> IceCandidate:
        return IceCandidate(candidate=self.candidate, sdp_mline_index=self.sdp_mline_index)


@dataclass(frozen=True)
class Unrecognized:
    """A frame the engine ignores, with the reason it was not understood."""
    raw: str
    reason: str


SignalingMessage = Union[SdpMessage, IceMessage, Unrecognized]

_KNOWN_KEYS = ("sdp", "ice")


def encode(msg: Union[SdpMessage, IceMessage]) -> str:
    """Serialize a message to its wire form.

    :param msg: The message to encode
    :type msg: Union[SdpMessage, IceMessage]
    :return: JSON text for a single text frame
    :rtype: str
    :raises TypeError: If ``msg`` is not an encodable message
    """
    envelope: Dict[str, Any]
    if isinstance(msg, SdpMessage):
        envelope = {"sdp": {"type": msg.kind.value, "sdp": msg.sdp}}
    elif isinstance(msg, IceMessage):
        envelope = {"ice": {"candidate": msg.candidate, "sdpMLineIndex": msg.sdp_mline_index}}
    else:
        raise TypeError(f"cannot encode {type(msg).__name__}")
    return json.dumps(envelope, ensure_ascii=False)


def decode(text: str) -> Union[SdpMessage, IceMessage]:
    """Parse a wire frame into a typed message.

    :param text: Raw text frame
    :type text: str
    :return: The decoded message
    :rtype: Union[SdpMessage, IceMessage]
    :raises DecodeError: If the frame is not JSON, does not carry exactly one
        known top-level key, or a required field is missing or mistyped
    """
    try:
        root = json.loads(text)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"not valid JSON: {e}") from e

    if not isinstance(root, dict):
        raise DecodeError(f"expected a JSON object, got {type(root).__name__}")

    keys = [k for k in _KNOWN_KEYS if k in root]
    if len(keys) != 1:
        raise DecodeError(f"expected exactly one of {_KNOWN_KEYS}, found {sorted(root)}")

    body = root[keys[0]]
    if not isinstance(body, dict):
        raise DecodeError(f"'{keys[0]}' must be an object")

    if keys[0] == "sdp":
        return _decode_sdp(body)
    return _decode_ice(body)


def decode_or_unrecognized(text: str) -> SignalingMessage:
    """Like :func:`decode` but returns :class:`Unrecognized` instead of raising."""
    try:
        return decode(text)
    except DecodeError as e:
        return Unrecognized(raw=text, reason=str(e))


def _decode_sdp(body: Dict[str, Any]) -> SdpMessage:
    kind = body.get("type")
    sdp = body.get("sdp")
    if not isinstance(kind, str):
        raise DecodeError("sdp.type must be a string")
    try:
        sdp_kind = SdpKind(kind)
    except ValueError:
        raise DecodeError(f"unsupported sdp.type {kind!r}") from None
    if not isinstance(sdp, str):
        raise DecodeError("sdp.sdp must be a string")
    return SdpMessage(kind=sdp_kind, sdp=sdp)


def _decode_ice(body: Dict[str, Any]) -> IceMessage:
    candidate = body.get("candidate")
    index = body.get("sdpMLineIndex")
    if not isinstance(candidate, str):
        raise DecodeError("ice.candidate must be a string")
    # bool is an int subclass; reject it explicitly
    if isinstance(index, bool) or not isinstance(index, int):
        raise DecodeError("ice.sdpMLineIndex must be an integer")
    if index < 0:
        raise DecodeError("ice.sdpMLineIndex must be >= 0")
    return IceMessage(candidate=candidate, sdp_mline_index=index)


__all__ = [
    "SdpMessage",
    "IceMessage",
    "Unrecognized",
    "SignalingMessage",
    "encode",
    "decode",
    "decode_or_unrecognized",
]
