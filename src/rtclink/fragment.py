"""Typed description of a receive-processing fragment.

A fragment is the chain of stages that consumes one inbound video stream::

    queue -> depayloader -> parser -> decoder -> converter -> sink

Engines receive the description and decide how to realise each stage.
:meth:`ReceiveFragment.describe` renders it in gst-launch syntax for logs.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List


@dataclass(frozen=True)
class QueueStage:
    """Bounded jitter queue.  ``leaky="downstream"`` drops the oldest item when full."""
    element: str = "queue"
    capacity: int = 10
    leaky: str = "downstream"

    def properties(self) -> Dict[str, object]:
        return {
            "max-size-buffers": self.capacity,
            "max-size-bytes": 0,
            "max-size-time": 0,
            "leaky": self.leaky,
        }


@dataclass(frozen=True)
class DepayloaderStage:
    element: str = "rtph264depay"
    request_keyframe: bool = True
    wait_for_keyframe: bool = False

    def properties(self) -> Dict[str, object]:
        return {
            "request-keyframe": self.request_keyframe,
            "wait-for-keyframe": self.wait_for_keyframe,
        }


@dataclass(frozen=True)
class ParserStage:
    element: str = "h264parse"
    # re-emit SPS/PPS every second so a late joiner can start decoding
    config_interval: int = 1

    def properties(self) -> Dict[str, object]:
        return {"config-interval": self.config_interval}


@dataclass(frozen=True)
class DecoderStage:
    element: str = "avdec_h264"
    codec: str = "h264"

    def properties(self) -> Dict[str, object]:
        return {}


@dataclass(frozen=True)
class ConvertStage:
    element: str = "videoconvert"
    pixel_format: str = "rgb24"

    def properties(self) -> Dict[str, object]:
        return {}


@dataclass(frozen=True)
class SinkStage:
    """Frame consumer.  Clock sync, QoS drops and lateness rejection are off."""
    element: str = "autovideosink"
    sync: bool = False
    qos: bool = False
    max_lateness: int = 0

    def properties(self) -> Dict[str, object]:
        return {"sync": self.sync, "qos": self.qos, "max-lateness": self.max_lateness}


@dataclass(frozen=True)
class ReceiveFragment:
    """The full receive chain for one inbound stream."""
    queue: QueueStage = field(default_factory=QueueStage)
    depayloader: DepayloaderStage = field(default_factory=DepayloaderStage)
    parser: ParserStage = field(default_factory=ParserStage)
    decoder: DecoderStage = field(default_factory=DecoderStage)
    converter: ConvertStage = field(default_factory=ConvertStage)
    sink: SinkStage = field(default_factory=SinkStage)

    def stages(self) -> List[object]:
        return [self.queue, self.depayloader, self.parser, self.decoder, self.converter, self.sink]

    def describe(self) -> str:
        """Render the fragment as a gst-launch style pipeline description."""
        parts = []
        for stage in self.stages():
            props = " ".join(f"{k}={_fmt(v)}" for k, v in stage.properties().items())
            parts.append(f"{stage.element} {props}".strip())
        return " ! ".join(parts)


def _fmt(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def h264_receive_fragment(queue_capacity: int = 10) -> ReceiveFragment:
    """Return the H264 receive fragment with a queue of ``queue_capacity`` buffers."""
    return ReceiveFragment(queue=QueueStage(capacity=queue_capacity))


__all__ = [
    "QueueStage",
    "DepayloaderStage",
    "ParserStage",
    "DecoderStage",
    "ConvertStage",
    "SinkStage",
    "ReceiveFragment",
    "h264_receive_fragment",
]
