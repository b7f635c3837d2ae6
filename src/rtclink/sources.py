"""Outbound video sources for the sender.

By default the sender streams a synthetic moving test pattern.  When a
capture device or media file is configured it is opened with aiortc's
:class:`~aiortc.contrib.media.MediaPlayer` instead.
"""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np
from aiortc import MediaStreamTrack, VideoStreamTrack
from aiortc.contrib.media import MediaPlayer
from av import VideoFrame
from av.error import FFmpegError

from .errors import MediaEngineError

logger = logging.getLogger(__name__)

WIDTH = 640
HEIGHT = 360
FRAMERATE = 30


class TestPatternTrack(VideoStreamTrack):
    """Colour bars with a sweeping bar, paced by aiortc's video clock."""

    __test__ = False  # not a pytest test class

    def __init__(self, width: int = WIDTH, height: int = HEIGHT) -> None:
        super().__init__()
        self.width = width
        self.height = height
        self._bars = self._colour_bars(width, height)
        self._tick = 0

    @staticmethod
    def _colour_bars(width: int, height: int) -> np.ndarray:
        colours = np.array(
            [
                [192, 192, 192], [192, 192, 0], [0, 192, 192], [0, 192, 0],
                [192, 0, 192], [192, 0, 0], [0, 0, 192],
            ],
            dtype=np.uint8,
        )
        columns = (np.arange(width) * len(colours)) // width
        row = colours[columns]
        return np.repeat(row[np.newaxis, :, :], height, axis=0)

    async def recv(self) -> VideoFrame:
        pts, time_base = await self.next_timestamp()
        img = self._bars.copy()
        x = (self._tick * 8) % self.width
        img[:, x:x + 8, :] = 255
        self._tick += 1
        frame = VideoFrame.from_ndarray(img, format="rgb24")
        frame.pts = pts
        frame.time_base = time_base
        return frame


def open_video_source(device: Optional[str] = None, fmt: Optional[str] = None) -> MediaStreamTrack:
    """Return the video track the sender should publish.

    :param device: Capture device or media file, e.g. ``/dev/video0``
    :param fmt: Optional demuxer, e.g. ``v4l2``, ``avfoundation`` or ``dshow``
    :return: A video track
    :raises MediaEngineError: If the device cannot be opened or has no video
    """
    if not device:
        logger.info("Using %dx%d@%d test pattern", WIDTH, HEIGHT, FRAMERATE)
        return TestPatternTrack()

    options = {"video_size": f"{WIDTH}x{HEIGHT}", "framerate": str(FRAMERATE)}
    try:
        player = MediaPlayer(device, format=fmt, options=options)
    except (FFmpegError, OSError, ValueError) as e:
        raise MediaEngineError(f"cannot open video source {device!r}: {e}") from e
    if player.video is None:
        raise MediaEngineError(f"video source {device!r} has no video stream")
    logger.info("Using video source %s (format=%s)", device, fmt or "auto")
    return player.video


__all__ = ["TestPatternTrack", "open_video_source"]
