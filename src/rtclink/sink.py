"""Frame sinks for the receive chain.

A sink is the last stage of a receive fragment.  It gets converted frames as
fast as the chain produces them; it never paces by timestamps and never drops
late frames itself, the bounded queue in front of it handles backpressure.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from PIL import Image

from .utils import safe_mkdir, save_atomic

logger = logging.getLogger(__name__)


def convert_frame(frame: Any, pixel_format: str = "rgb24") -> Optional[Image.Image]:
    """Convert a decoded video frame into a PIL Image with fallbacks.

    :param frame: A decoded ``av.VideoFrame`` or compatible object
    :param pixel_format: ndarray format used by the fallback path
    :return: An RGB image, or None if the frame could not be converted
    """
    try:
        img = frame.to_image()
        w, h = img.size
        if w <= 0 or h <= 0:
            raise ValueError(f"invalid image dimensions: {w}x{h}")
        return img.convert("RGB")
    except Exception as primary_exc:
        try:
            arr = frame.to_ndarray(format=pixel_format)
            if getattr(arr, "size", 0) == 0:
                raise ValueError("empty ndarray from frame")
            return Image.fromarray(arr, "RGB")
        except Exception as fallback_exc:
            logger.warning(
                "Frame conversion failed: %s; fallback error: %s",
                primary_exc,
                fallback_exc,
            )
    return None


class FrameSink(ABC):
    """Consumer at the end of a receive chain."""

    @abstractmethod
    async def consume(self, image: Image.Image) -> None:
        """Take one converted frame."""

    async def close(self) -> None:
        """Release sink resources."""


class LatestFrameSink(FrameSink):
    """Sink that keeps only the most recent frame.

    Optionally writes every ``save_every``-th frame to ``save_path`` as PNG,
    replacing the previous snapshot atomically.
    """

    def __init__(self, save_path: Optional[str] = None, save_every: int = 30) -> None:
        self.image: Optional[Image.Image] = None
        self.frame_count = 0
        self.lock = asyncio.Lock()
        self.first_frame = asyncio.Event()
        self.frame_event = asyncio.Event()
        self.save_path = Path(save_path) if save_path else None
        self.save_every = max(1, save_every)
        if self.save_path is not None:
            safe_mkdir(self.save_path.parent)

    async def consume(self, image: Image.Image) -> None:
        async with self.lock:
            self.image = image
            self.frame_count += 1
            if not self.first_frame.is_set():
                logger.info("First frame received: %dx%d", image.width, image.height)
                self.first_frame.set()
            self.frame_event.set()
            count = self.frame_count
        if self.save_path is not None and (count - 1) % self.save_every == 0:
            try:
                await asyncio.to_thread(save_atomic, image, self.save_path)
            except OSError as e:
                logger.warning("Failed to save frame snapshot to %s: %s", self.save_path, e)

    async def get(self) -> Optional[Image.Image]:
        """Return a copy of the latest frame, or None if none arrived yet."""
        async with self.lock:
            return self.image.copy() if self.image else None

    async def wait_for_frame(self, timeout: float = 5.0) -> Optional[Image.Image]:
        """Wait for a new frame with timeout.

        :param timeout: Maximum time to wait in seconds
        :type timeout: float
        :return: The frame or None if timeout
        :rtype: Optional[Image.Image]
        """
        try:
            await asyncio.wait_for(self.frame_event.wait(), timeout=timeout)
            self.frame_event.clear()
            return await self.get()
        except asyncio.TimeoutError:
            return None

    async def close(self) -> None:
        async with self.lock:
            self.image = None
            self.first_frame.clear()
            self.frame_event.clear()


__all__ = ["convert_frame", "FrameSink", "LatestFrameSink"]
