"""Runtime for a spliced receive fragment.

aiortc already depacketizes and decodes inside its RTP receiver, so the
chain here starts at the decoded track: a reader task pulls frames into a
bounded drop-oldest queue and a consumer task converts them and hands them
to the sink.
"""

import asyncio
import collections
import contextlib
import logging
from typing import Any, Deque, Optional

from aiortc.mediastreams import MediaStreamError

from . import metrics
from .fragment import ReceiveFragment
from .sink import FrameSink, convert_frame

logger = logging.getLogger(__name__)


class DropOldestQueue:
    """Bounded FIFO that evicts the oldest item instead of blocking the producer."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._items: Deque[Any] = collections.deque()
        self._event = asyncio.Event()
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._items)

    def put(self, item: Any) -> bool:
        """Append ``item``; return True if an older item was evicted to make room."""
        evicted = False
        if len(self._items) >= self.capacity:
            self._items.popleft()
            self.dropped += 1
            evicted = True
        self._items.append(item)
        self._event.set()
        return evicted

    async def get(self) -> Any:
        while not self._items:
            self._event.clear()
            await self._event.wait()
        return self._items.popleft()


class ReceiveChain:
    """Pumps frames from one inbound track through a receive fragment into a sink."""

    def __init__(self, track: Any, fragment: ReceiveFragment, sink: FrameSink) -> None:
        self.track = track
        self.fragment = fragment
        self.sink = sink
        self.queue = DropOldestQueue(fragment.queue.capacity)
        self._reader: Optional[asyncio.Task] = None
        self._consumer: Optional[asyncio.Task] = None
        self.error: Optional[BaseException] = None

    @property
    def running(self) -> bool:
        return self._reader is not None and not self._reader.done()

    def start(self) -> None:
        if self._reader is not None:
            return
        self._reader = asyncio.create_task(self._read(), name="rx-read")
        self._consumer = asyncio.create_task(self._consume(), name="rx-consume")
        for task in (self._reader, self._consumer):
            task.add_done_callback(self._on_task_done)

    async def stop(self) -> None:
        for task in (self._reader, self._consumer):
            if task and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._reader = self._consumer = None
        await self.sink.close()

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        exc = task.exception()
        logger.error("%s crashed: %s", task.get_name(), exc, exc_info=exc)
        if self.error is None:
            self.error = exc

    async def _read(self) -> None:
        try:
            while True:
                frame = await self.track.recv()
                if self.queue.put(frame):
                    metrics.frames_dropped.inc()
        except MediaStreamError:
            logger.info("Inbound video stream ended")

    async def _consume(self) -> None:
        pixel_format = self.fragment.converter.pixel_format
        while True:
            frame = await self.queue.get()
            image = convert_frame(frame, pixel_format)
            if image is None:
                continue
            metrics.frames_received.inc()
            await self.sink.consume(image)


__all__ = ["DropOldestQueue", "ReceiveChain"]
