"""WebSocket signaling channel.

The channel connects to the signaling relay, runs background read and send
loops, and exposes inbound traffic as an ordered stream of events.  It never
reconnects on its own: once the socket closes the session is over and a new
channel must be created for a new attempt.
"""

import asyncio
import contextlib
import logging
import random
import ssl
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Set, Union
from urllib.parse import urlparse

import websockets
from websockets.protocol import State

from .errors import TransportError
from .utils import redact_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageReceived:
    """A text frame from the relay."""
    text: str


@dataclass(frozen=True)
class ChannelClosed:
    """The relay closed the connection cleanly."""
    code: Optional[int] = None
    reason: str = ""


@dataclass(frozen=True)
class ChannelError:
    """The connection failed or closed abnormally."""
    reason: str


ChannelEvent = Union[MessageReceived, ChannelClosed, ChannelError]


def build_ssl_context(insecure: bool) -> Optional[ssl.SSLContext]:
    """Return an SSL context that skips certificate checks when ``insecure``.

    Without ``insecure`` this returns ``None`` so that websockets applies its
    default certificate verification.
    """
    if not insecure:
        return None
    logger.warning(
        "TLS certificate verification is DISABLED (--disable-ssl). "
        "Any certificate will be accepted; use only against development servers."
    )
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


class SignalingChannel:
    """WebSocket client for the signaling relay.

    This class manages a single WebSocket connection with separate read and
    send loops.  Sending is fire-and-forget and silently dropped once the
    connection is no longer open.
    """

    def __init__(self, url: str, *, insecure: bool = False, connect_attempts: int = 1, **wsopts: Any):
        """Initialize the channel.

        :param url: ``ws://`` or ``wss://`` URL of the relay
        :type url: str
        :param insecure: Accept any TLS certificate on ``wss://`` URLs
        :type insecure: bool
        :param connect_attempts: Number of connection attempts before giving up
        :type connect_attempts: int
        :param wsopts: Additional options passed to :func:`websockets.connect`
        :type wsopts: Any
        """
        self.url = url
        self.connect_attempts = max(1, connect_attempts)
        self.wsopts = dict(
            ping_interval=30,
            ping_timeout=60,
            max_queue=1024,
            max_size=10_000_000,
            **wsopts
        )
        if urlparse(url).scheme == "wss":
            ctx = build_ssl_context(insecure)
            if ctx is not None:
                self.wsopts["ssl"] = ctx
        elif insecure:
            logger.warning("--disable-ssl has no effect on non-TLS URL %s", redact_url(url))
        self.ws: Optional[Any] = None
        self._tasks: Set[asyncio.Task] = set()
        self._sendq: asyncio.Queue = asyncio.Queue(maxsize=256)
        self._events: asyncio.Queue = asyncio.Queue()
        self._closed = asyncio.Event()
        self._opened = False

    async def connect(self) -> "SignalingChannel":
        """Open the connection and start the background loops.

        Failed attempts are retried with exponential backoff and jitter, up to
        ``connect_attempts`` in total.

        :return: Self for method chaining.
        :rtype: SignalingChannel
        :raises TransportError: If every attempt fails or the channel was closed.
        """
        safe_url = redact_url(self.url)
        backoff = 1.0
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.connect_attempts + 1):
            if self._closed.is_set():
                break
            try:
                logger.info("Connecting to %s ...", safe_url)
                self.ws = await websockets.connect(self.url, **self.wsopts)
            except (OSError, asyncio.TimeoutError, websockets.InvalidHandshake, websockets.InvalidURI) as e:
                last_error = e
                if attempt == self.connect_attempts:
                    break
                jitter = random.uniform(0, max(0.25, backoff * 0.25))
                delay = min(backoff + jitter, 30)
                logger.error("WS connect error: %s - retrying in %.2fs", e, delay)
                await asyncio.sleep(delay)
                backoff = min(backoff * 2, 30)
                continue
            logger.info("Connected to signaling server %s", safe_url)
            self._opened = True
            self._tasks.add(asyncio.create_task(self._read_loop(), name="ws-read"))
            self._tasks.add(asyncio.create_task(self._send_loop(), name="ws-send"))
            return self

        reason = str(last_error) if last_error else "channel closed before connecting"
        raise TransportError(f"WS connect to {safe_url} failed: {reason}") from last_error

    async def close(self) -> None:
        """Close the connection and stop the background loops.  Idempotent."""
        self._closed.set()
        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for t in tasks:
            if not t.done():
                t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        if self.ws:
            ws, self.ws = self.ws, None
            with contextlib.suppress(websockets.ConnectionClosed, OSError):
                await ws.close()

    def send(self, text: str) -> bool:
        """Queue a text frame for sending.

        This is a no-op when the channel is not open.

        :param text: Frame payload
        :type text: str
        :return: True if the frame was queued, False if it was dropped.
        :rtype: bool
        """
        if not self.is_open():
            logger.debug("Channel not open, dropping outbound frame")
            return False
        try:
            self._sendq.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning("Send queue full, dropping outbound frame")
            return False
        return True

    async def events(self) -> AsyncIterator[ChannelEvent]:
        """Yield inbound events until the channel closes or fails."""
        while True:
            event = await self._events.get()
            yield event
            if isinstance(event, (ChannelClosed, ChannelError)):
                return

    def is_open(self) -> bool:
        """Check if the WebSocket connection is open.

        :return: True if connected, False otherwise.
        :rtype: bool
        """
        return self._opened and not self._closed.is_set() and self._ws_is_open()

    async def _read_loop(self) -> None:
        """Forward inbound frames to the event queue until the socket closes."""
        terminal: ChannelEvent = ChannelClosed()
        try:
            async for raw in self.ws:
                if not isinstance(raw, str):
                    logger.debug("Ignoring binary frame (%d bytes)", len(raw))
                    continue
                self._events.put_nowait(MessageReceived(raw))
            terminal = ChannelClosed(self.ws.close_code, self.ws.close_reason or "")
        except websockets.ConnectionClosedOK as e:
            logger.info("WS closed: %s", e)
            rcvd = e.rcvd
            terminal = ChannelClosed(rcvd.code if rcvd else None, rcvd.reason if rcvd else "")
        except websockets.ConnectionClosedError as e:
            logger.warning("WS closed abnormally: %s", e)
            terminal = ChannelError(str(e))
        except asyncio.CancelledError:
            logger.debug("WS read loop cancelled")
            raise
        finally:
            self._closed.set()
            self._events.put_nowait(terminal)

    async def _send_loop(self) -> None:
        """Send queued frames while the connection stays open."""
        try:
            while not self._closed.is_set():
                text = await self._sendq.get()
                if not self._ws_is_open():
                    logger.debug("Socket no longer open, dropping outbound frame")
                    continue
                try:
                    await self.ws.send(text)
                except websockets.ConnectionClosed:
                    logger.warning("Send failed: WS closed")
                    break
        except asyncio.CancelledError:
            logger.debug("WS send loop cancelled")
            raise

    def _ws_is_open(self) -> bool:
        """Return True when the underlying WebSocket connection is open."""
        if not self.ws:
            return False

        state = getattr(self.ws, "state", None)
        if state is not None:
            return state == State.OPEN

        closed = getattr(self.ws, "closed", None)
        if closed is not None:
            return not closed

        return True


__all__ = [
    "MessageReceived",
    "ChannelClosed",
    "ChannelError",
    "ChannelEvent",
    "SignalingChannel",
    "build_ssl_context",
]
