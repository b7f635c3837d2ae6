"""Session state and lifecycle.

:class:`Session` holds the per-run negotiation state and enforces the state
machine::

    IDLE -> CONNECTING -> SIGNALING_OPEN -> NEGOTIATING -> STREAMING
                 |                                            |
                 +--> CLOSED        (any live state) --> CLOSING -> CLOSED

:class:`SessionLifecycle` owns the signaling channel and the media engine.
Inbound messages and media engine callbacks are queued and handled one at a
time by a single dispatcher task, so engine operations never overlap.
Closure bypasses the queue and cancels the dispatcher, which interrupts any
negotiation step still waiting on the media engine.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Tuple

from . import codec, metrics
from .channel import ChannelClosed, ChannelError, MessageReceived, SignalingChannel
from .codec import IceMessage, SdpMessage, Unrecognized
from .errors import (
    InvalidStateTransition,
    MalformedSignalingMessage,
    MediaEngineError,
    NegotiationInProgress,
    NegotiationRejected,
    RtclinkError,
    TransportError,
)
from .ice import IceExchange
from .media import EngineCallbacks, IncomingPad, MediaEngine
from .negotiation import NegotiationEngine
from .receive_chain import ReceiveChainBuilder
from .types import IceCandidate, Role, SessionDescription, SessionState

logger = logging.getLogger(__name__)

S = SessionState
_TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    S.IDLE: frozenset({S.CONNECTING, S.CLOSING}),
    S.CONNECTING: frozenset({S.SIGNALING_OPEN, S.CLOSING, S.CLOSED}),
    S.SIGNALING_OPEN: frozenset({S.NEGOTIATING, S.CLOSING}),
    S.NEGOTIATING: frozenset({S.STREAMING, S.CLOSING}),
    S.STREAMING: frozenset({S.CLOSING}),
    S.CLOSING: frozenset({S.CLOSED}),
    S.CLOSED: frozenset(),
}


@dataclass
class Session:
    """Negotiation state of one sender or receiver run."""

    role: Role
    state: SessionState = SessionState.IDLE
    local_description: Optional[SessionDescription] = None
    remote_description: Optional[SessionDescription] = None
    pending_local_candidates: List[IceCandidate] = field(default_factory=list)
    pending_remote_candidates: List[IceCandidate] = field(default_factory=list)
    receive_chain_built: bool = False
    local_acknowledged: bool = False

    def __post_init__(self) -> None:
        metrics.session_state.state(self.state.value)

    def transition(self, new: SessionState) -> None:
        """Move to ``new``.

        :raises InvalidStateTransition: If the state machine does not allow it.
        """
        if new not in _TRANSITIONS[self.state]:
            raise InvalidStateTransition(f"{self.state.value} -> {new.value}")
        logger.info("Session %s -> %s", self.state.value, new.value)
        self.state = new
        metrics.session_state.state(new.value)

    @property
    def is_closing(self) -> bool:
        return self.state in (SessionState.CLOSING, SessionState.CLOSED)

    @property
    def descriptions_complete(self) -> bool:
        return self.local_description is not None and self.remote_description is not None

    @property
    def ready_to_stream(self) -> bool:
        if not self.descriptions_complete:
            return False
        if self.role is Role.ANSWERER:
            return self.receive_chain_built
        return self.local_acknowledged


Handler = Callable[..., Awaitable[None]]


class SessionLifecycle:
    """Runs one session from connection to teardown."""

    def __init__(
        self,
        role: Role,
        channel: SignalingChannel,
        engine: MediaEngine,
        *,
        queue_capacity: int = 10,
    ) -> None:
        """Initialize the lifecycle.

        :param role: Offerer for the sender, Answerer for the receiver
        :type role: Role
        :param channel: Signaling channel, not yet connected
        :type channel: SignalingChannel
        :param engine: Media engine, not yet started
        :type engine: MediaEngine
        :param queue_capacity: Jitter queue size of the receive fragment
        :type queue_capacity: int
        """
        self.session = Session(role=role)
        self.channel = channel
        self.engine = engine
        self.ice = IceExchange(self.session, engine, self._emit, channel.is_open)
        self.negotiation = NegotiationEngine(
            self.session, engine, self.ice, self._emit, on_progress=self._advance
        )
        self.receive_chain: Optional[ReceiveChainBuilder] = None
        if role is Role.ANSWERER:
            self.receive_chain = ReceiveChainBuilder(self.session, engine, queue_capacity=queue_capacity)
        self.error: Optional[BaseException] = None

        self._queue: asyncio.Queue = asyncio.Queue()
        self._dispatcher: Optional[asyncio.Task] = None
        self._pump: Optional[asyncio.Task] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None
        self._closed = asyncio.Event()
        self._engine_released = False
        self._channel_released = False
        self._offer_requested = False

    @property
    def state(self) -> SessionState:
        return self.session.state

    async def start(self) -> None:
        """Connect the channel, start the media engine and begin dispatching.

        Failures do not raise; they end the session and are kept in
        :attr:`error`.
        """
        if self.session.is_closing:
            await self.close()
            return
        self.session.transition(SessionState.CONNECTING)
        self._connect_task = asyncio.create_task(self.channel.connect(), name="session-connect")
        try:
            await self._connect_task
        except asyncio.CancelledError:
            if self._close_task is None:
                raise
            await self.close()
            return
        except TransportError as e:
            logger.error("Signaling connection failed: %s", e)
            self._set_error(e)
            if self._close_task is not None:
                await self.close()
                return
            await self._release()
            self.session.transition(SessionState.CLOSED)
            self._closed.set()
            return
        finally:
            self._connect_task = None

        if self.session.is_closing:
            await self.close()
            return
        self.session.transition(SessionState.SIGNALING_OPEN)

        callbacks = EngineCallbacks(
            on_negotiation_needed=self._on_negotiation_needed,
            on_local_candidate=self._on_local_candidate,
            on_incoming_pad=self._on_incoming_pad,
            on_error=self._on_engine_error,
        )
        try:
            await self.engine.start(callbacks)
        except MediaEngineError as e:
            logger.error("Media engine failed to start: %s", e)
            self._set_error(e)
            await self.close()
            return

        if self.session.is_closing:
            await self.close()
            return
        self._dispatcher = asyncio.create_task(self._dispatch_loop(), name="session-dispatch")
        self._pump = asyncio.create_task(self._pump_channel(), name="session-pump")
        for task in (self._dispatcher, self._pump):
            task.add_done_callback(self._on_task_done)
        self.ice.flush_local()

    async def run(self) -> Optional[BaseException]:
        """Start the session and wait until it is closed.

        :return: The error that ended the session, or None for a clean end
        """
        await self.start()
        await self.wait_closed()
        return self.error

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    def request_shutdown(self) -> None:
        """Begin closing the session.  Safe to call from a signal handler."""
        if self.session.is_closing:
            return
        logger.info("Shutdown requested")
        self._begin_close()

    async def close(self) -> None:
        """Close the session and release its resources.  Idempotent."""
        if self.session.state is SessionState.CLOSED and self._close_task is None:
            return
        await asyncio.shield(self._begin_close())

    # ----------------------
    # Engine callbacks
    # ----------------------

    def _on_negotiation_needed(self) -> None:
        if self._offer_requested and self.session.local_description is None:
            self._post(self._reject_concurrent_offer)
            return
        self._offer_requested = True
        self._post(self.negotiation.on_negotiation_needed)

    async def _reject_concurrent_offer(self) -> None:
        raise NegotiationInProgress("negotiation needed again before the first offer was adopted")

    def _on_local_candidate(self, candidate: IceCandidate) -> None:
        self._post(self._handle_local_candidate, candidate)

    def _on_incoming_pad(self, pad: IncomingPad) -> None:
        if self.receive_chain is None:
            logger.info("Ignoring incoming pad %s on the sending side", pad.name)
            return
        self._post(self.receive_chain.on_incoming_pad, pad)

    def _on_engine_error(self, exc: BaseException) -> None:
        if self.session.is_closing:
            return
        logger.error("Media engine error: %s", exc)
        self._set_error(exc)
        self._begin_close()

    # ----------------------
    # Dispatch
    # ----------------------

    def _post(self, handler: Handler, *args: Any) -> None:
        if self.session.is_closing:
            logger.debug("Session closing, dropping %s", getattr(handler, "__name__", handler))
            return
        self._queue.put_nowait((handler, args))

    async def _dispatch_loop(self) -> None:
        while True:
            item: Tuple[Handler, Tuple[Any, ...]] = await self._queue.get()
            handler, args = item
            try:
                await handler(*args)
            except MalformedSignalingMessage as e:
                metrics.signaling_dropped.labels(reason="malformed").inc()
                logger.warning("Dropping peer message: %s", e)
            except NegotiationInProgress as e:
                logger.error("Negotiation logic error: %s", e)
            except (NegotiationRejected, MediaEngineError) as e:
                logger.error("Negotiation failed: %s", e)
                self._set_error(e)
                self._begin_close()
                return
            except RtclinkError as e:
                logger.exception("Unexpected session error: %s", e)
                self._set_error(e)
                self._begin_close()
                return
            else:
                self._advance()
            finally:
                self._queue.task_done()

    async def _pump_channel(self) -> None:
        async for event in self.channel.events():
            if isinstance(event, MessageReceived):
                self._post(self._handle_text, event.text)
            elif isinstance(event, ChannelClosed):
                logger.info("Signaling channel closed (code=%s reason=%s)", event.code, event.reason or "-")
            elif isinstance(event, ChannelError):
                logger.error("Signaling channel failed: %s", event.reason)
                self._set_error(TransportError(event.reason))
        if not self.session.is_closing:
            self._begin_close()

    async def _handle_text(self, text: str) -> None:
        msg = codec.decode_or_unrecognized(text)
        if isinstance(msg, Unrecognized):
            metrics.signaling_dropped.labels(reason="unrecognized").inc()
            logger.warning("Dropping unrecognized signaling message: %s", msg.reason)
            return
        if isinstance(msg, SdpMessage):
            metrics.signaling_received.labels(kind=msg.kind.value).inc()
            logger.info("Received remote %s", msg.kind.value)
            await self.negotiation.on_remote_sdp(msg.to_description())
        elif isinstance(msg, IceMessage):
            metrics.signaling_received.labels(kind="ice").inc()
            await self.ice.on_remote_candidate(msg.to_candidate())

    async def _handle_local_candidate(self, candidate: IceCandidate) -> None:
        self.ice.on_local_candidate(candidate)

    def _emit(self, msg: Any) -> bool:
        kind = msg.kind.value if isinstance(msg, SdpMessage) else "ice"
        if self.session.is_closing:
            logger.debug("Session closing, not sending %s", kind)
            return False
        if not self.channel.send(codec.encode(msg)):
            logger.warning("Signaling channel not open, %s not sent", kind)
            return False
        metrics.signaling_sent.labels(kind=kind).inc()
        return True

    def _advance(self) -> None:
        session = self.session
        if session.state is SessionState.SIGNALING_OPEN and (
            session.local_description is not None or session.remote_description is not None
        ):
            session.transition(SessionState.NEGOTIATING)
        if session.state is SessionState.NEGOTIATING and session.ready_to_stream:
            session.transition(SessionState.STREAMING)

    # ----------------------
    # Teardown
    # ----------------------

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        exc = task.exception()
        logger.error("%s crashed: %s", task.get_name(), exc, exc_info=exc)
        self._set_error(exc)
        if not self.session.is_closing:
            self._begin_close()

    def _set_error(self, exc: BaseException) -> None:
        if self.error is None:
            self.error = exc

    def _begin_close(self) -> asyncio.Task:
        if self._close_task is None:
            if not self.session.is_closing:
                self.session.transition(SessionState.CLOSING)
            self._close_task = asyncio.create_task(self._shutdown(), name="session-close")
        return self._close_task

    async def _shutdown(self) -> None:
        current = asyncio.current_task()
        tasks = [
            t for t in (self._connect_task, self._dispatcher, self._pump)
            if t is not None and t is not current and not t.done()
        ]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._release()
        if self.session.state is not SessionState.CLOSED:
            self.session.transition(SessionState.CLOSED)
        self._closed.set()
        logger.info("Session closed")

    async def _release(self) -> None:
        try:
            if not self._engine_released:
                self._engine_released = True
                await self.engine.close()
        finally:
            if not self._channel_released:
                self._channel_released = True
                await self.channel.close()


__all__ = ["Session", "SessionLifecycle"]
