"""Offer/answer negotiation against the media engine.

The sender (Offerer) creates one offer when the media engine asks for it and
waits for the answer.  The receiver (Answerer) adopts the peer's offer and
replies with exactly one answer.  Descriptions are recorded on the session
only after the media engine has adopted them.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, TypeVar

from .codec import SdpMessage
from .errors import MalformedSignalingMessage, NegotiationInProgress, NegotiationRejected
from .ice import IceExchange
from .media import MediaEngine
from .types import Role, SdpKind, SessionDescription

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)

T = TypeVar("T")


def local_kind(role: Role) -> SdpKind:
    return SdpKind.OFFER if role is Role.OFFERER else SdpKind.ANSWER


def remote_kind(role: Role) -> SdpKind:
    return SdpKind.ANSWER if role is Role.OFFERER else SdpKind.OFFER


class NegotiationEngine:
    """Drives description creation and adoption for one session."""

    def __init__(
        self,
        session: "Session",
        engine: MediaEngine,
        ice: IceExchange,
        emit: Callable[[SdpMessage], bool],
        on_progress: Optional[Callable[[], None]] = None,
    ) -> None:
        """Initialize the negotiation engine.

        :param session: Session holding role and description state
        :type session: Session
        :param engine: Media engine that creates and adopts descriptions
        :type engine: MediaEngine
        :param ice: Candidate exchange flushed once the remote description is set
        :type ice: IceExchange
        :param emit: Sends a signaling message to the peer
        :type emit: Callable[[SdpMessage], bool]
        :param on_progress: Called after each recorded description change
        :type on_progress: Optional[Callable[[], None]]
        """
        self.session = session
        self.engine = engine
        self.ice = ice
        self.emit = emit
        self.on_progress = on_progress or (lambda: None)
        self._offer_in_flight = False

    @property
    def offer_in_flight(self) -> bool:
        return self._offer_in_flight

    async def on_negotiation_needed(self) -> None:
        """Create, adopt and send the local offer.

        :raises NegotiationInProgress: If an offer is already being created.
        :raises NegotiationRejected: If the media engine fails to create or adopt it.
        """
        session = self.session
        if session.role is not Role.OFFERER:
            logger.warning("Negotiation requested on the answering side, ignoring")
            return
        if self._offer_in_flight:
            raise NegotiationInProgress("negotiation needed while an offer is still being created")
        if session.local_description is not None:
            logger.info("Offer already sent, renegotiation is not supported")
            return

        self._offer_in_flight = True
        try:
            offer = await self._engine_step("create offer", self.engine.create_offer())
            adopted = await self._adopt_local(offer)
        finally:
            self._offer_in_flight = False
        self.emit(SdpMessage.from_description(adopted))
        logger.info("Offer sent")

    async def on_remote_sdp(self, description: SessionDescription) -> None:
        """Adopt the peer's description and answer it when we are the Answerer.

        :raises MalformedSignalingMessage: If the description cannot be accepted
            in the current state; the caller drops it.
        :raises NegotiationRejected: If the media engine fails to adopt it or to
            produce the answer.
        """
        session = self.session
        expected = remote_kind(session.role)
        if description.kind is not expected:
            raise MalformedSignalingMessage(
                f"{session.role.value} expects a remote {expected.value}, got {description.kind.value}"
            )
        if session.remote_description is not None:
            raise MalformedSignalingMessage(f"remote {description.kind.value} already set")
        if session.role is Role.OFFERER and session.local_description is None:
            raise MalformedSignalingMessage("answer received before an offer was sent")
        if not description.sdp.lstrip().startswith("v="):
            raise MalformedSignalingMessage("SDP body does not start with a version line")

        await self._engine_step(
            f"set remote {description.kind.value}", self.engine.set_remote_description(description)
        )
        session.remote_description = description
        logger.info("Remote %s set", description.kind.value)
        self.on_progress()
        await self.ice.flush()

        if session.role is Role.ANSWERER:
            answer = await self._engine_step("create answer", self.engine.create_answer())
            adopted = await self._adopt_local(answer)
            self.emit(SdpMessage.from_description(adopted))
            logger.info("Answer sent")

    async def _adopt_local(self, description: SessionDescription) -> SessionDescription:
        expected = local_kind(self.session.role)
        if description.kind is not expected:
            raise NegotiationRejected(
                f"media engine produced a {description.kind.value}, expected {expected.value}"
            )
        adopted = await self._engine_step(
            f"set local {description.kind.value}", self.engine.set_local_description(description)
        )
        self.session.local_description = adopted
        self.session.local_acknowledged = True
        self.on_progress()
        return adopted

    async def _engine_step(self, what: str, step: Awaitable[T]) -> T:
        try:
            return await step
        except MalformedSignalingMessage:
            raise
        except Exception as e:
            raise NegotiationRejected(f"{what} failed: {e}") from e


__all__ = ["NegotiationEngine", "local_kind", "remote_kind"]
