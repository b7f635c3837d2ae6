"""Trickled ICE candidate exchange.

Local candidates go to the peer as soon as the signaling channel is open.
Peer candidates are held back until the remote description is set and then
applied in the order they arrived, since the peer sends them by priority.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from . import metrics
from .codec import IceMessage
from .errors import MalformedSignalingMessage
from .media import MediaEngine
from .types import IceCandidate

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)


class IceExchange:
    """Relays local candidates and applies peer candidates in order.

    :param session: Session whose candidate buffers are used
    :param engine: Media engine peer candidates are applied to
    :param emit: Sends a signaling message, returns False if it was dropped
    :param channel_open: Reports whether the signaling channel is open
    """

    def __init__(
        self,
        session: "Session",
        engine: MediaEngine,
        emit: Callable[[IceMessage], bool],
        channel_open: Callable[[], bool],
    ) -> None:
        self.session = session
        self.engine = engine
        self.emit = emit
        self.channel_open = channel_open

    def on_local_candidate(self, candidate: IceCandidate) -> None:
        if self.channel_open():
            self.emit(IceMessage.from_candidate(candidate))
        else:
            self.session.pending_local_candidates.append(candidate)
            logger.debug("Channel not open, holding local candidate %s", candidate.candidate)

    def flush_local(self) -> int:
        """Send local candidates held while the channel was not open."""
        pending = list(self.session.pending_local_candidates)
        self.session.pending_local_candidates.clear()
        for candidate in pending:
            self.emit(IceMessage.from_candidate(candidate))
        if pending:
            logger.info("Sent %d held local candidates", len(pending))
        return len(pending)

    async def on_remote_candidate(self, candidate: IceCandidate) -> None:
        if candidate.is_end_of_candidates:
            logger.debug("Peer signalled end of candidates for line %d", candidate.sdp_mline_index)
            return
        if self.session.remote_description is None:
            self.session.pending_remote_candidates.append(candidate)
            metrics.candidates_buffered.inc()
            logger.debug(
                "Buffered remote candidate (%d pending)", len(self.session.pending_remote_candidates)
            )
            return
        await self._apply(candidate)

    async def flush(self) -> int:
        """Apply buffered peer candidates in arrival order and clear the buffer.

        :return: Number of candidates the media engine accepted
        """
        pending = list(self.session.pending_remote_candidates)
        self.session.pending_remote_candidates.clear()
        applied = 0
        for candidate in pending:
            if await self._apply(candidate):
                applied += 1
        if pending:
            logger.info("Applied %d/%d buffered remote candidates", applied, len(pending))
        return applied

    async def _apply(self, candidate: IceCandidate) -> bool:
        try:
            await self.engine.add_remote_candidate(candidate)
        except MalformedSignalingMessage as e:
            metrics.signaling_dropped.labels(reason="bad_candidate").inc()
            logger.warning("Skipping remote candidate: %s", e)
            return False
        metrics.candidates_applied.inc()
        return True


__all__ = ["IceExchange"]
