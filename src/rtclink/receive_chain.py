"""One-shot construction of the receive chain on the answering side."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from . import metrics
from .errors import PipelineLinkFailure
from .fragment import ReceiveFragment, h264_receive_fragment
from .media import IncomingPad, MediaEngine
from .types import H264_VIDEO, MediaProfile, PadDirection

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)


class ReceiveChainBuilder:
    """Splices a receive fragment for the first matching incoming pad.

    Every later pad, matching or not, is ignored.  A link failure leaves the
    session running without video and allows a later pad to try again.
    """

    def __init__(
        self,
        session: "Session",
        engine: MediaEngine,
        profile: MediaProfile = H264_VIDEO,
        fragment_factory: Callable[[int], ReceiveFragment] = h264_receive_fragment,
        queue_capacity: int = 10,
    ) -> None:
        self.session = session
        self.engine = engine
        self.profile = profile
        self.fragment_factory = fragment_factory
        self.queue_capacity = queue_capacity
        self._splicing = False

    async def on_incoming_pad(self, pad: IncomingPad) -> bool:
        """Handle one announced pad.

        :return: True if a fragment was spliced for this pad
        """
        if pad.direction is not PadDirection.SRC:
            return self._ignore(pad, "not_source", "not a source pad")
        if self.session.receive_chain_built or self._splicing:
            return self._ignore(pad, "already_built", "receive chain already built")
        if pad.caps is None:
            return self._ignore(pad, "no_caps", "no negotiated caps")
        if not pad.caps.matches(self.profile):
            return self._ignore(
                pad, "unsupported", f"caps {pad.caps} do not match {self.profile.media}/{self.profile.encoding_name}"
            )

        fragment = self.fragment_factory(self.queue_capacity)
        logger.info("Building receive chain for pad %s (%s)", pad.name, pad.caps)
        self._splicing = True
        try:
            await self.engine.splice_fragment(pad, fragment)
        except PipelineLinkFailure as e:
            logger.error("Failed to link receive chain to pad %s: %s", pad.name, e)
            return False
        finally:
            self._splicing = False

        self.session.receive_chain_built = True
        metrics.chains_built.inc()
        logger.info("Receive chain linked to pad %s", pad.name)
        return True

    def _ignore(self, pad: IncomingPad, reason: str, detail: str) -> bool:
        metrics.pads_ignored.labels(reason=reason).inc()
        logger.info("Ignoring pad %s: %s", pad.name, detail)
        return False


__all__ = ["ReceiveChainBuilder"]
