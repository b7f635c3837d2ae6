"""Media engine contract.

The negotiation core never touches peer connections or codecs directly.  It
drives a :class:`MediaEngine` through description and candidate operations and
receives engine events through :class:`EngineCallbacks`.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .fragment import ReceiveFragment
from .types import CapabilityDescriptor, IceCandidate, PadDirection, SessionDescription


@dataclass
class IncomingPad:
    """A dynamically announced media stream endpoint.

    :param name: Engine-unique pad name
    :type name: str
    :param caps: Negotiated capabilities, or None when the engine has none yet
    :type caps: Optional[CapabilityDescriptor]
    :param direction: Pad direction; only source pads carry inbound media
    :type direction: PadDirection
    :param handle: Engine-private object backing the pad
    :type handle: Any
    """
    name: str
    caps: Optional[CapabilityDescriptor]
    direction: PadDirection = PadDirection.SRC
    handle: Any = None


@dataclass
class EngineCallbacks:
    """Callbacks an engine invokes on the session's event loop."""
    on_negotiation_needed: Callable[[], None]
    on_local_candidate: Callable[[IceCandidate], None]
    on_incoming_pad: Callable[[IncomingPad], None]
    on_error: Callable[[BaseException], None]


class MediaEngine(ABC):
    """Abstract media engine used by the negotiation core.

    All coroutine methods are issued one at a time, in the order the
    triggering events were observed.
    """

    @abstractmethod
    async def start(self, callbacks: EngineCallbacks) -> None:
        """Build the pipeline and start delivering events to ``callbacks``.

        :raises MediaEngineError: If the pipeline cannot be started.
        """

    @abstractmethod
    async def create_offer(self) -> SessionDescription:
        """Produce a local offer."""

    @abstractmethod
    async def create_answer(self) -> SessionDescription:
        """Produce a local answer to the adopted remote offer."""

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        """Adopt ``description`` locally and return the description as adopted.

        The returned description may differ from the input, e.g. it can carry
        candidates gathered while adopting it.
        """

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> None:
        """Adopt the peer's description."""

    @abstractmethod
    async def add_remote_candidate(self, candidate: IceCandidate) -> None:
        """Apply a peer candidate.  Only called once a remote description is set."""

    @abstractmethod
    async def splice_fragment(self, pad: IncomingPad, fragment: ReceiveFragment) -> None:
        """Insert ``fragment`` into the running pipeline and link it to ``pad``.

        :raises PipelineLinkFailure: If the fragment cannot be linked.
        """

    @abstractmethod
    async def close(self) -> None:
        """Stop the pipeline and release all engine resources."""


__all__ = ["IncomingPad", "EngineCallbacks", "MediaEngine"]
