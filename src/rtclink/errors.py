"""Error taxonomy for rtclink.

Transport and negotiation failures end the session; codec and pad level
failures are handled where they occur and only logged.
"""


class RtclinkError(Exception):
    """Base class for all rtclink errors."""


class ConfigurationError(RtclinkError):
    """Invalid command line arguments or environment settings."""


class TransportError(RtclinkError):
    """The signaling channel failed to connect or closed abnormally."""


class MalformedSignalingMessage(RtclinkError):
    """A peer message that cannot be acted on; it is dropped."""


class DecodeError(MalformedSignalingMessage):
    """A signaling frame that does not decode to a known message."""


class NegotiationRejected(RtclinkError):
    """The media engine failed to produce or adopt a description."""


class NegotiationInProgress(RtclinkError):
    """An offer was requested while another one is still being created."""


class PipelineLinkFailure(RtclinkError):
    """A receive fragment could not be attached to its source pad."""


class MediaEngineError(RtclinkError):
    """The media engine hit an unrecoverable error."""


class InvalidStateTransition(RtclinkError):
    """A session state change that the lifecycle does not allow."""
