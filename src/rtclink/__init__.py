"""rtclink core package.

Signaling, offer/answer negotiation and receive chain construction for a
single sender/receiver WebRTC video session.  The ``rtc_sender`` and
``rtc_receiver`` scripts in ``src`` are thin wrappers around :mod:`rtclink.cli`.
"""

__version__ = "0.1.0"

__all__ = [
    "aiortc_engine",
    "chain",
    "channel",
    "cli",
    "codec",
    "config",
    "errors",
    "fragment",
    "ice",
    "logging",
    "media",
    "metrics",
    "negotiation",
    "receive_chain",
    "session",
    "sink",
    "sources",
    "types",
    "utils",
]
