#!/usr/bin/env python3
"""
rtc_receiver.py - receive and decode a H264 video stream over WebRTC.

Waits for the sender's offer on the signaling relay, answers it and decodes
the first H264 video stream that arrives.  Set RTCLINK_FRAME_SAVE_PATH to keep
a PNG snapshot of the latest frame on disk.

Usage:
  rtc-receiver --server wss://relay.example:8443
  rtc-receiver --server wss://localhost:8443 --disable-ssl
"""
import sys
from typing import List, Optional

from rtclink import cli as _cli
from rtclink.types import Role


def main(argv: Optional[List[str]] = None) -> int:
    return _cli.main(Role.ANSWERER, "rtc-receiver", "Receive a H264 video stream over WebRTC", argv)


def cli() -> None:
    """Synchronous console entrypoint wrapper for packaging."""
    sys.exit(main())


if __name__ == "__main__":
    cli()
