#!/usr/bin/env python3
"""
rtc_sender.py - publish a H264 video stream to a peer over WebRTC.

Connects to the signaling relay, creates the offer and streams a test pattern
(or the device named by RTCLINK_VIDEO_DEVICE) once the peer has answered.

Usage:
  rtc-sender --server wss://relay.example:8443
  RTCLINK_VIDEO_DEVICE=/dev/video0 RTCLINK_VIDEO_FORMAT=v4l2 rtc-sender --server ws://localhost:8443
"""
import sys
from typing import List, Optional

from rtclink import cli as _cli
from rtclink.types import Role


def main(argv: Optional[List[str]] = None) -> int:
    return _cli.main(Role.OFFERER, "rtc-sender", "Send a H264 video stream over WebRTC", argv)


def cli() -> None:
    """Synchronous console entrypoint wrapper for packaging."""
    sys.exit(main())


if __name__ == "__main__":
    cli()
