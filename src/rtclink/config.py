"""Environment driven configuration.

All runtime knobs are read from ``RTCLINK_*`` environment variables.  The
command line only overrides the signaling server URL and the TLS opt-out,
see :mod:`rtclink.cli`.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlparse

from .utils import env_bool

DEFAULT_SERVER = "wss://localhost:8080"
DEFAULT_STUN = "stun:stun.l.google.com:19302"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        # left invalid on purpose so validate() reports it
        return -1


@dataclass
class Settings:
    """Runtime settings for the sender and receiver tools."""

    # Signaling
    server_url: str = DEFAULT_SERVER
    disable_ssl: bool = False
    connect_attempts: int = 1

    # ICE
    stun_url: str = DEFAULT_STUN
    turn_url: Optional[str] = None
    turn_user: Optional[str] = None
    turn_pass: Optional[str] = None

    # Media
    rx_queue_size: int = 10
    video_device: Optional[str] = None
    video_format: Optional[str] = None
    frame_save_path: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"
    log_file: Optional[str] = None

    # Metrics (0 disables the HTTP exporter)
    metrics_port: int = 0

    @classmethod
    def from_env(cls) -> "Settings":
        """Construct settings from environment variables."""

        return cls(
            server_url=os.getenv("RTCLINK_SERVER", DEFAULT_SERVER),
            disable_ssl=env_bool("RTCLINK_DISABLE_SSL", False),
            connect_attempts=_env_int("RTCLINK_CONNECT_ATTEMPTS", 1),
            stun_url=os.getenv("RTCLINK_STUN_URL", DEFAULT_STUN),
            turn_url=os.getenv("RTCLINK_TURN_URL"),
            turn_user=os.getenv("RTCLINK_TURN_USER"),
            turn_pass=os.getenv("RTCLINK_TURN_PASS"),
            rx_queue_size=_env_int("RTCLINK_RX_QUEUE", 10),
            video_device=os.getenv("RTCLINK_VIDEO_DEVICE"),
            video_format=os.getenv("RTCLINK_VIDEO_FORMAT"),
            frame_save_path=os.getenv("RTCLINK_FRAME_SAVE_PATH"),
            log_level=os.getenv("RTCLINK_LOGLEVEL", "INFO"),
            log_format=os.getenv("RTCLINK_LOG_FORMAT", "text").lower(),
            log_file=os.getenv("RTCLINK_LOGFILE"),
            metrics_port=_env_int("RTCLINK_METRICS_PORT", 0),
        )

    def validate(self) -> List[str]:
        """Validate settings and return a list of error messages, empty if valid."""
        errors = []
        scheme = urlparse(self.server_url).scheme
        if scheme not in ("ws", "wss"):
            errors.append(f"server URL must use ws:// or wss://, got {self.server_url!r}")
        if self.connect_attempts <= 0:
            errors.append("RTCLINK_CONNECT_ATTEMPTS must be a positive integer")
        if not self.stun_url.startswith(("stun:", "stuns:")):
            errors.append("RTCLINK_STUN_URL must start with stun: or stuns:")
        if self.turn_url and not self.turn_url.startswith(("turn:", "turns:")):
            errors.append("RTCLINK_TURN_URL must start with turn: or turns:")
        if self.rx_queue_size <= 0:
            errors.append("RTCLINK_RX_QUEUE must be a positive integer")
        if self.metrics_port < 0 or self.metrics_port > 65535:
            errors.append("RTCLINK_METRICS_PORT must be between 0 and 65535")
        if self.log_format not in ("text", "json"):
            errors.append("RTCLINK_LOG_FORMAT must be 'text' or 'json'")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append("RTCLINK_LOGLEVEL must be a valid logging level")
        return errors


__all__ = ["Settings", "DEFAULT_SERVER", "DEFAULT_STUN"]
