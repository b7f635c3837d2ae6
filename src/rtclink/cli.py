"""Command line bootstrap shared by ``rtc-sender`` and ``rtc-receiver``.

Only the signaling server and the TLS opt-out are command line flags; every
other knob comes from ``RTCLINK_*`` environment variables.  The process exits
with 0 once the session has ended for any reason and with 1 when arguments or
settings are invalid.
"""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from typing import List, NoReturn, Optional

from .aiortc_engine import AiortcMediaEngine, build_configuration
from .channel import SignalingChannel
from .config import Settings
from .errors import ConfigurationError
from .logging import setup_logging
from .metrics import start_metrics_server
from .session import SessionLifecycle
from .sink import LatestFrameSink
from .sources import open_video_source
from .types import Role
from .utils import redact_url


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise ConfigurationError(message)


def build_parser(prog: str, description: str) -> argparse.ArgumentParser:
    p = _ArgumentParser(prog, description=description)
    p.add_argument("--server", default=None, help="Signaling server URL, ws://… or wss://…")
    p.add_argument(
        "--disable-ssl",
        action="store_true",
        default=None,
        help="Accept any TLS certificate from the signaling server (insecure, development only)",
    )
    return p


def load_settings(prog: str, description: str, argv: Optional[List[str]] = None) -> Settings:
    """Parse ``argv`` on top of the environment settings.

    :raises ConfigurationError: If the arguments or the resulting settings are invalid.
    """
    args = build_parser(prog, description).parse_args(argv)
    settings = Settings.from_env()
    if args.server is not None:
        settings.server_url = args.server
    if args.disable_ssl is not None:
        settings.disable_ssl = args.disable_ssl
    errors = settings.validate()
    if errors:
        raise ConfigurationError("; ".join(errors))
    return settings


async def run_session(role: Role, settings: Settings, logger: logging.Logger) -> Optional[BaseException]:
    """Run one session until it ends and return the error that ended it, if any."""
    metrics_server = None
    if settings.metrics_port:
        metrics_server, _ = start_metrics_server(settings.metrics_port, logger)

    channel = SignalingChannel(
        settings.server_url,
        insecure=settings.disable_ssl,
        connect_attempts=settings.connect_attempts,
    )
    engine = AiortcMediaEngine(
        role,
        build_configuration(settings.stun_url, settings.turn_url, settings.turn_user, settings.turn_pass),
        source_factory=lambda: open_video_source(settings.video_device, settings.video_format),
        sink_factory=lambda: LatestFrameSink(save_path=settings.frame_save_path),
    )
    lifecycle = SessionLifecycle(role, channel, engine, queue_capacity=settings.rx_queue_size)

    loop = asyncio.get_running_loop()
    signals = (signal.SIGINT, signal.SIGTERM)
    for sig in signals:
        try:
            loop.add_signal_handler(sig, lifecycle.request_shutdown)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handler for %s not supported on this platform", sig.name)

    logger.info("Starting %s session with %s", role.value, redact_url(settings.server_url))
    try:
        return await lifecycle.run()
    finally:
        for sig in signals:
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(sig)
        if metrics_server is not None and hasattr(metrics_server, "shutdown"):
            metrics_server.shutdown()
            logger.info("Metrics server shut down")


def main(role: Role, prog: str, description: str, argv: Optional[List[str]] = None) -> int:
    """Parse arguments, run the session and return the process exit code."""
    try:
        settings = load_settings(prog, description, argv)
    except ConfigurationError as e:
        print(f"{prog}: error: {e}", file=sys.stderr)
        return 1

    logger = setup_logging(settings.log_level, settings.log_format, settings.log_file, role=role.value, name=prog)
    error = asyncio.run(run_session(role, settings, logger))
    if error is not None:
        logger.error("Session ended: %s", error)
    else:
        logger.info("Session ended")
    return 0


__all__ = ["build_parser", "load_settings", "run_session", "main"]
