"""Logging configuration for the sender and receiver tools.

Every record is tagged with the peer role (``sender`` or ``receiver``) so
that logs from both ends of a session can be interleaved and still read
unambiguously.  Text and JSON output formats are supported.
"""
from __future__ import annotations

import json
import logging
from typing import Optional

TEXT_FORMAT = "[%(asctime)s] %(role)s %(name)s %(levelname)s - %(message)s"
NOISY_LOGGERS = {
    "websockets": logging.WARNING,
    "aiortc": logging.WARNING,
    "aioice": logging.WARNING,
    "asyncio": logging.ERROR,
}


class RoleFilter(logging.Filter):
    """Attach a ``role`` attribute to every record passing through a handler."""

    def __init__(self, role: str) -> None:
        super().__init__()
        self.role = role

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "role"):
            record.role = self.role
        return True


class _JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - trivial
        data = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "role": getattr(record, "role", "-"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


def setup_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_file: Optional[str] = None,
    role: str = "-",
    name: Optional[str] = None,
) -> logging.Logger:
    """Configure the root logger and return a logger.

    Parameters
    ----------
    level:
        Logging level name, e.g. ``"INFO"`` or ``"DEBUG"``.
    fmt:
        ``"text"`` or ``"json"`` output format.
    log_file:
        Optional path to a log file in addition to stderr.
    role:
        Peer role written into every record.
    name:
        Logger name to return.  If omitted the root logger is returned.
    """

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    formatter: logging.Formatter
    if fmt.lower() == "json":
        formatter = _JsonFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT, "%H:%M:%S")

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    role_filter = RoleFilter(role)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(role_filter)
        root.addHandler(handler)

    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for noisy, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(noisy).setLevel(noisy_level)

    return logging.getLogger(name) if name else root


__all__ = ["RoleFilter", "setup_logging"]
