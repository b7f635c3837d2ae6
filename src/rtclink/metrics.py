"""Prometheus metrics for rtclink sessions.

Metrics are defined once at import time on the default registry; the HTTP
exporter is only started when a metrics port is configured.
"""

import logging
from typing import Any, Tuple

from prometheus_client import Counter, Enum, start_http_server

from .types import SessionState

# Metrics definitions
signaling_received = Counter(
    "rtclink_signaling_messages_received_total", "Signaling messages received", ["kind"]
)
signaling_sent = Counter(
    "rtclink_signaling_messages_sent_total", "Signaling messages sent", ["kind"]
)
signaling_dropped = Counter(
    "rtclink_signaling_messages_dropped_total", "Signaling messages dropped", ["reason"]
)
candidates_buffered = Counter(
    "rtclink_remote_candidates_buffered_total", "Remote ICE candidates buffered before the remote description"
)
candidates_applied = Counter(
    "rtclink_remote_candidates_applied_total", "Remote ICE candidates applied to the media engine"
)
pads_ignored = Counter(
    "rtclink_pads_ignored_total", "Incoming pads ignored by the receive chain builder", ["reason"]
)
chains_built = Counter("rtclink_receive_chains_built_total", "Receive fragments spliced into the pipeline")
frames_received = Counter("rtclink_frames_received_total", "Video frames delivered by the receive chain")
frames_dropped = Counter("rtclink_frames_dropped_total", "Video frames dropped by the bounded receive queue")
session_state = Enum(
    "rtclink_session_state", "Current session lifecycle state",
    states=[s.value for s in SessionState],
)


def start_metrics_server(port: int, logger: logging.Logger) -> Tuple[Any, Any]:
    """Start the Prometheus metrics exporter.

    :param port: Port number to bind the metrics server to
    :param logger: Logger instance for recording server startup status
    :return: Tuple of (server, thread) for clean shutdown, ``(None, None)`` on failure
    """
    try:
        ret = start_http_server(port)
        if isinstance(ret, tuple) and len(ret) == 2:
            server, thread = ret
        else:
            server, thread = ret, None
        logger.info("Metrics server started on port %d", port)
        return server, thread
    except OSError as e:
        logger.error("Failed to start metrics server on port %d: %s", port, e)
        return None, None
