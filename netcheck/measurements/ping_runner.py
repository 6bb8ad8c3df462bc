"""Sequential single-echo ping probe."""

from __future__ import annotations

import logging
import platform
import subprocess
from typing import Callable, List, Optional

from .models import PingResult
from .parsers import parse_ping_reply_ms, summarize_ping_replies

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def _ping_command(target: str, timeout_ms: int) -> List[str]:
    if platform.system() == "Windows":
        return ["ping", "-n", "1", "-w", str(timeout_ms), target]
    return ["ping", "-c", "1", "-W", str(max(1, round(timeout_ms / 1000))), target]


def ping_once(target: str, timeout_ms: int = 1000) -> Optional[float]:
    """Send one echo request and return its round-trip time in ms, or None."""
    try:
        result = subprocess.run(
            _ping_command(target, timeout_ms),
            capture_output=True,
            text=True,
            timeout=timeout_ms / 1000 + 5,
        )
    except subprocess.TimeoutExpired:
        LOGGER.debug("Ping to %s timed out", target)
        return None

    # Windows reports "Destination host unreachable" with status 0, so a reply needs a time field.
    if result.returncode != 0:
        return None
    return parse_ping_reply_ms(result.stdout)


def run_ping(
    target: str,
    count: int,
    timeout_ms: int = 1000,
    progress: Optional[ProgressCallback] = None,
) -> PingResult:
    replies: List[float] = []
    for sent in range(1, count + 1):
        latency = ping_once(target, timeout_ms)
        if latency is not None:
            replies.append(latency)
        if progress is not None:
            progress(sent, len(replies))
    result = summarize_ping_replies(target, count, replies)
    LOGGER.debug("Ping %s: %s/%s received, %.1f%% loss", target, result.received, count, result.loss_pct)
    return result
