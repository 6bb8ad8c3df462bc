"""Per-server ping target set construction."""

from __future__ import annotations

import logging
import socket
from typing import Iterable, List, Optional

from .measurements.models import SpeedResult

LOGGER = logging.getLogger(__name__)

DEFAULT_RESOLVERS = ("1.1.1.1", "8.8.8.8")


def resolve_server_ip(result: SpeedResult) -> Optional[str]:
    """Server address as reported by the tool, else looked up by host or name."""
    if result.server_ip:
        return result.server_ip
    for name in (result.server_host, result.server_name):
        if not name:
            continue
        host = name.split(":", 1)[0]
        try:
            return socket.gethostbyname(host)
        except (socket.gaierror, UnicodeError) as exc:
            LOGGER.debug("DNS lookup for %s failed: %s", host, exc)
    return None


def build_targets(
    gateway: Optional[str],
    first_public_hop: Optional[str],
    server_ip: Optional[str],
    resolvers: Iterable[str] = DEFAULT_RESOLVERS,
) -> List[str]:
    candidates = [gateway, first_public_hop, *resolvers, server_ip]
    targets: List[str] = []
    for candidate in candidates:
        if candidate and candidate not in targets:
            targets.append(candidate)
    return targets
