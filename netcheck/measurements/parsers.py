"""Parsers turning raw speedtest, traceroute and ping output into records."""

from __future__ import annotations

import json
import math
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from .models import TIMEOUT, Hop, PingResult, SpeedResult

IPV4_PATTERN = r"\d{1,3}(?:\.\d{1,3}){3}"
IPV4_RE = re.compile(rf"\b{IPV4_PATTERN}\b")

_SAMPLE = r"(<?\d+(?:\.\d+)?\s*ms|\*)"
# tracert -d:  "  3    12 ms    <1 ms    15 ms  203.0.113.5"
_TRACERT_HOP_RE = re.compile(rf"^\s*(\d+)\s+{_SAMPLE}\s+{_SAMPLE}\s+{_SAMPLE}\s+({IPV4_PATTERN})\s*$")
# "  4     *        *        *     Request timed out."
_SILENT_HOP_RE = re.compile(r"^\s*(\d+)\s+\*\s+\*\s+\*(?:\s+[^\d\s].*)?\s*$")
# traceroute -n:  " 3  203.0.113.5  12.345 ms  0.912 ms  15.001 ms"
_POSIX_HOP_RE = re.compile(rf"^\s*(\d+)\s+((?:\*\s+)*)({IPV4_PATTERN})\b(.*)$")
_SAMPLE_TOKEN_RE = re.compile(r"<?(\d+(?:\.\d+)?)\s*ms|(\*)")

_PING_TIME_RE = re.compile(r"time[=<]\s*(\d+(?:\.\d+)?)\s*ms", re.IGNORECASE)


def bandwidth_to_mbps(value: Optional[float]) -> Optional[float]:
    """Convert the Ookla byte/s bandwidth field to Mbps."""
    if value is None:
        return None
    return round(value * 8 / 1_048_576, 1)


def extract_json_document(output: str) -> Any:
    """Return the JSON document in the tool output.

    The Ookla CLI may print license or progress notices around the payload
    when stderr is merged, so a line-by-line search backs up the whole-text
    parse.
    """
    text = (output or "").strip()
    try:
        return json.loads(text)
    except ValueError:
        pass

    for line in reversed(text.splitlines()):
        line = line.strip()
        if not line.startswith(("{", "[")):
            continue
        try:
            return json.loads(line)
        except ValueError:
            continue
    raise ValueError("speedtest output did not contain a JSON document")


def parse_speedtest_payload(data: Dict[str, Any]) -> SpeedResult:
    download = data.get("download") or {}
    upload = data.get("upload") or {}
    ping = data.get("ping") or {}
    interface = data.get("interface") or {}
    server = data.get("server") or {}

    server_id = server.get("id")
    return SpeedResult(
        timestamp=parse_timestamp(data.get("timestamp")),
        isp=data.get("isp"),
        external_ip=interface.get("externalIp"),
        internal_ip=interface.get("internalIp"),
        nic_name=interface.get("name"),
        mac_address=interface.get("macAddr"),
        is_vpn=bool(interface.get("isVpn")),
        server_name=server.get("name"),
        server_location=server.get("location"),
        server_country=server.get("country"),
        server_id=str(server_id) if server_id is not None else None,
        server_host=server.get("host"),
        server_ip=server.get("ip") or None,
        ping_ms=_as_float(ping.get("latency")),
        jitter_ms=_as_float(ping.get("jitter")),
        packet_loss=_as_float(data.get("packetLoss")),
        download_mbps=bandwidth_to_mbps(download.get("bandwidth")),
        upload_mbps=bandwidth_to_mbps(upload.get("bandwidth")),
    )


def parse_server_list(data: Any) -> List[Dict[str, Any]]:
    """Accept both a bare server array and the ``{"servers": [...]}`` envelope."""
    if isinstance(data, dict):
        data = data.get("servers") or []
    if not isinstance(data, list):
        raise ValueError("server list is not a JSON array")
    return [entry for entry in data if isinstance(entry, dict) and entry.get("id") is not None]


def parse_traceroute_output(text: str) -> List[Hop]:
    hops: List[Hop] = []
    for line in (text or "").splitlines():
        hop = _parse_trace_line(line)
        if hop is not None:
            hops.append(hop)
    return hops


def _parse_trace_line(line: str) -> Optional[Hop]:
    match = _TRACERT_HOP_RE.match(line)
    if match:
        return Hop(index=int(match.group(1)), ip=match.group(5), latency=_sample_latency(match.group(4)))

    match = _SILENT_HOP_RE.match(line)
    if match:
        return Hop(index=int(match.group(1)), ip="*", latency=TIMEOUT)

    match = _POSIX_HOP_RE.match(line)
    if match:
        samples = [
            token.group(1) or "*"
            for token in _SAMPLE_TOKEN_RE.finditer(match.group(2) + " " + match.group(4))
        ]
        if not samples:
            return Hop(index=int(match.group(1)), ip=match.group(3), latency=TIMEOUT)
        chosen = samples[2] if len(samples) >= 3 else samples[-1]
        return Hop(index=int(match.group(1)), ip=match.group(3), latency=_sample_latency(chosen))

    return None


def _sample_latency(sample: str) -> Union[float, str]:
    value = sample.strip()
    if value == "*":
        return TIMEOUT
    value = value.replace("ms", "").replace("<", "").strip()
    return float(value)


def extract_ipv4_tokens(text: str) -> List[str]:
    return IPV4_RE.findall(text or "")


def parse_ping_reply_ms(output: str) -> Optional[float]:
    match = _PING_TIME_RE.search(output or "")
    if match:
        return float(match.group(1))
    return None


def summarize_ping_replies(
    target: str,
    sent: int,
    replies: Iterable[float],
    timestamp: Optional[datetime] = None,
) -> PingResult:
    replies = list(replies)
    received = len(replies)
    loss = round((1 - received / sent) * 100, 1) if sent else 100.0
    if replies:
        min_ms, avg_ms, max_ms = min(replies), sum(replies) / received, max(replies)
    else:
        min_ms = avg_ms = max_ms = math.nan
    return PingResult(
        timestamp=timestamp or datetime.now().astimezone(),
        target=target,
        sent=sent,
        received=received,
        loss_pct=loss,
        min_ms=min_ms,
        avg_ms=avg_ms,
        max_ms=max_ms,
    )


def parse_timestamp(raw: Optional[str]) -> datetime:
    if not raw:
        return datetime.now().astimezone()
    clean = raw.replace("Z", "+00:00") if raw.endswith("Z") else raw
    return datetime.fromisoformat(clean)


def _as_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None
