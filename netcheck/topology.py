"""Discovery of local network reference points: gateway, active NIC, first public hop."""

from __future__ import annotations

import ipaddress
import json
import logging
import platform
import re
import socket
import struct
import subprocess
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

import psutil

from .measurements.models import NicInfo
from .measurements.parsers import IPV4_PATTERN, extract_ipv4_tokens
from .measurements.trace_runner import run_traceroute_raw

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("172.16.0.0/12"),
)

_DEFAULT_ROUTE_RE = re.compile(
    rf"^\s*(?:0\.0\.0\.0\s+0\.0\.0\.0|default|0\.0\.0\.0)\s+({IPV4_PATTERN})\b",
    re.MULTILINE,
)
_HOP_LINE_RE = re.compile(r"^\s*\d+\s")
_LINK_SPEED_RE = re.compile(r"(\d+(?:\.\d+)?)\s*([GM])bps", re.IGNORECASE)
_UNKNOWN_CIM_SPEED = 2**63 - 1


def _first_result(strategies: Sequence[Callable[[], Optional[T]]], what: str) -> Optional[T]:
    """Try each strategy in order; the first non-empty answer wins."""
    for strategy in strategies:
        name = getattr(strategy, "__name__", repr(strategy))
        try:
            value = strategy()
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.debug("%s lookup via %s failed: %s", what, name, exc)
            continue
        if value:
            LOGGER.debug("%s found via %s: %s", what, name, value)
            return value
    LOGGER.debug("%s could not be determined", what)
    return None


def _is_windows() -> bool:
    return platform.system() == "Windows"


def _powershell_json(script: str, timeout: int = 15) -> List[dict]:
    command = [
        "powershell",
        "-NoProfile",
        "-NonInteractive",
        "-Command",
        f"{script} | ConvertTo-Json -Compress",
    ]
    completed = subprocess.run(command, capture_output=True, text=True, timeout=timeout, check=True)
    payload = completed.stdout.strip()
    if not payload:
        return []
    data = json.loads(payload)
    return data if isinstance(data, list) else [data]


# ----------------------------------------------------------------------------
# Default gateway
# ----------------------------------------------------------------------------


def select_lowest_metric(routes: Iterable[Tuple[Optional[str], Any]]) -> Optional[str]:
    """Pick the next hop of the lowest-metric route, ignoring on-link entries."""
    best: Optional[Tuple[float, str]] = None
    for gateway, metric in routes:
        if not gateway or gateway in ("0.0.0.0", "::"):
            continue
        try:
            value = float(metric) if metric is not None else 0.0
        except (TypeError, ValueError):
            value = float("inf")
        if best is None or value < best[0]:
            best = (value, gateway)
    return best[1] if best else None


def parse_proc_net_route(text: str) -> Optional[str]:
    routes = []
    for line in text.splitlines()[1:]:
        fields = line.split()
        if len(fields) < 7 or fields[1] != "00000000":
            continue
        flags = int(fields[3], 16)
        if not flags & 0x2:
            continue
        gateway = socket.inet_ntoa(struct.pack("<L", int(fields[2], 16)))
        routes.append((gateway, fields[6]))
    return select_lowest_metric(routes)


def parse_route_print(text: str) -> Optional[str]:
    for match in _DEFAULT_ROUTE_RE.finditer(text or ""):
        if match.group(1) != "0.0.0.0":
            return match.group(1)
    return None


def _gateway_from_ip_route() -> Optional[str]:
    completed = subprocess.run(
        ["ip", "-j", "route", "show", "default"], capture_output=True, text=True, timeout=5, check=True
    )
    routes = json.loads(completed.stdout or "[]")
    return select_lowest_metric((route.get("gateway"), route.get("metric")) for route in routes)


def _gateway_from_proc_net_route() -> Optional[str]:
    return parse_proc_net_route(Path("/proc/net/route").read_text(encoding="utf-8"))


def _gateway_from_netstat() -> Optional[str]:
    completed = subprocess.run(["netstat", "-rn"], capture_output=True, text=True, timeout=5, check=True)
    return parse_route_print(completed.stdout)


def _gateway_from_net_route() -> Optional[str]:
    rows = _powershell_json(
        "Get-NetRoute -DestinationPrefix '0.0.0.0/0' | Select-Object NextHop,RouteMetric,InterfaceMetric"
    )
    return select_lowest_metric(
        (row.get("NextHop"), (row.get("RouteMetric") or 0) + (row.get("InterfaceMetric") or 0)) for row in rows
    )


def _gateway_from_wmi_route_table() -> Optional[str]:
    rows = _powershell_json(
        "Get-WmiObject Win32_IP4RouteTable -Filter \"Destination='0.0.0.0'\" | Select-Object NextHop,Metric1"
    )
    return select_lowest_metric((row.get("NextHop"), row.get("Metric1")) for row in rows)


def _gateway_from_route_print() -> Optional[str]:
    completed = subprocess.run(
        ["route", "print", "0.0.0.0"], capture_output=True, text=True, timeout=5, check=True
    )
    return parse_route_print(completed.stdout)


def get_default_gateway() -> Optional[str]:
    if _is_windows():
        strategies = [_gateway_from_net_route, _gateway_from_wmi_route_table, _gateway_from_route_print]
    else:
        strategies = [_gateway_from_ip_route, _gateway_from_proc_net_route, _gateway_from_netstat]
    return _first_result(strategies, "Default gateway")


# ----------------------------------------------------------------------------
# Active NIC
# ----------------------------------------------------------------------------


def format_link_speed(bits_per_second: float) -> str:
    if bits_per_second >= 1e9:
        return f"{bits_per_second / 1e9:.0f} Gbps"
    return f"{bits_per_second / 1e6:.0f} Mbps"


def _fastest(adapters: Iterable[Tuple[str, float]]) -> Optional[NicInfo]:
    ranked = sorted(adapters, key=lambda item: item[1], reverse=True)
    if not ranked:
        return None
    name, bits = ranked[0]
    return NicInfo(name=name, link_speed=format_link_speed(bits))


def _is_loopback(name: str, stats: Any) -> bool:
    lowered = name.lower()
    return lowered == "lo" or lowered.startswith("loopback") or "loopback" in getattr(stats, "flags", "")


def _nic_from_psutil() -> Optional[NicInfo]:
    adapters = [
        (name, stats.speed * 1_000_000)
        for name, stats in psutil.net_if_stats().items()
        if stats.isup and stats.speed > 0 and not _is_loopback(name, stats)
    ]
    return _fastest(adapters)


def _nic_from_cim() -> Optional[NicInfo]:
    rows = _powershell_json(
        "Get-CimInstance Win32_NetworkAdapter -Filter 'NetEnabled=True' | Select-Object Name,Speed"
    )
    adapters = []
    for row in rows:
        try:
            speed = int(row.get("Speed"))
        except (TypeError, ValueError):
            continue
        if 0 < speed < _UNKNOWN_CIM_SPEED:
            adapters.append((row.get("Name") or "unknown", speed))
    return _fastest(adapters)


def _nic_from_sysfs() -> Optional[NicInfo]:
    adapters = []
    for device in Path("/sys/class/net").iterdir():
        if device.name == "lo":
            continue
        try:
            state = (device / "operstate").read_text(encoding="utf-8").strip()
            speed = int((device / "speed").read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            continue
        if state == "up" and speed > 0:
            adapters.append((device.name, speed * 1_000_000))
    return _fastest(adapters)


def get_active_nic_info() -> Optional[NicInfo]:
    fallback = _nic_from_cim if _is_windows() else _nic_from_sysfs
    return _first_result([_nic_from_psutil, fallback], "Active NIC")


def parse_nic_link_mbps(link: Optional[str]) -> Optional[int]:
    """Normalize a "2.5 Gbps" / "100 Mbps" link string to whole Mbps."""
    if not link:
        return None
    match = _LINK_SPEED_RE.search(link)
    if not match:
        return None
    value = float(match.group(1))
    if match.group(2).upper() == "G":
        value *= 1000
    return int(round(value))


# ----------------------------------------------------------------------------
# First public hop
# ----------------------------------------------------------------------------


def is_private_ipv4(address: str) -> bool:
    ip = ipaddress.IPv4Address(address)
    return any(ip in network for network in PRIVATE_NETWORKS)


def first_public_address(candidates: Iterable[str]) -> Optional[str]:
    for candidate in candidates:
        try:
            if not is_private_ipv4(candidate):
                return candidate
        except ValueError:
            continue
    return None


def get_first_public_hop(target: str = "1.1.1.1", max_hops: int = 6, timeout: int = 60) -> Optional[str]:
    try:
        output = run_traceroute_raw(target, max_hops=max_hops, timeout=timeout)
    except (OSError, RuntimeError, subprocess.SubprocessError) as exc:
        LOGGER.debug("First public hop lookup failed: %s", exc)
        return None

    # Header lines echo the destination itself, only hop rows are candidates.
    hop_lines = [line for line in output.splitlines() if _HOP_LINE_RE.match(line)]
    return first_public_address(extract_ipv4_tokens("\n".join(hop_lines)))
