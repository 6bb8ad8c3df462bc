"""Shared dataclasses for measurements."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple, Union

TIMEOUT = "timeout"


@dataclass(frozen=True)
class SpeedResult:
    timestamp: datetime
    isp: Optional[str]
    external_ip: Optional[str]
    internal_ip: Optional[str]
    nic_name: Optional[str]
    mac_address: Optional[str]
    is_vpn: bool
    server_name: Optional[str]
    server_location: Optional[str]
    server_country: Optional[str]
    server_id: Optional[str]
    server_host: Optional[str]
    server_ip: Optional[str]
    ping_ms: Optional[float]
    jitter_ms: Optional[float]
    packet_loss: Optional[float]
    download_mbps: Optional[float]
    upload_mbps: Optional[float]


@dataclass(frozen=True)
class PingResult:
    timestamp: datetime
    target: str
    sent: int
    received: int
    loss_pct: float
    min_ms: float
    avg_ms: float
    max_ms: float


@dataclass(frozen=True)
class Hop:
    index: int
    ip: str
    latency: Union[float, str]

    @property
    def timed_out(self) -> bool:
        return self.latency == TIMEOUT


@dataclass(frozen=True)
class TraceResult:
    timestamp: datetime
    target: str
    hops: Tuple[Hop, ...]

    @property
    def hop_count(self) -> int:
        return len(self.hops)

    @property
    def path(self) -> str:
        return " > ".join(hop.ip for hop in self.hops)


@dataclass(frozen=True)
class NicInfo:
    name: str
    link_speed: str


@dataclass(frozen=True)
class RunSummary:
    server_count: int
    avg_download: Optional[float]
    avg_upload: Optional[float]
    avg_ping: Optional[float]
    avg_jitter: Optional[float]
    avg_loss: Optional[float]
    grade: Optional[str]
    loss_class: Optional[str]
