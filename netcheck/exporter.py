"""CSV export helpers for diagnostic results."""

from __future__ import annotations

import csv
import math
from pathlib import Path
from typing import Any, List, Optional

from .config import AppConfig
from .measurements.models import PingResult, SpeedResult, TraceResult

SPEED_HEADER = [
    "timestamp",
    "isp",
    "external_ip",
    "internal_ip",
    "nic_name",
    "mac_address",
    "is_vpn",
    "server_name",
    "server_location",
    "server_id",
    "server_ip",
    "ping_ms",
    "jitter_ms",
    "packet_loss",
    "download_mbps",
    "upload_mbps",
    "nic_speed",
    "gateway",
    "first_public_hop",
]

PING_HEADER = ["timestamp", "target", "sent", "received", "loss_pct", "min_ms", "avg_ms", "max_ms"]

TRACE_HEADER = ["timestamp", "target", "hop_count", "path"]


class CSVExporter:
    def __init__(self, config: AppConfig):
        self.config = config
        self.directory = config.paths.data_dir

    @staticmethod
    def _blank_if_none(value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, float) and math.isnan(value):
            return "NaN"
        return value

    def _append(self, name: str, header: List[str], row: List[Any]) -> Path:
        target = self.directory / name
        write_header = not target.exists()
        with target.open("a", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle)
            if write_header:
                writer.writerow(header)
            writer.writerow([self._blank_if_none(value) for value in row])
        return target

    def append_speed(
        self,
        result: SpeedResult,
        nic_speed: Optional[str],
        gateway: Optional[str],
        first_public_hop: Optional[str],
    ) -> Path:
        row = [
            result.timestamp.isoformat(),
            result.isp,
            result.external_ip,
            result.internal_ip,
            result.nic_name,
            result.mac_address,
            result.is_vpn,
            result.server_name,
            result.server_location,
            result.server_id,
            result.server_ip,
            result.ping_ms,
            result.jitter_ms,
            result.packet_loss,
            result.download_mbps,
            result.upload_mbps,
            nic_speed,
            gateway,
            first_public_hop,
        ]
        return self._append("speed.csv", SPEED_HEADER, row)

    def append_ping(self, result: PingResult) -> Path:
        row = [
            result.timestamp.isoformat(),
            result.target,
            result.sent,
            result.received,
            result.loss_pct,
            result.min_ms,
            result.avg_ms,
            result.max_ms,
        ]
        return self._append("ping.csv", PING_HEADER, row)

    def append_trace(self, result: TraceResult) -> Path:
        row = [result.timestamp.isoformat(), result.target, result.hop_count, result.path]
        return self._append("trace.csv", TRACE_HEADER, row)
