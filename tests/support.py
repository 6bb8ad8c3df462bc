"""Shared fixtures for the test suite."""

from __future__ import annotations

import io
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import yaml
from rich.console import Console

from netcheck.config import AppConfig, load_config
from netcheck.measurements.models import SpeedResult


def make_config(directory: Path, **sections) -> AppConfig:
    data = {
        "paths": {"data_dir": "data", "logs_dir": "logs", "bin_dir": "bin"},
        "ookla": {"auto_download": False},
        "probes": {"ping_count": 2, "poll_interval": 0.01},
    }
    for name, values in sections.items():
        data.setdefault(name, {}).update(values)
    path = directory / "config.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return load_config(str(path))


def quiet_console() -> Console:
    return Console(file=io.StringIO(), force_terminal=False, width=120)


def make_speed(
    download: Optional[float],
    upload: Optional[float],
    ping: Optional[float],
    server_id: str = "1",
    server_ip: Optional[str] = "203.0.113.10",
    jitter: Optional[float] = 1.0,
) -> SpeedResult:
    return SpeedResult(
        timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        isp="Example ISP",
        external_ip="198.51.100.7",
        internal_ip="192.168.1.20",
        nic_name="eth0",
        mac_address="AA:BB:CC:DD:EE:FF",
        is_vpn=False,
        server_name=f"Server {server_id}",
        server_location="Springfield",
        server_country="US",
        server_id=server_id,
        server_host=f"speed{server_id}.example.net:8080",
        server_ip=server_ip,
        ping_ms=ping,
        jitter_ms=jitter,
        packet_loss=0.0,
        download_mbps=download,
        upload_mbps=upload,
    )
