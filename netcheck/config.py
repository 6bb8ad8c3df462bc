"""Configuration loading helpers for the broadband diagnostics runner."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
import platform
import yaml


@dataclass
class PathsConfig:
    data_dir: Path
    logs_dir: Path
    bin_dir: Path


@dataclass
class OoklaConfig:
    auto_download: bool = True
    binary_name: str = "speedtest"
    urls: Dict[str, str] = field(default_factory=dict)


@dataclass
class SpeedtestConfig:
    server_count: int = 3
    timeout_seconds: int = 180
    extra_args: List[str] = field(default_factory=list)


@dataclass
class ProbesConfig:
    ping_count: int = 10
    ping_timeout_ms: int = 1000
    trace_max_hops: int = 30
    trace_timeout_seconds: int = 120
    public_hop_target: str = "1.1.1.1"
    public_hop_max_hops: int = 6
    poll_interval: float = 0.1
    resolvers: List[str] = field(default_factory=lambda: ["1.1.1.1", "8.8.8.8"])


@dataclass
class TraceConfig:
    interval_minutes: int = 60
    targets: List[str] = field(default_factory=lambda: ["1.1.1.1", "8.8.8.8"])


@dataclass
class ExportConfig:
    csv_enabled: bool = False


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class AppConfig:
    root_dir: Path
    paths: PathsConfig
    ookla: OoklaConfig
    speedtest: SpeedtestConfig
    probes: ProbesConfig
    trace: TraceConfig
    export: ExportConfig
    logging: LoggingConfig

    @property
    def ookla_platform_key(self) -> str:
        system = platform.system().lower()
        machine = platform.machine().lower()
        # Normalize machine architecture names
        if machine in ("amd64", "x86_64"):
            machine = "x86_64"
        elif machine in ("arm64", "aarch64"):
            machine = "aarch64"
        return f"{system}_{machine}"

    @property
    def event_log_path(self) -> Path:
        return self.paths.logs_dir / "diagnostics.log"

    @property
    def trace_stamp_path(self) -> Path:
        return self.paths.data_dir / "last_trace.txt"


def _as_path(base: Path, maybe_path: Optional[str]) -> Path:
    if not maybe_path:
        raise ValueError("Path configuration entries cannot be empty")
    path = (base / maybe_path).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load application configuration from YAML file."""

    root_dir = Path(path).resolve().parent if path else Path.cwd()
    source_path = Path(path) if path else root_dir / "config.yaml"
    if not source_path.exists():
        raise FileNotFoundError(f"Missing configuration file at {source_path}")

    with source_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    paths_data = data.get("paths", {})
    paths = PathsConfig(
        data_dir=_as_path(root_dir, paths_data.get("data_dir", "data")),
        logs_dir=_as_path(root_dir, paths_data.get("logs_dir", "logs")),
        bin_dir=_as_path(root_dir, paths_data.get("bin_dir", "bin")),
    )

    config = AppConfig(
        root_dir=root_dir,
        paths=paths,
        ookla=OoklaConfig(**data.get("ookla", {})),
        speedtest=SpeedtestConfig(**data.get("speedtest", {})),
        probes=ProbesConfig(**data.get("probes", {})),
        trace=TraceConfig(**data.get("trace", {})),
        export=ExportConfig(**data.get("export", {})),
        logging=LoggingConfig(**data.get("logging", {})),
    )

    return config
