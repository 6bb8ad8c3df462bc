"""Application bootstrap helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from rich.console import Console

from .config import AppConfig, load_config
from .console import Reporter
from .eventlog import EventLog
from .exporter import CSVExporter
from .logging_setup import configure_logging
from .runner import DiagnosticRunner
from .throttle import TraceThrottle


class ApplicationContext:
    """Holds shared singletons for a diagnostic invocation."""

    def __init__(self, config: AppConfig, console: Optional[Console] = None):
        self.config = config
        configure_logging(config)
        self.events = EventLog(config.event_log_path)
        self.exporter = CSVExporter(config)
        self.throttle = TraceThrottle(config.trace_stamp_path, config.trace.interval_minutes)
        self.reporter = Reporter(console)

    def create_runner(
        self,
        csv_enabled: Optional[bool] = None,
        global_trace: bool = True,
        server_count: Optional[int] = None,
        ping_count: Optional[int] = None,
    ) -> DiagnosticRunner:
        if csv_enabled is None:
            csv_enabled = self.config.export.csv_enabled
        return DiagnosticRunner(
            config=self.config,
            events=self.events,
            reporter=self.reporter,
            exporter=self.exporter if csv_enabled else None,
            throttle=self.throttle,
            global_trace=global_trace,
            server_count=server_count,
            ping_count=ping_count,
        )


def bootstrap(config_path: Optional[str] = None, console: Optional[Console] = None) -> ApplicationContext:
    """Load configuration and wire dependencies."""

    config_file = Path(config_path).resolve() if config_path else None
    config = load_config(str(config_file)) if config_file else load_config()
    return ApplicationContext(config, console)
