"""Colored terminal output for interactive runs."""

from __future__ import annotations

import math
from typing import Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .grading import link_utilization, rounded
from .measurements.models import PingResult, RunSummary, SpeedResult, TraceResult

GRADE_STYLES = {"A": "bold green", "B": "bold cyan", "C": "bold yellow", "D": "bold red"}
LOSS_STYLES = {"perfect": "green", "minor": "yellow", "issues": "red"}


def _fmt(value: Optional[float], suffix: str = "") -> str:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return "n/a"
    return f"{rounded(value):.1f}{suffix}"


def _utilization(mbps: Optional[float], link_mbps: Optional[int]) -> str:
    value = link_utilization(mbps, link_mbps)
    return f" ({value:.1f}% of link)" if value is not None else ""


class Reporter:
    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(highlight=False)

    def step(self, message: str) -> None:
        self.console.print(f"[bold cyan]==>[/] {escape(message)}")

    def info(self, message: str) -> None:
        self.console.print(f"    {escape(message)}", style="dim")

    def warn(self, message: str) -> None:
        self.console.print(f"[yellow]![/] {escape(message)}")

    def error(self, message: str) -> None:
        self.console.print(f"[bold red]x {escape(message)}[/]")

    def speed(self, result: SpeedResult, link_mbps: Optional[int]) -> None:
        server = escape(f"{result.server_name or 'auto'} ({result.server_location or '?'})")
        self.console.print(
            f"[green]+[/] {server}: "
            f"down [bold]{_fmt(result.download_mbps)}[/] Mbps{_utilization(result.download_mbps, link_mbps)}, "
            f"up [bold]{_fmt(result.upload_mbps)}[/] Mbps{_utilization(result.upload_mbps, link_mbps)}, "
            f"ping {_fmt(result.ping_ms)} ms, jitter {_fmt(result.jitter_ms)} ms"
        )

    def ping(self, result: PingResult) -> None:
        style = "green" if result.loss_pct == 0 else ("yellow" if result.loss_pct < 100 else "red")
        self.console.print(
            f"    [{style}]{escape(result.target):<16}[/] "
            f"{result.received}/{result.sent} replies, loss {result.loss_pct:.1f}%, "
            f"min/avg/max {_fmt(result.min_ms)}/{_fmt(result.avg_ms)}/{_fmt(result.max_ms)} ms"
        )

    def trace(self, result: TraceResult) -> None:
        self.console.print(f"    trace {escape(result.target)} ({result.hop_count} hops): {escape(result.path)}")

    def final_summary(
        self,
        summary: RunSummary,
        link_speed: Optional[str],
        link_mbps: Optional[int],
        interrupted: bool = False,
    ) -> None:
        title = "Run summary (partial, interrupted)" if interrupted else "Run summary"
        table = Table(title=title, box=box.ROUNDED, show_header=False)
        table.add_column("metric", style="bold")
        table.add_column("value")

        table.add_row("Servers tested", str(summary.server_count))
        table.add_row("Download", _fmt(summary.avg_download, " Mbps") + _utilization(summary.avg_download, link_mbps))
        table.add_row("Upload", _fmt(summary.avg_upload, " Mbps") + _utilization(summary.avg_upload, link_mbps))
        table.add_row("Ping", _fmt(summary.avg_ping, " ms"))
        table.add_row("Jitter", _fmt(summary.avg_jitter, " ms"))

        loss_style = LOSS_STYLES.get(summary.loss_class or "", "dim")
        table.add_row("Packet loss", f"[{loss_style}]{_fmt(summary.avg_loss, '%')} {summary.loss_class or ''}[/]")
        table.add_row("NIC link", escape(link_speed or "unknown"))

        grade_style = GRADE_STYLES.get(summary.grade or "", "dim")
        table.add_row("Grade", f"[{grade_style}]{summary.grade or 'n/a'}[/]")
        self.console.print(table)
