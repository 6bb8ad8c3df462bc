"""Diagnostic run orchestration.

A run walks discovery, server selection, one round per speed-test server
(speed test, ping sweep, server traceroute, summary), cross-server averages,
the throttled global traceroute batch and finally the summary. Interrupts
jump straight to the summary with whatever was collected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Optional

from .background import run_in_background
from .config import AppConfig
from .console import Reporter
from .eventlog import EventLog
from .exporter import CSVExporter
from .grading import LOG_PRECISION, average_speed_result, link_utilization, rounded, summarize_run
from .measurements.models import NicInfo, PingResult, RunSummary, SpeedResult, TraceResult
from .measurements.ping_runner import run_ping
from .measurements.speedtest_runner import ensure_ookla_binary, list_servers, run_speedtest, select_nearest_servers
from .measurements.trace_runner import run_traceroute
from .targets import build_targets, resolve_server_ip
from .throttle import TraceThrottle
from .topology import get_active_nic_info, get_default_gateway, get_first_public_hop, parse_nic_link_mbps

LOGGER = logging.getLogger(__name__)


class RunInterrupted(BaseException):
    """Raised by the termination signal handler to end a run early.

    Like ``KeyboardInterrupt`` it is not an ``Exception``, so per-probe error
    handlers let it through to the run loop.
    """


@dataclass
class RunContext:
    started: datetime
    gateway: Optional[str] = None
    nic: Optional[NicInfo] = None
    first_public_hop: Optional[str] = None
    speed_results: List[SpeedResult] = field(default_factory=list)
    ping_results: List[PingResult] = field(default_factory=list)
    trace_results: List[TraceResult] = field(default_factory=list)
    global_traces: List[TraceResult] = field(default_factory=list)
    global_trace_ran: bool = False
    summary: Optional[RunSummary] = None
    interrupted: bool = False

    @property
    def link_speed(self) -> Optional[str]:
        return self.nic.link_speed if self.nic else None

    @property
    def link_mbps(self) -> Optional[int]:
        return parse_nic_link_mbps(self.link_speed)


def _log_value(value: Optional[float]) -> Optional[float]:
    return rounded(value, LOG_PRECISION)


class DiagnosticRunner:
    def __init__(
        self,
        config: AppConfig,
        events: EventLog,
        reporter: Reporter,
        exporter: Optional[CSVExporter] = None,
        throttle: Optional[TraceThrottle] = None,
        global_trace: bool = True,
        server_count: Optional[int] = None,
        ping_count: Optional[int] = None,
    ) -> None:
        self.config = config
        self.events = events
        self.reporter = reporter
        self.exporter = exporter
        self.throttle = throttle or TraceThrottle(config.trace_stamp_path, config.trace.interval_minutes)
        self.global_trace = global_trace
        self.server_count = server_count or config.speedtest.server_count
        self.ping_count = ping_count or config.probes.ping_count

    def _background(self, func: Callable[..., Any], *args: Any, label: str) -> Any:
        return run_in_background(
            func,
            *args,
            label=label,
            console=self.reporter.console,
            poll_interval=self.config.probes.poll_interval,
        )

    def run(self) -> RunContext:
        context = RunContext(started=datetime.now().astimezone())
        self.events.info("run", "started")
        try:
            self._discover(context)
            binary = self._speedtest_binary()
            if binary is not None:
                for server_id in self._select_servers(binary):
                    self._server_round(context, binary, server_id)
            self._compute_averages(context)
            self._throttled_global_trace(context)
        except (KeyboardInterrupt, RunInterrupted):
            context.interrupted = True
            LOGGER.info("Run interrupted, summarizing partial results")
            self.events.info("run", "interrupted; summarizing partial results")
            self.reporter.warn("Interrupted, summarizing what was collected so far")
        self._final_summary(context)
        return context

    # -- discovery ---------------------------------------------------------

    def _discover(self, context: RunContext) -> None:
        self.reporter.step("Discovering network topology")
        context.gateway = get_default_gateway()
        context.nic = get_active_nic_info()
        probes = self.config.probes
        context.first_public_hop = self._background(
            get_first_public_hop,
            probes.public_hop_target,
            probes.public_hop_max_hops,
            probes.trace_timeout_seconds,
            label="Locating first public hop",
        )
        self.reporter.info(
            f"gateway {context.gateway or 'unknown'}, "
            f"NIC {context.nic.name if context.nic else 'unknown'} ({context.link_speed or 'link speed unknown'}), "
            f"first public hop {context.first_public_hop or 'unknown'}"
        )
        self.events.info(
            "topology",
            context.gateway,
            context.nic.name if context.nic else None,
            context.link_speed,
            context.first_public_hop,
        )

    # -- server selection --------------------------------------------------

    def _speedtest_binary(self) -> Optional[Path]:
        try:
            return ensure_ookla_binary(self.config)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.error("Speedtest binary unavailable: %s", exc)
            self.reporter.error(f"Speedtest binary unavailable: {exc}")
            self.events.error("speedtest binary", exc)
            return None

    def _select_servers(self, binary: Path) -> List[Optional[str]]:
        try:
            servers = self._background(list_servers, self.config, binary, label="Fetching nearby servers")
            selected: List[Optional[str]] = list(select_nearest_servers(servers, self.server_count))
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning("Server list unavailable (%s), letting the tool pick a server", exc)
            self.reporter.warn(f"Server list unavailable ({exc}); using an auto-selected server")
            self.events.error("server list", exc)
            return [None]
        if not selected:
            return [None]
        self.events.info("servers", " ".join(server_id for server_id in selected if server_id))
        return selected

    # -- per-server round --------------------------------------------------

    def _server_round(self, context: RunContext, binary: Path, server_id: Optional[str]) -> None:
        label = f"server {server_id}" if server_id else "auto-selected server"
        self.reporter.step(f"Speed test against {label}")
        try:
            result = self._background(run_speedtest, self.config, binary, server_id, label=f"Speed test ({label})")
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.error("Speed test against %s failed: %s", label, exc)
            self.reporter.error(f"Speed test against {label} failed: {exc}")
            self.events.error(f"speedtest {label}", exc)
            return

        server_ip = resolve_server_ip(result)
        if server_ip != result.server_ip:
            result = replace(result, server_ip=server_ip)
        context.speed_results.append(result)
        self.reporter.speed(result, context.link_mbps)
        self.events.write(
            "SPEED",
            result.server_name,
            result.server_id,
            result.server_ip,
            result.ping_ms,
            result.jitter_ms,
            result.packet_loss,
            result.download_mbps,
            result.upload_mbps,
            result.isp,
            result.external_ip,
        )

        targets = build_targets(context.gateway, context.first_public_hop, server_ip, self.config.probes.resolvers)
        round_pings: List[PingResult] = []
        for target in targets:
            ping = self._ping(context, target)
            if ping is not None:
                round_pings.append(ping)

        if server_ip:
            trace = self._trace(server_ip)
            if trace is not None:
                context.trace_results.append(trace)
        else:
            self.reporter.warn(f"No address for {result.server_name or label}, skipping its traceroute")
            self.events.info("trace", f"skipped {result.server_name or label}: address unknown")

        round_loss = summarize_run([], round_pings).avg_loss
        self.events.write(
            "SUMMARY",
            result.server_name,
            result.download_mbps,
            result.upload_mbps,
            result.ping_ms,
            result.jitter_ms,
            _log_value(round_loss),
            _log_value(link_utilization(result.download_mbps, context.link_mbps)),
            _log_value(link_utilization(result.upload_mbps, context.link_mbps)),
        )

    def _ping(self, context: RunContext, target: str) -> Optional[PingResult]:
        count = self.ping_count
        try:
            with self.reporter.console.status(f"Pinging {target} (0/{count})") as status:

                def _progress(sent: int, received: int) -> None:
                    status.update(f"Pinging {target} ({sent}/{count}, {received} replies)")

                result = run_ping(target, count, self.config.probes.ping_timeout_ms, progress=_progress)
        except (OSError, RuntimeError, ValueError) as exc:
            LOGGER.error("Ping to %s failed: %s", target, exc)
            self.reporter.error(f"Ping to {target} failed: {exc}")
            self.events.error(f"ping {target}", exc)
            return None

        context.ping_results.append(result)
        self.reporter.ping(result)
        self.events.write(
            "PING",
            result.target,
            result.sent,
            result.received,
            result.loss_pct,
            _log_value(result.min_ms),
            _log_value(result.avg_ms),
            _log_value(result.max_ms),
        )
        if self.exporter is not None:
            self.exporter.append_ping(result)
        return result

    def _trace(self, target: str) -> Optional[TraceResult]:
        probes = self.config.probes
        try:
            trace = self._background(
                run_traceroute,
                target,
                probes.trace_max_hops,
                probes.trace_timeout_seconds,
                label=f"Traceroute to {target}",
            )
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.error("Traceroute to %s failed: %s", target, exc)
            self.reporter.error(f"Traceroute to {target} failed: {exc}")
            self.events.error(f"traceroute {target}", exc)
            return None
        self.reporter.trace(trace)
        self.events.write("TRACE", trace.target, trace.hop_count, trace.path)
        return trace

    # -- aggregation -------------------------------------------------------

    def _compute_averages(self, context: RunContext) -> None:
        context.summary = summarize_run(context.speed_results, context.ping_results)
        average = average_speed_result(context.speed_results)
        if average is None:
            self.events.info("averages", "no speed test results")
            return

        summary = context.summary
        self.events.write(
            "SPEED_AVG",
            summary.server_count,
            _log_value(summary.avg_download),
            _log_value(summary.avg_upload),
            _log_value(summary.avg_ping),
            _log_value(summary.avg_jitter),
            _log_value(summary.avg_loss),
            summary.grade,
            summary.loss_class,
            _log_value(link_utilization(summary.avg_download, context.link_mbps)),
            _log_value(link_utilization(summary.avg_upload, context.link_mbps)),
        )
        if self.exporter is not None:
            self.exporter.append_speed(average, context.link_speed, context.gateway, context.first_public_hop)

    def _throttled_global_trace(self, context: RunContext) -> None:
        if not self.global_trace:
            return
        if not self.throttle.is_due():
            minutes = int(self.throttle.remaining().total_seconds() // 60)
            self.reporter.info(f"Global traceroute skipped, next batch due in {minutes} min")
            self.events.info("trace", f"global batch skipped; due in {minutes} min")
            return

        self.reporter.step("Global traceroute batch")
        for target in self.config.trace.targets:
            trace = self._trace(target)
            if trace is None:
                continue
            context.global_traces.append(trace)
            if self.exporter is not None:
                self.exporter.append_trace(trace)
        self.throttle.mark()
        context.global_trace_ran = True

    def _final_summary(self, context: RunContext) -> None:
        if context.summary is None or context.interrupted:
            context.summary = summarize_run(context.speed_results, context.ping_results)
        summary = context.summary
        self.reporter.final_summary(summary, context.link_speed, context.link_mbps, interrupted=context.interrupted)
        self.events.info(
            "run",
            "interrupted" if context.interrupted else "finished",
            summary.grade,
            summary.loss_class,
        )
