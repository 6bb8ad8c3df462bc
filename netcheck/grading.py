"""Aggregation of per-server samples into a run summary and letter grade."""

from __future__ import annotations

import math
from dataclasses import replace
from typing import Iterable, List, Optional, Sequence

from .measurements.models import PingResult, RunSummary, SpeedResult

DISPLAY_PRECISION = 1
LOG_PRECISION = 2


def _mean(values: Iterable[Optional[float]]) -> Optional[float]:
    present = [value for value in values if value is not None and not math.isnan(value)]
    if not present:
        return None
    return sum(present) / len(present)


def grade_connection(download: float, upload: float, ping: float) -> str:
    grade = "A"
    if download < 25 or upload < 10 or ping > 50:
        grade = "B"
    if download < 10 or upload < 5 or ping > 100:
        grade = "C"
    if download < 5 or upload < 2 or ping > 200:
        grade = "D"
    return grade


def classify_loss(loss_pct: Optional[float]) -> Optional[str]:
    if loss_pct is None:
        return None
    if loss_pct == 0:
        return "perfect"
    if loss_pct < 2:
        return "minor"
    return "issues"


def link_utilization(mbps: Optional[float], link_mbps: Optional[int]) -> Optional[float]:
    if mbps is None or not link_mbps:
        return None
    return 100 * mbps / link_mbps


def summarize_run(speed_results: Sequence[SpeedResult], ping_results: Sequence[PingResult]) -> RunSummary:
    avg_download = _mean(result.download_mbps for result in speed_results)
    avg_upload = _mean(result.upload_mbps for result in speed_results)
    avg_ping = _mean(result.ping_ms for result in speed_results)
    avg_jitter = _mean(result.jitter_ms for result in speed_results)
    avg_loss = _mean(result.loss_pct for result in ping_results)

    grade = None
    if None not in (avg_download, avg_upload, avg_ping):
        grade = grade_connection(avg_download, avg_upload, avg_ping)

    return RunSummary(
        server_count=len(speed_results),
        avg_download=avg_download,
        avg_upload=avg_upload,
        avg_ping=avg_ping,
        avg_jitter=avg_jitter,
        avg_loss=avg_loss,
        grade=grade,
        loss_class=classify_loss(avg_loss),
    )


def average_speed_result(speed_results: List[SpeedResult]) -> Optional[SpeedResult]:
    """Synthesized row carrying the cross-server averages, based on the last result."""
    if not speed_results:
        return None

    def _avg(values: Iterable[Optional[float]]) -> Optional[float]:
        value = _mean(values)
        return round(value, LOG_PRECISION) if value is not None else None

    return replace(
        speed_results[-1],
        server_name=f"Average ({len(speed_results)})",
        server_location=None,
        server_country=None,
        server_id=None,
        server_host=None,
        server_ip=None,
        ping_ms=_avg(result.ping_ms for result in speed_results),
        jitter_ms=_avg(result.jitter_ms for result in speed_results),
        packet_loss=_avg(result.packet_loss for result in speed_results),
        download_mbps=_avg(result.download_mbps for result in speed_results),
        upload_mbps=_avg(result.upload_mbps for result in speed_results),
    )


def rounded(value: Optional[float], precision: int = DISPLAY_PRECISION) -> Optional[float]:
    if value is None or math.isnan(value):
        return value
    return round(value, precision)
