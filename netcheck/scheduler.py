"""Repeat diagnostic runs on an interval for a bounded duration."""

from __future__ import annotations

import logging
import queue
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

LOGGER = logging.getLogger(__name__)

JOB_ID = "diagnostic-run"


@dataclass
class ScheduleConfig:
    repeat_minutes: float = 0
    duration_hours: float = 0
    args: str = ""


_KEYS = {
    "repeatminutes": "repeat_minutes",
    "durationhours": "duration_hours",
    "args": "args",
}


def parse_schedule(text: str) -> ScheduleConfig:
    """Parse ``Key=Value`` lines; unknown keys and ``#`` comments are ignored."""
    values: dict = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = (part.strip() for part in line.split("=", 1))
        field_name = _KEYS.get(key.lower())
        if field_name is None:
            LOGGER.debug("Ignoring unknown schedule key %s", key)
            continue
        if field_name == "args":
            values[field_name] = value.strip('"')
            continue
        try:
            values[field_name] = float(value)
        except ValueError:
            LOGGER.warning("Invalid %s value %r, using default", key, value)
    return ScheduleConfig(**values)


def load_schedule(path: str) -> ScheduleConfig:
    source = Path(path)
    if not source.exists():
        LOGGER.info("Schedule file %s not found, running once", source)
        return ScheduleConfig()
    return parse_schedule(source.read_text(encoding="utf-8"))


class RepeatingRunner:
    """Fires ``job`` every ``repeat_minutes`` until ``duration_hours`` has passed.

    APScheduler only computes the fire times; each run executes on the calling
    thread so an interrupt reaches the run in progress.
    """

    def __init__(self, schedule: ScheduleConfig, job: Callable[[], Any]):
        self.schedule = schedule
        self.job = job
        self._due: "queue.Queue[datetime]" = queue.Queue()
        self.scheduler = BackgroundScheduler(timezone="UTC")
        self.runs = 0

    def _enqueue(self) -> None:
        self._due.put(datetime.now(timezone.utc))

    def _drain(self) -> None:
        while True:
            try:
                self._due.get_nowait()
            except queue.Empty:
                return

    def _run_job(self) -> Optional[Any]:
        self.runs += 1
        LOGGER.info("Starting scheduled diagnostic run #%s", self.runs)
        try:
            return self.job()
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.exception("Scheduled diagnostic run failed: %s", exc)
            return None

    def _finished(self, end: datetime) -> bool:
        if not self._due.empty():
            return False
        return datetime.now(timezone.utc) >= end or self.scheduler.get_job(JOB_ID) is None

    def run(self) -> int:
        if self.schedule.repeat_minutes <= 0:
            LOGGER.info("RepeatMinutes is %s, running once", self.schedule.repeat_minutes)
            self._run_job()
            return 0

        start = datetime.now(timezone.utc)
        end = start + timedelta(hours=max(self.schedule.duration_hours, 0))
        trigger = IntervalTrigger(minutes=self.schedule.repeat_minutes, start_date=start, end_date=end)
        self.scheduler.add_job(
            self._enqueue,
            trigger=trigger,
            id=JOB_ID,
            next_run_time=start,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=None,
        )
        self.scheduler.start()
        LOGGER.info(
            "Scheduler started: every %s minutes until %s",
            self.schedule.repeat_minutes,
            end.isoformat(timespec="seconds"),
        )

        try:
            while True:
                try:
                    self._due.get(timeout=1.0)
                except queue.Empty:
                    if self._finished(end):
                        break
                    continue
                self._drain()
                outcome = self._run_job()
                if getattr(outcome, "interrupted", False):
                    LOGGER.info("Run was interrupted, stopping the schedule")
                    break
                if self._finished(end):
                    break
        finally:
            self.scheduler.shutdown(wait=False)
        LOGGER.info("Scheduler finished after %s runs", self.runs)
        return 0
