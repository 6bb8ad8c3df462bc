"""Append-only ``Timestamp,Type,Detail...`` event log."""

from __future__ import annotations

import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger(__name__)

EVENT_TYPES = ("INFO", "SPEED", "PING", "TRACE", "SUMMARY", "ERROR", "FATAL", "SPEED_AVG")


def format_detail(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return "NaN"
    if isinstance(value, bool):
        return "yes" if value else "no"
    # Fields are comma-joined, so embedded commas would shift columns.
    return str(value).replace(",", ";").replace("\n", " ").strip()


class EventLog:
    def __init__(self, path: Path):
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def write(self, event_type: str, *details: Any) -> str:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type {event_type!r}")
        timestamp = datetime.now().astimezone().isoformat(timespec="seconds")
        line = ",".join([timestamp, event_type, *(format_detail(detail) for detail in details)])
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
        LOGGER.debug("event %s", line)
        return line

    def info(self, *details: Any) -> str:
        return self.write("INFO", *details)

    def error(self, context: str, exc: Any) -> str:
        return self.write("ERROR", context, exc)

    def fatal(self, context: str, exc: Any) -> str:
        return self.write("FATAL", context, exc)
