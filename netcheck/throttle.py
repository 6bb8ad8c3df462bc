"""Persisted timestamp that rate-limits the global traceroute batch."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

LOGGER = logging.getLogger(__name__)


def _aware(moment: Optional[datetime]) -> datetime:
    if moment is None:
        return datetime.now().astimezone()
    return moment if moment.tzinfo else moment.astimezone()


class TraceThrottle:
    def __init__(self, stamp_path: Path, interval_minutes: float = 60):
        self.stamp_path = stamp_path
        self.interval = timedelta(minutes=interval_minutes)

    def last_run(self) -> Optional[datetime]:
        if not self.stamp_path.exists():
            return None
        raw = self.stamp_path.read_text(encoding="utf-8").strip()
        try:
            stamp = datetime.fromisoformat(raw)
        except ValueError:
            LOGGER.warning("Ignoring unreadable trace stamp %r in %s", raw, self.stamp_path)
            return None
        return _aware(stamp)

    def is_due(self, now: Optional[datetime] = None) -> bool:
        last = self.last_run()
        if last is None:
            return True
        now = _aware(now)
        return now - last >= self.interval

    def remaining(self, now: Optional[datetime] = None) -> timedelta:
        last = self.last_run()
        if last is None:
            return timedelta(0)
        now = _aware(now)
        return max(timedelta(0), self.interval - (now - last))

    def mark(self, now: Optional[datetime] = None) -> None:
        now = _aware(now)
        self.stamp_path.parent.mkdir(parents=True, exist_ok=True)
        self.stamp_path.write_text(now.isoformat(timespec="seconds") + "\n", encoding="utf-8")
