"""Traceroute probe built on the platform tracert/traceroute tools."""

from __future__ import annotations

import logging
import platform
import subprocess
from datetime import datetime
from typing import List

from .models import TraceResult
from .parsers import parse_traceroute_output

LOGGER = logging.getLogger(__name__)


def traceroute_command(target: str, max_hops: int) -> List[str]:
    if platform.system() == "Windows":
        return ["tracert", "-d", "-h", str(max_hops), target]
    return ["traceroute", "-n", "-q", "3", "-m", str(max_hops), target]


def run_traceroute_raw(target: str, max_hops: int = 30, timeout: int = 120) -> str:
    """Run the platform traceroute numerically and return its text output."""
    command = traceroute_command(target, max_hops)
    LOGGER.debug("Running traceroute command: %s", " ".join(command))
    completed = subprocess.run(command, capture_output=True, text=True, timeout=timeout, check=False)
    if completed.returncode != 0 and not completed.stdout:
        raise RuntimeError(f"traceroute to {target} failed: {completed.stderr.strip()}")
    return completed.stdout


def run_traceroute(target: str, max_hops: int = 30, timeout: int = 120) -> TraceResult:
    output = run_traceroute_raw(target, max_hops, timeout)
    hops = parse_traceroute_output(output)
    return TraceResult(timestamp=datetime.now().astimezone(), target=target, hops=tuple(hops))
