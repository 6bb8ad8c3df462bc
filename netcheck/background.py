"""Run a blocking tool call on a worker thread while the caller animates a spinner."""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Optional, TypeVar

from rich.console import Console
from rich.live import Live
from rich.spinner import Spinner

T = TypeVar("T")


def _start_worker(func: Callable[..., T], args: tuple, kwargs: dict, name: str) -> Future:
    future: Future = Future()

    def _work() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(func(*args, **kwargs))
        except BaseException as exc:  # pylint: disable=broad-except
            future.set_exception(exc)

    # Daemon thread: an interrupted run must not wait for the external tool to exit.
    threading.Thread(target=_work, name=name, daemon=True).start()
    return future


def run_in_background(
    func: Callable[..., T],
    *args: Any,
    label: str = "Working",
    console: Optional[Console] = None,
    poll_interval: float = 0.1,
    **kwargs: Any,
) -> T:
    """Call ``func`` on a worker thread and poll for completion.

    One spinner frame is rendered per poll. Exceptions raised by ``func`` are
    re-raised here; an interrupt during polling propagates immediately.
    """
    future = _start_worker(func, args, kwargs, name=f"netcheck-{getattr(func, '__name__', 'task')}")
    console = console or Console(stderr=True)
    spinner = Spinner("dots", text=label)
    started = time.monotonic()

    with Live(spinner, console=console, transient=True, auto_refresh=False) as live:
        while not future.done():
            spinner.update(text=f"{label} ({time.monotonic() - started:.0f}s)")
            live.refresh()
            time.sleep(poll_interval)

    return future.result()
