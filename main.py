"""Entry point for running broadband diagnostics once or on a schedule."""

from __future__ import annotations

import argparse
import logging
import shlex
import signal
import sys
from typing import List, Optional

from netcheck import bootstrap
from netcheck.measurements.speedtest_runner import download_ookla_binary
from netcheck.runner import RunContext, RunInterrupted
from netcheck.scheduler import RepeatingRunner, load_schedule

LOGGER = logging.getLogger("netcheck.main")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Broadband quality diagnostics")
    parser.add_argument("--config", help="Path to config.yaml", default="config.yaml")
    parser.add_argument("--csv", action="store_true", help="Append results to speed/ping/trace CSV files")
    parser.add_argument("--no-trace", action="store_true", help="Skip the throttled global traceroute batch")
    parser.add_argument("--servers", type=int, default=None, help="Number of nearby servers to test")
    parser.add_argument("--ping-count", type=int, default=None, help="Echo requests per ping target")
    parser.add_argument(
        "--schedule",
        metavar="FILE",
        default=None,
        help="Repeat runs using a RepeatMinutes/DurationHours/Args key=value file",
    )
    parser.add_argument(
        "--update-binary",
        action="store_true",
        help="Download the current Ookla speedtest CLI into bin/ and exit",
    )
    return parser.parse_args(argv)


def _raise_interrupted(signum, frame) -> None:
    raise RunInterrupted(f"received signal {signum}")


def update_binary(args: argparse.Namespace) -> int:
    context = bootstrap(args.config)
    try:
        installed = download_ookla_binary(context.config)
    except Exception as exc:
        LOGGER.critical("Ookla CLI update failed: %s", exc, exc_info=True)
        context.events.fatal("update binary", exc)
        raise
    context.events.info("update binary", installed)
    context.reporter.step(f"Ookla CLI ready at {installed}")
    return 0


def run_once(args: argparse.Namespace) -> RunContext:
    events = None
    try:
        context = bootstrap(args.config)
        events = context.events
        runner = context.create_runner(
            csv_enabled=True if args.csv else None,
            global_trace=not args.no_trace,
            server_count=args.servers,
            ping_count=args.ping_count,
        )
        return runner.run()
    except Exception as exc:
        LOGGER.critical("Diagnostic run failed: %s", exc, exc_info=True)
        if events is not None:
            events.fatal("run", exc)
        raise


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    signal.signal(signal.SIGTERM, _raise_interrupted)

    if args.update_binary:
        return update_binary(args)

    if args.schedule:
        schedule = load_schedule(args.schedule)
        run_args = parse_args(shlex.split(schedule.args))
        try:
            return RepeatingRunner(schedule, lambda: run_once(run_args)).run()
        except (KeyboardInterrupt, RunInterrupted):
            LOGGER.info("Schedule stopped by interrupt")
            return 0

    try:
        run_once(args)
    except (KeyboardInterrupt, RunInterrupted):
        LOGGER.info("Interrupted before the run started")
    return 0


if __name__ == "__main__":
    sys.exit(main())
