"""
Entry point for running a helper command line through the diskd job machinery.

Run: python main.py run "mkfs.ext4 -F /dev/loop0" [--input TEXT] [--timeout SEC]
Requires: pip install -e .

Prints the job's outcome message and exits 0 on success, 1 on failure.
"""
from __future__ import annotations

import argparse
import asyncio
import sys

from diskd.config import load_job_settings
from diskd.core.events import EventBus, JobCompleted
from diskd.core.jobs import CancelToken, SpawnedJobRunner
from diskd.core.observability.logging_config import setup_logging
from diskd.core.version import get_version_string


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="diskd")
    parser.add_argument("--version", action="version", version=get_version_string())
    sub = parser.add_subparsers(dest="command", required=True)
    run = sub.add_parser("run", help="run a command line as a spawned job")
    run.add_argument("command_line")
    run.add_argument("--input", default=None, help="text written to the command's stdin")
    run.add_argument("--timeout", type=float, default=None, help="cancel after SEC seconds")
    return parser


async def _run(command_line: str, input_data: str | None, timeout: float | None) -> JobCompleted:
    loop = asyncio.get_running_loop()
    bus = EventBus()
    runner = SpawnedJobRunner(loop, bus, settings=load_job_settings())
    outcomes: list[JobCompleted] = []
    bus.subscribe(JobCompleted, outcomes.append)

    token = CancelToken()
    if timeout is not None:
        # No built-in timeout; cancel the token after the deadline instead.
        loop.call_later(timeout, token.cancel)
    handle = runner.launch(command_line, input_data=input_data, cancel_token=token)
    try:
        await handle.wait()
    finally:
        runner.shutdown()
    return outcomes[0]


def main(argv: list[str] | None = None) -> int:
    setup_logging()
    args = _build_parser().parse_args(argv)
    outcome = asyncio.run(_run(args.command_line, args.input, args.timeout))
    if outcome.message:
        print(outcome.message, file=sys.stdout if outcome.success else sys.stderr)
    return 0 if outcome.success else 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)
