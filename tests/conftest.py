from __future__ import annotations

import asyncio
import os
import time

import pytest

from diskd.core.jobs import SpawnedJob, SpawnedJobResult


@pytest.fixture
def loop():
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


def wait_for_job(
    loop: asyncio.AbstractEventLoop, job: SpawnedJob, timeout: float = 10.0
) -> SpawnedJobResult:
    return loop.run_until_complete(asyncio.wait_for(job.wait(), timeout))


def spin(loop: asyncio.AbstractEventLoop, seconds: float = 0.05) -> None:
    loop.run_until_complete(asyncio.sleep(seconds))


def wait_until_reaped(loop: asyncio.AbstractEventLoop, pid: int, timeout: float = 5.0) -> None:
    """Run the loop until ``pid`` has been reaped.

    Only looks at /proc so it never steals the reap from the job under test.
    """
    deadline = time.monotonic() + timeout
    state = "?"
    while time.monotonic() < deadline:
        spin(loop)
        try:
            with open(f"/proc/{pid}/stat", encoding="utf-8") as f:
                stat = f.read()
        except (FileNotFoundError, ProcessLookupError):
            return
        state = stat.rsplit(")", 1)[1].split()[0]
    if state == "Z":
        pytest.fail(f"child {pid} was left as a zombie")
    pytest.fail(f"child {pid} is still running (state {state})")


def open_fd_count() -> int:
    return len(os.listdir("/proc/self/fd"))
