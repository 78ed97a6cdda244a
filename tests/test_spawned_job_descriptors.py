from __future__ import annotations

import asyncio
import errno
import os
import subprocess

import pytest

from diskd.core.errors import LaunchError
from diskd.core.jobs import CancelToken, ChildLauncher, JobState, SpawnedJob

from conftest import open_fd_count, spin, wait_for_job, wait_until_reaped


def test_normal_completion_releases_every_descriptor(loop) -> None:
    before = open_fd_count()
    job = SpawnedJob.create("sh -c 'echo out; echo err >&2'", loop=loop, input_data=b"in")
    wait_for_job(loop, job)
    spin(loop)

    assert open_fd_count() == before


def test_launch_failure_releases_every_descriptor(loop) -> None:
    before = open_fd_count()
    job = SpawnedJob.create("/nonexistent/diskd-helper", loop=loop, input_data=b"in")
    wait_for_job(loop, job)

    assert open_fd_count() == before


def test_cancellation_releases_descriptors_and_reaps(loop) -> None:
    before = open_fd_count()
    token = CancelToken()
    job = SpawnedJob.create("sleep 30", loop=loop, cancel_token=token, input_data=b"in")
    pid = job.pid
    assert pid is not None

    loop.call_later(0.05, token.cancel)
    wait_for_job(loop, job)
    wait_until_reaped(loop, pid)
    spin(loop)

    assert open_fd_count() == before


def test_close_before_completion_tears_down_without_delivering(loop) -> None:
    before = open_fd_count()
    delivered = []
    job = SpawnedJob.create(
        "sleep 30", loop=loop, completed_handler=lambda j, r: delivered.append(r) or True
    )
    pid = job.pid
    assert pid is not None
    spin(loop)

    job.close()
    job.close()

    assert job.state is JobState.CANCELLED
    with pytest.raises(asyncio.CancelledError):
        loop.run_until_complete(job.wait())
    wait_until_reaped(loop, pid)
    spin(loop)

    assert delivered == []
    assert open_fd_count() == before


def test_close_after_completion_is_a_no_op(loop) -> None:
    job = SpawnedJob.create("true", loop=loop)
    result = wait_for_job(loop, job)
    job.close()

    assert job.state is JobState.COMPLETED
    assert loop.run_until_complete(job.wait()) is result


def test_exit_watch_failure_reports_launch_error_and_still_reaps(loop, monkeypatch) -> None:
    spawned: list[int] = []

    def record_popen(*args, **kwargs):
        proc = subprocess.Popen(*args, **kwargs)
        spawned.append(proc.pid)
        return proc

    def no_descriptors(_pid: int, *_args) -> int:
        raise OSError(errno.EMFILE, os.strerror(errno.EMFILE))

    before = open_fd_count()
    monkeypatch.setattr(os, "pidfd_open", no_descriptors)
    job = SpawnedJob.create("true", loop=loop, launcher=ChildLauncher(record_popen))
    result = wait_for_job(loop, job)

    assert isinstance(result.error, LaunchError)
    assert result.error.message.startswith("Error spawning command-line `true': ")
    assert len(spawned) == 1
    wait_until_reaped(loop, spawned[0])
    assert open_fd_count() == before
