from __future__ import annotations

import pytest

from diskd.config import JobSettings
from diskd.core.errors import AlreadyCancelledError, CancelledError, LaunchError
from diskd.core.events import EventBus, JobCompleted, JobOutput, SpawnedJobCompleted
from diskd.core.jobs import CancelToken, JobState, SpawnedJobRunner

from conftest import spin, wait_until_reaped


def test_runner_launches_and_forgets_finished_jobs(loop) -> None:
    bus = EventBus()
    runner = SpawnedJobRunner(loop, bus)
    completed: list[JobCompleted] = []
    bus.subscribe(JobCompleted, completed.append)

    handle = runner.launch("sh -c 'echo hi'")
    assert runner.get(handle.job_id) is handle.job
    assert runner.live_jobs() == [handle.job]

    result = loop.run_until_complete(handle.wait())

    assert result.stdout == b"hi\n"
    assert runner.get(handle.job_id) is None
    assert runner.live_jobs() == []
    assert [e.job_id for e in completed] == [handle.job_id]


def test_runner_streams_output_events(loop) -> None:
    bus = EventBus()
    runner = SpawnedJobRunner(loop, bus, settings=JobSettings(read_chunk_size=4))
    chunks: list[JobOutput] = []
    bus.subscribe(JobOutput, chunks.append)

    handle = runner.launch("sh -c 'printf 0123456789; printf err >&2'")
    loop.run_until_complete(handle.wait())

    out = b"".join(c.data for c in chunks if c.stream == "stdout")
    err = b"".join(c.data for c in chunks if c.stream == "stderr")
    assert out == b"0123456789"
    assert err == b"err"
    assert {c.job_id for c in chunks} == {handle.job_id}


def test_runner_cancel_by_id(loop) -> None:
    runner = SpawnedJobRunner(loop, EventBus())
    handle = runner.launch("sleep 30")
    pid = handle.job.pid
    assert pid is not None

    runner.cancel(handle.job_id)
    with pytest.raises(AlreadyCancelledError):
        runner.cancel(handle.job_id)

    result = loop.run_until_complete(handle.wait())
    assert isinstance(result.error, CancelledError)
    assert handle.job.state is JobState.CANCELLED
    wait_until_reaped(loop, pid)


def test_runner_cancel_unknown_job_raises_key_error(loop) -> None:
    runner = SpawnedJobRunner(loop, EventBus())
    with pytest.raises(KeyError):
        runner.cancel("missing")


def test_handle_cancel_uses_callers_token(loop) -> None:
    runner = SpawnedJobRunner(loop, EventBus())
    token = CancelToken()
    handle = runner.launch("sleep 30", cancel_token=token)
    assert handle.cancel_token is token

    handle.cancel()
    result = loop.run_until_complete(handle.wait())
    assert isinstance(result.error, CancelledError)
    assert handle.job.pid is not None
    wait_until_reaped(loop, handle.job.pid)


def test_runner_passes_input_and_handler_through(loop) -> None:
    runner = SpawnedJobRunner(loop, EventBus())
    seen = []
    handle = runner.launch(
        "cat", input_data=b"payload", completed_handler=lambda j, r: seen.append(r.stdout) or True
    )
    loop.run_until_complete(handle.wait())

    assert seen == [b"payload"]
    assert handle.job.outcome is None


def test_shutdown_tears_down_running_jobs(loop) -> None:
    bus = EventBus()
    runner = SpawnedJobRunner(loop, bus)
    completed: list[JobCompleted] = []
    bus.subscribe(JobCompleted, completed.append)

    handles = [runner.launch("sleep 30") for _ in range(3)]
    spin(loop)
    runner.shutdown()

    assert runner.live_jobs() == []
    for handle in handles:
        assert handle.job.state is JobState.CANCELLED
        assert handle.job.pid is not None
        wait_until_reaped(loop, handle.job.pid)
    assert completed == []


def test_shutdown_does_not_swallow_a_pending_launch_error(loop) -> None:
    bus = EventBus()
    runner = SpawnedJobRunner(loop, bus)
    raw: list[SpawnedJobCompleted] = []
    bus.subscribe(SpawnedJobCompleted, raw.append)

    handle = runner.launch("'unmatched")
    runner.shutdown()
    spin(loop)

    assert len(raw) == 1
    assert isinstance(raw[0].result.error, LaunchError)
    assert isinstance(loop.run_until_complete(handle.wait()).error, LaunchError)
    assert runner.live_jobs() == []
