"""Spawned-command jobs.

Runs helper command lines as child processes on an asyncio event loop, pumps
their pipes without blocking and reports exactly one completion per job.
"""

from .cancellation import CancelToken
from .evaluator import (
    CompletedHandler,
    JobOutcome,
    SpawnedJobResult,
    evaluate_completion,
    signal_name,
)
from .job_runner import SpawnedJobHandle, SpawnedJobRunner
from .launcher import ChildLauncher, ChildWatch, parse_command_line
from .spawned_job import JobState, SpawnedJob

__all__ = [
    "CancelToken",
    "ChildLauncher",
    "ChildWatch",
    "CompletedHandler",
    "JobOutcome",
    "JobState",
    "SpawnedJob",
    "SpawnedJobHandle",
    "SpawnedJobResult",
    "SpawnedJobRunner",
    "evaluate_completion",
    "parse_command_line",
    "signal_name",
]
