from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from diskd.core.jobs.evaluator import SpawnedJobResult


@dataclass(frozen=True, slots=True)
class JobStarted:
    """The child process was spawned and its pipes are being serviced."""

    job_id: str
    command_line: str
    pid: int


@dataclass(frozen=True, slots=True)
class JobOutput:
    """A chunk read from the child's stdout or stderr."""

    job_id: str
    stream: str  # "stdout" | "stderr"
    data: bytes


@dataclass(frozen=True, slots=True)
class SpawnedJobCompleted:
    """Raw completion: either an error or an exit status plus captured output."""

    job_id: str
    command_line: str
    result: SpawnedJobResult


@dataclass(frozen=True, slots=True)
class JobCompleted:
    """Outcome of the default completion policy."""

    job_id: str
    command_line: str
    success: bool
    message: str


@dataclass(frozen=True, slots=True)
class JobCancelled:
    job_id: str
    command_line: str
