"""Default interpretation of a spawned job's completion."""

from __future__ import annotations

import os
import signal
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from diskd.core.errors import DaemonError

if TYPE_CHECKING:
    from .spawned_job import SpawnedJob

UNKNOWN_SIGNAL = "UNKNOWN_SIGNAL"

_SIGNAL_TABLE = (
    "SIGHUP",
    "SIGINT",
    "SIGQUIT",
    "SIGILL",
    "SIGABRT",
    "SIGFPE",
    "SIGKILL",
    "SIGSEGV",
    "SIGPIPE",
    "SIGALRM",
    "SIGTERM",
    "SIGUSR1",
    "SIGUSR2",
    "SIGCHLD",
    "SIGCONT",
    "SIGSTOP",
    "SIGTSTP",
    "SIGTTIN",
    "SIGTTOU",
    "SIGBUS",
    "SIGPOLL",
    "SIGPROF",
    "SIGSYS",
    "SIGTRAP",
    "SIGURG",
    "SIGVTALRM",
    "SIGXCPU",
    "SIGXFSZ",
)

_SIGNAL_NAMES: dict[int, str] = {
    int(getattr(signal, name)): name for name in _SIGNAL_TABLE if hasattr(signal, name)
}


def signal_name(signum: int) -> str:
    return _SIGNAL_NAMES.get(signum, UNKNOWN_SIGNAL)


@dataclass(frozen=True, slots=True)
class SpawnedJobResult:
    """One-shot completion payload.

    Exactly one of ``error`` and ``exit_status`` is set. ``exit_status`` is the
    raw wait status; use ``os.WIFEXITED`` and friends to pick it apart.
    """

    error: DaemonError | None = None
    exit_status: int | None = None
    stdout: bytes = b""
    stderr: bytes = b""


@dataclass(frozen=True, slots=True)
class JobOutcome:
    success: bool
    message: str


# Returning True means "handled" and suppresses the default policy.
CompletedHandler = Callable[["SpawnedJob", SpawnedJobResult], bool]


def _text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def evaluate_completion(command_line: str, result: SpawnedJobResult) -> JobOutcome:
    if result.error is not None:
        err = result.error
        return JobOutcome(
            success=False,
            message=(
                f"Failed to execute command-line `{command_line}': "
                f"{err.message} ({err.domain}, {err.code})"
            ),
        )

    status = result.exit_status
    if status is None:
        return JobOutcome(
            success=False,
            message=f"Command-line `{command_line}' did not report an exit status.",
        )

    if os.WIFEXITED(status) and os.WEXITSTATUS(status) == 0:
        return JobOutcome(success=True, message="")

    lines: list[str] = []
    if os.WIFEXITED(status):
        lines.append(
            f"Command-line `{command_line}' exited with non-zero exit status "
            f"{os.WEXITSTATUS(status)}."
        )
    elif os.WIFSIGNALED(status):
        signum = os.WTERMSIG(status)
        lines.append(
            f"Command-line `{command_line}' was signaled with signal "
            f"{signal_name(signum)} ({signum})."
        )
    lines.append(f"stdout: `{_text(result.stdout)}'")
    lines.append(f"stderr: `{_text(result.stderr)}'")
    return JobOutcome(success=False, message="\n".join(lines))
