"""Child process launcher.

Parses a shell-style command line, spawns the child with redirected pipes and
provides the pidfd based exit watch used to observe (and reap) it without ever
blocking the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from typing import IO, Any

from diskd.core.errors import LaunchError

logger = logging.getLogger(__name__)

PopenFn = Callable[..., "subprocess.Popen[bytes]"]


def parse_command_line(command_line: str) -> list[str]:
    try:
        argv = shlex.split(command_line)
    except ValueError as e:
        raise LaunchError(f"Error parsing command-line `{command_line}': {e}", cause=e) from e
    if not argv:
        raise LaunchError(
            f"Error parsing command-line `{command_line}': "
            "Text was empty (or contained only whitespace)"
        )
    return argv


@dataclass(slots=True)
class SpawnedChild:
    """A freshly spawned child and its pipe ends (parent side)."""

    pid: int
    process: subprocess.Popen[bytes]
    stdin: IO[bytes] | None
    stdout: IO[bytes]
    stderr: IO[bytes]

    def mark_reaped(self, status: int) -> None:
        # Keeps Popen from polling (and reaping) a pid we already consumed.
        self.process.returncode = os.waitstatus_to_exitcode(status)


class ChildLauncher:
    """Spawns helper commands. ``popen`` is injectable for tests."""

    def __init__(self, popen: PopenFn | None = None) -> None:
        self._popen: PopenFn = popen or subprocess.Popen

    def spawn(self, command_line: str, *, connect_stdin: bool) -> SpawnedChild:
        argv = parse_command_line(command_line)
        try:
            proc = self._popen(
                argv,
                stdin=subprocess.PIPE if connect_stdin else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
                close_fds=True,
                start_new_session=True,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise LaunchError(f"Error spawning command-line `{command_line}': {e}", cause=e) from e

        logger.debug("Spawned child", extra={"pid": proc.pid, "command_line": command_line})
        return SpawnedChild(
            pid=proc.pid,
            process=proc,
            stdin=proc.stdin if connect_stdin else None,
            stdout=proc.stdout,
            stderr=proc.stderr,
        )


class ChildWatch:
    """One-shot exit watch for ``pid`` driven by pidfd readiness.

    When the child terminates the watch reaps it with a non-blocking
    ``waitpid``, withdraws itself from the loop, closes the pidfd and passes
    the raw wait status to ``callback``. ``None`` is passed if the pid had
    already been reaped by someone else.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        pid: int,
        callback: Callable[[int | None], Any],
    ) -> None:
        self._loop = loop
        self.pid = pid
        self._callback = callback
        self._fd: int | None = os.pidfd_open(pid)
        loop.add_reader(self._fd, self._on_ready)

    @property
    def active(self) -> bool:
        return self._fd is not None

    def _on_ready(self) -> None:
        status: int | None
        try:
            wpid, status = os.waitpid(self.pid, os.WNOHANG)
        except ChildProcessError:
            logger.warning("Child was reaped elsewhere", extra={"pid": self.pid})
            status = None
        else:
            if wpid == 0:
                return
        self.cancel()
        self._callback(status)

    def cancel(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        self._loop.remove_reader(fd)
        try:
            os.close(fd)
        except OSError:
            logger.warning("Failed to close pidfd", exc_info=True, extra={"pid": self.pid})
