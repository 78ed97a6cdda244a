"""Job that runs a helper command line.

Why this exists:
- Disk operations shell out to helpers (mkfs, cryptsetup, ...) and the daemon
  must keep serving requests while they run.
- A job may be cancelled at any point and must never leak descriptors, leave a
  zombie behind or report its result twice.

Everything happens on the event loop passed in at creation: pipe readiness,
the exit watch and cancellation are all serialized there, so the job keeps no
locks. Completion is delivered through a single gate (:meth:`SpawnedJob._complete`);
whichever of exit, launch failure or cancellation reaches it first wins and
everything else becomes a no-op.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from collections.abc import Callable
from enum import Enum

from diskd.config import REAP_POLL_INTERVAL_S, REAP_POLL_MAX_INTERVAL_S, JobSettings
from diskd.core.errors import CancelledError, DaemonError, LaunchError
from diskd.core.events import EventBus
from diskd.core.events.job_events import (
    JobCancelled,
    JobCompleted,
    JobOutput,
    JobStarted,
    SpawnedJobCompleted,
)

from .cancellation import CancelToken
from .evaluator import CompletedHandler, JobOutcome, SpawnedJobResult, evaluate_completion
from .io_pump import IOPump
from .launcher import ChildLauncher, ChildWatch, SpawnedChild

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SpawnedJob:
    """One managed invocation of an external command.

    Use :meth:`create` to build and start a job. Completion always arrives
    asynchronously, as a :class:`SpawnedJobCompleted` event on the bus, via
    ``completed_handler`` and through :meth:`wait`. Unless the handler returns
    ``True`` the default policy (:func:`evaluate_completion`) also runs and
    publishes :class:`JobCompleted`.
    """

    def __init__(
        self,
        command_line: str,
        *,
        loop: asyncio.AbstractEventLoop,
        input_data: bytes | str | None = None,
        cancel_token: CancelToken | None = None,
        event_bus: EventBus | None = None,
        completed_handler: CompletedHandler | None = None,
        launcher: ChildLauncher | None = None,
        settings: JobSettings | None = None,
    ) -> None:
        if not command_line:
            raise ValueError("command_line must be a non-empty string")
        self.job_id = uuid.uuid4().hex
        self.command_line = command_line
        self.pid: int | None = None
        self.outcome: JobOutcome | None = None

        self._loop = loop
        self._bus = event_bus or EventBus()
        self._cancel_token = cancel_token or CancelToken()
        self._completed_handler = completed_handler
        self._launcher = launcher or ChildLauncher()
        self._settings = settings or JobSettings()

        self._input: bytearray | None = None
        if input_data is not None:
            raw = input_data.encode("utf-8") if isinstance(input_data, str) else input_data
            self._input = bytearray(raw)

        self._state = JobState.CREATED
        self._started = False
        self._delivered = False
        self._pending: SpawnedJobResult | None = None
        self._cancel_handler_id = 0
        self._child: SpawnedChild | None = None
        self._exit_watch: ChildWatch | None = None
        self._pump: IOPump | None = None
        self._done: asyncio.Future[SpawnedJobResult] = loop.create_future()

    @classmethod
    def create(cls, command_line: str, **kwargs) -> SpawnedJob:
        job = cls(command_line, **kwargs)
        job.start()
        return job

    def __repr__(self) -> str:
        return f"<SpawnedJob {self.job_id[:8]} {self._state.value} `{self.command_line}'>"

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def cancel_token(self) -> CancelToken:
        return self._cancel_token

    @property
    def delivered(self) -> bool:
        return self._delivered

    def done(self) -> bool:
        return self._done.done()

    async def wait(self) -> SpawnedJobResult:
        return await asyncio.shield(self._done)

    def cancel(self) -> None:
        self._cancel_token.cancel()

    # ------------------------------------------------------------------ start

    def start(self) -> None:
        if self._started:
            raise RuntimeError(f"{self!r} was already started")
        self._started = True

        if self._cancel_token.is_cancelled():
            self._complete_soon(SpawnedJobResult(error=CancelledError("Operation was cancelled")))
            return

        self._cancel_handler_id = self._cancel_token.connect(self._on_cancelled)

        try:
            child = self._launcher.spawn(self.command_line, connect_stdin=self._input is not None)
        except LaunchError as e:
            logger.info("Launching job failed: %s", e.message, extra={"job_id": self.job_id})
            self._complete_soon(SpawnedJobResult(error=e))
            return

        self._child = child
        self.pid = child.pid
        try:
            self._pump = IOPump(
                self._loop,
                stdin=child.stdin,
                stdout=child.stdout,
                stderr=child.stderr,
                input_data=self._input,
                chunk_size=self._settings.read_chunk_size,
                on_output=self._on_output,
            )
            self._exit_watch = ChildWatch(self._loop, child.pid, self._on_child_exit)
            self._pump.start()
        except OSError as e:
            if self._pump is None:
                for pipe in (child.stdin, child.stdout, child.stderr):
                    if pipe is not None:
                        pipe.close()
            error = LaunchError(f"Error spawning command-line `{self.command_line}': {e}", cause=e)
            self._complete_soon(SpawnedJobResult(error=error))
            return

        self._state = JobState.RUNNING
        logger.debug(
            "Job running",
            extra={"job_id": self.job_id, "pid": child.pid, "command_line": self.command_line},
        )
        self._bus.publish(
            JobStarted(job_id=self.job_id, command_line=self.command_line, pid=child.pid)
        )

    # -------------------------------------------------------------- callbacks

    def _on_output(self, stream: str, data: bytes) -> None:
        if self._bus.has_subscribers(JobOutput):
            self._bus.publish(JobOutput(job_id=self.job_id, stream=stream, data=data))

    def _on_cancelled(self) -> None:
        # Runs in whichever thread cancelled the token.
        try:
            self._loop.call_soon_threadsafe(self._cancel_in_loop)
        except RuntimeError:
            logger.warning(
                "Event loop is closed; dropping cancellation", extra={"job_id": self.job_id}
            )

    def _cancel_in_loop(self) -> None:
        if self._delivered:
            return
        self._complete(
            SpawnedJobResult(error=CancelledError("Operation was cancelled")),
            cancelled=self._state is JobState.RUNNING,
        )

    def _on_child_exit(self, status: int | None) -> None:
        # The watch has already reaped the child; nothing is left to kill.
        self._exit_watch = None
        child, self._child = self._child, None
        if child is not None and status is not None:
            child.mark_reaped(status)
        if self._delivered:
            logger.debug(
                "Child exited after completion was delivered", extra={"job_id": self.job_id}
            )
            return

        if status is None:
            error = DaemonError(f"Exit status of command-line `{self.command_line}' was lost")
            self._complete(SpawnedJobResult(error=error))
            return

        stdout = stderr = b""
        if self._pump is not None:
            self._pump.drain()
            stdout, stderr = bytes(self._pump.stdout), bytes(self._pump.stderr)
        self._complete(SpawnedJobResult(exit_status=status, stdout=stdout, stderr=stderr))

    # ------------------------------------------------------------- completion

    def _complete_soon(self, result: SpawnedJobResult) -> None:
        # The scheduled callback keeps the job alive, so the result is
        # delivered even if the owner closes the job right after start().
        self._pending = result
        self._loop.call_soon(self._complete_pending)

    def _complete_pending(self) -> None:
        result, self._pending = self._pending, None
        if result is not None:
            self._complete(result)

    def _complete(self, result: SpawnedJobResult, *, cancelled: bool = False) -> None:
        if self._delivered:
            return
        self._delivered = True
        self._state = JobState.CANCELLED if cancelled else JobState.COMPLETED
        try:
            self._deliver(result)
        finally:
            self._release_resources()

    def _deliver(self, result: SpawnedJobResult) -> None:
        logger.info(
            "Job completed",
            extra={
                "job_id": self.job_id,
                "command_line": self.command_line,
                "status": result.exit_status,
                "error": None if result.error is None else result.error.message,
            },
        )
        self._bus.publish(
            SpawnedJobCompleted(job_id=self.job_id, command_line=self.command_line, result=result)
        )
        if isinstance(result.error, CancelledError):
            self._bus.publish(JobCancelled(job_id=self.job_id, command_line=self.command_line))

        handled = False
        if self._completed_handler is not None:
            try:
                handled = bool(self._completed_handler(self, result))
            except Exception:
                logger.exception("Completion handler failed", extra={"job_id": self.job_id})
        if not handled:
            self.outcome = evaluate_completion(self.command_line, result)
            self._bus.publish(
                JobCompleted(
                    job_id=self.job_id,
                    command_line=self.command_line,
                    success=self.outcome.success,
                    message=self.outcome.message,
                )
            )
        if not self._done.done():
            self._done.set_result(result)

    # --------------------------------------------------------------- teardown

    def close(self) -> None:
        """Destroy the job, tearing it down even if it has not completed yet.

        A running job closed before its child exited never delivers; :meth:`wait`
        raises ``asyncio.CancelledError``. A result that :meth:`start` already
        scheduled (pre-cancelled token, launch failure) is still delivered.
        """
        if not self._delivered and self._pending is None:
            self._delivered = True
            if self._state in (JobState.CREATED, JobState.RUNNING):
                self._state = JobState.CANCELLED
            if not self._done.done() and not self._loop.is_closed():
                self._done.cancel()
        self._release_resources()

    def _release_resources(self) -> None:
        if self._exit_watch is not None:
            self._exit_watch.cancel()
            self._exit_watch = None

        child, self._child = self._child, None
        if child is not None:
            self._terminate(child)

        if self._pump is not None:
            self._pump.close()
            self._pump = None

        if self._input is not None:
            # May hold key material.
            self._input[:] = bytes(len(self._input))
            self._input = None

        if self._cancel_handler_id:
            self._cancel_token.disconnect(self._cancel_handler_id)
            self._cancel_handler_id = 0

    def _terminate(self, child: SpawnedChild) -> None:
        sig = self._settings.terminate_signal
        try:
            os.kill(child.pid, sig)
        except ProcessLookupError:
            pass
        except OSError:
            logger.warning("Failed to signal child", exc_info=True, extra={"pid": child.pid})

        def _reaped(status: int | None) -> None:
            if status is not None:
                child.mark_reaped(status)
            logger.debug("Reaped child after teardown", extra={"pid": child.pid, "status": status})

        # waitpid() would block the loop; a dedicated watch reaps it instead.
        try:
            ChildWatch(self._loop, child.pid, _reaped)
        except OSError:
            # Typically EMFILE: no descriptor left for a pidfd. Poll instead.
            logger.warning(
                "Cannot watch child for reaping; polling", exc_info=True, extra={"pid": child.pid}
            )
            self._poll_reap(child, _reaped, REAP_POLL_INTERVAL_S)
        except RuntimeError:
            logger.warning(
                "Cannot watch child for reaping", exc_info=True, extra={"pid": child.pid}
            )

    def _poll_reap(
        self, child: SpawnedChild, on_reaped: Callable[[int | None], None], delay: float
    ) -> None:
        try:
            wpid, status = os.waitpid(child.pid, os.WNOHANG)
        except ChildProcessError:
            on_reaped(None)
            return
        if wpid != 0:
            on_reaped(status)
            return
        try:
            self._loop.call_later(
                delay,
                self._poll_reap,
                child,
                on_reaped,
                min(delay * 2, REAP_POLL_MAX_INTERVAL_S),
            )
        except RuntimeError:
            logger.warning("Event loop is closed; child left unreaped", extra={"pid": child.pid})
