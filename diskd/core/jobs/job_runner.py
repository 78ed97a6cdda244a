from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from diskd.config import JobSettings
from diskd.core.errors import AlreadyCancelledError
from diskd.core.events import EventBus
from diskd.core.events.job_events import SpawnedJobCompleted

from .cancellation import CancelToken
from .evaluator import CompletedHandler, SpawnedJobResult
from .launcher import ChildLauncher
from .spawned_job import SpawnedJob

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SpawnedJobHandle:
    job_id: str
    command_line: str
    job: SpawnedJob
    cancel_token: CancelToken

    def cancel(self) -> None:
        self.cancel_token.cancel()

    async def wait(self) -> SpawnedJobResult:
        return await self.job.wait()


class SpawnedJobRunner:
    """Launches spawned jobs on one event loop and owns them until they complete.

    Jobs are dropped as soon as their completion has been delivered;
    :meth:`shutdown` tears down whatever is still running.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        event_bus: EventBus,
        *,
        settings: JobSettings | None = None,
        launcher: ChildLauncher | None = None,
    ) -> None:
        self._loop = loop
        self._bus = event_bus
        self._settings = settings or JobSettings()
        self._launcher = launcher or ChildLauncher()
        self._jobs: dict[str, SpawnedJob] = {}
        self._subscription = event_bus.subscribe(SpawnedJobCompleted, self._on_completed)

    def launch(
        self,
        command_line: str,
        *,
        input_data: bytes | str | None = None,
        cancel_token: CancelToken | None = None,
        completed_handler: CompletedHandler | None = None,
    ) -> SpawnedJobHandle:
        token = cancel_token or CancelToken()
        job = SpawnedJob(
            command_line,
            loop=self._loop,
            input_data=input_data,
            cancel_token=token,
            event_bus=self._bus,
            completed_handler=completed_handler,
            launcher=self._launcher,
            settings=self._settings,
        )
        self._jobs[job.job_id] = job
        job.start()
        return SpawnedJobHandle(
            job_id=job.job_id, command_line=command_line, job=job, cancel_token=token
        )

    def get(self, job_id: str) -> SpawnedJob | None:
        return self._jobs.get(job_id)

    def live_jobs(self) -> list[SpawnedJob]:
        return list(self._jobs.values())

    def cancel(self, job_id: str) -> None:
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(job_id)
        if job.cancel_token.is_cancelled():
            raise AlreadyCancelledError(f"Job {job_id} was already cancelled")
        job.cancel()

    def _on_completed(self, event: SpawnedJobCompleted) -> None:
        self._jobs.pop(event.job_id, None)

    def shutdown(self) -> None:
        jobs, self._jobs = list(self._jobs.values()), {}
        for job in jobs:
            logger.info("Tearing down unfinished job", extra={"job_id": job.job_id})
            job.close()
        self._bus.unsubscribe(self._subscription)
