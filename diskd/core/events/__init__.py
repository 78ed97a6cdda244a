"""In-process event bus and the events published by spawned jobs."""

from .event_bus import EventBus, Subscription
from .job_events import (
    JobCancelled,
    JobCompleted,
    JobOutput,
    JobStarted,
    SpawnedJobCompleted,
)

__all__ = [
    "EventBus",
    "Subscription",
    "JobStarted",
    "JobOutput",
    "SpawnedJobCompleted",
    "JobCompleted",
    "JobCancelled",
]
