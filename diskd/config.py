"""Daemon configuration and constants.

Defaults live here as module constants. A YAML file (``DISKD_CONFIG``, default
``<PROJECT_ROOT>/diskd.yaml``) may override the job settings, and a couple of
environment variables override the file.
"""

from __future__ import annotations

import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "diskd.yaml"

# Spawned jobs
READ_CHUNK_SIZE = 1024
# Final read-to-end after the child exited.
DRAIN_CHUNK_SIZE = 65536
TERMINATE_SIGNAL = signal.SIGTERM
# Polling fallback when no pidfd is available to watch a terminated child.
REAP_POLL_INTERVAL_S = 0.1
REAP_POLL_MAX_INTERVAL_S = 2.0


@dataclass(frozen=True, slots=True)
class JobSettings:
    read_chunk_size: int = READ_CHUNK_SIZE
    terminate_signal: signal.Signals = TERMINATE_SIGNAL


def _load_yaml(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return data if isinstance(data, dict) else {}


def _parse_signal(value: Any) -> signal.Signals:
    if isinstance(value, int):
        return signal.Signals(value)
    name = str(value).strip().upper()
    if name.isdigit():
        return signal.Signals(int(name))
    if not name.startswith("SIG"):
        name = f"SIG{name}"
    return signal.Signals[name]


def _parse_chunk_size(value: Any) -> int:
    size = int(value)
    if size <= 0:
        raise ValueError(f"read_chunk_size must be positive, got {size}")
    return size


def load_job_settings(path: Path | None = None) -> JobSettings:
    """Load :class:`JobSettings` from YAML (``jobs:`` section) and the environment.

    A missing file means defaults. Invalid values raise ``ValueError``/``KeyError``.
    """
    if path is None:
        path = Path(os.environ.get("DISKD_CONFIG", DEFAULT_CONFIG_PATH))

    data: dict[str, Any] = {}
    if path.exists():
        data = _load_yaml(path)
        logger.debug("Loaded config", extra={"path": str(path)})
    jobs = data.get("jobs") or {}
    if not isinstance(jobs, dict):
        jobs = {}

    chunk = jobs.get("read_chunk_size", READ_CHUNK_SIZE)
    sig: Any = jobs.get("terminate_signal", TERMINATE_SIGNAL)

    env_chunk = os.getenv("DISKD_READ_CHUNK_SIZE")
    if env_chunk:
        chunk = env_chunk
    env_sig = os.getenv("DISKD_TERMINATE_SIGNAL")
    if env_sig:
        sig = env_sig

    return JobSettings(
        read_chunk_size=_parse_chunk_size(chunk),
        terminate_signal=_parse_signal(sig),
    )
