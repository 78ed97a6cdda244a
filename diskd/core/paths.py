from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

SYSTEM_STATE_DIR = Path("/var/lib/diskd")


def get_state_dir() -> Path:
    """Return a writable directory for daemon state (logs, etc).

    Preference order:
    1) $DISKD_STATE_DIR
    2) /var/lib/diskd if writable (system daemon)
    3) $XDG_STATE_HOME/diskd or ~/.local/state/diskd
    """
    env_dir = os.environ.get("DISKD_STATE_DIR")
    if env_dir:
        return Path(env_dir).resolve()

    try:
        SYSTEM_STATE_DIR.mkdir(parents=True, exist_ok=True)
        if os.access(SYSTEM_STATE_DIR, os.W_OK):
            return SYSTEM_STATE_DIR
    except OSError:
        logger.debug("System state dir unavailable; using user state dir", exc_info=True)

    xdg = os.environ.get("XDG_STATE_HOME")
    base = Path(xdg) if xdg else (Path.home() / ".local" / "state")
    return (base / "diskd").resolve()
