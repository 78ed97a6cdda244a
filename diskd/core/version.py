"""Build/version metadata.

Packaged builds have no git metadata, so CI injects it through the
environment: DISKD_VERSION, DISKD_GIT_SHA and DISKD_BUILD_DATE.
"""

from __future__ import annotations

import os


def get_build_info() -> dict[str, str]:
    return {
        "version": os.getenv("DISKD_VERSION", "0.1.0"),
        "git_sha": os.getenv("DISKD_GIT_SHA", "dev"),
        "build_date": os.getenv("DISKD_BUILD_DATE", ""),
    }


def get_version_string() -> str:
    info = get_build_info()
    ver = info["version"].strip() or "0.1.0"
    sha = info["git_sha"].strip() or "dev"
    date = info["build_date"].strip()
    if date:
        return f"diskd {ver} ({sha}, {date})"
    return f"diskd {ver} ({sha})"
