from __future__ import annotations

import os
import subprocess
from datetime import datetime, timezone
from functools import lru_cache

APP_NAME = "condoportal"
APP_VERSION = "1.0.0"


def _resolve_git_sha() -> str:
    sha = os.getenv("GIT_SHA")
    if sha:
        return sha
    try:
        return (
            subprocess.check_output(["git", "rev-parse", "--short", "HEAD"], stderr=subprocess.DEVNULL)
            .decode("utf-8")
            .strip()
        )
    except (OSError, subprocess.CalledProcessError):
        return "unknown"


@lru_cache
def get_version_info() -> dict[str, str]:
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "gitSha": _resolve_git_sha(),
        "buildTime": os.getenv("BUILD_TIME", datetime.now(timezone.utc).isoformat()),
        "env": os.getenv("APP_ENV", "development"),
    }
