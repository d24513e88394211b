"""Version of the release manager itself, reported in the ``User-Agent``."""

from __future__ import annotations

import os
import subprocess
from functools import lru_cache
from importlib import resources
from typing import Callable, Optional

_VERSION_ENV = "RECOMP_APP_VERSION"
_DEV_VERSION = "0.0.0-dev"


def _clean(raw: str | None) -> str | None:
    value = (raw or "").strip()
    if value[:1] in ("v", "V"):
        value = value[1:]
    return value or None


def _from_environment() -> str | None:
    return _clean(os.environ.get(_VERSION_ENV))


def _read_version_file() -> str | None:
    try:
        return _clean(resources.files("app").joinpath("VERSION").read_text(encoding="utf-8"))
    except (ModuleNotFoundError, OSError):
        return None


def _version_from_git() -> str | None:
    try:
        described = subprocess.run(
            ["git", "describe", "--tags", "--dirty"],
            capture_output=True,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError):
        return None
    return _clean(described.stdout)


@lru_cache(maxsize=1)
def get_app_version() -> str:
    """Return the first version found in the environment, the packaged
    ``VERSION`` file or ``git describe``, else a development placeholder.
    """

    sources: tuple[Callable[[], Optional[str]], ...] = (
        _from_environment,
        _read_version_file,
        _version_from_git,
    )
    for source in sources:
        found = source()
        if found:
            return found
    return _DEV_VERSION


def user_agent(product: str) -> str:
    """Return ``product/<version>`` for HTTP requests."""

    return f"{product}/{get_app_version()}"


__all__ = ["get_app_version", "user_agent"]
