"""Marker files kept inside an installed title and retrying deletion helpers."""

from __future__ import annotations

import datetime
import logging
import os
import shutil
import stat
import time
from pathlib import Path

from services.releases import constants
from services.releases.models import PermissionDenied


_LOGGER = logging.getLogger(__name__)


def read_installed_version(install_dir: Path) -> str | None:
    """Return the version recorded in ``version.txt`` or ``None`` when absent."""

    path = install_dir / constants.VERSION_MARKER
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as exc:
        _LOGGER.debug("Unable to read version marker %s: %s", path, exc)
        return None
    version = text.strip()
    return version or None


def write_installed_version(install_dir: Path, version: str) -> None:
    (install_dir / constants.VERSION_MARKER).write_text(version, encoding="utf-8")


def ensure_portable_marker(install_dir: Path) -> None:
    """Create ``portable.txt`` unless a portability marker already exists."""

    enabled = install_dir / constants.PORTABLE_MARKER
    disabled = install_dir / constants.PORTABLE_DISABLED_MARKER
    if enabled.exists() or disabled.exists():
        return
    enabled.write_text("", encoding="utf-8")


def apply_portable_preference(install_dir: Path, portable: bool) -> None:
    """Toggle between ``portable.txt`` and ``portable_disabled.txt``."""

    enabled = install_dir / constants.PORTABLE_MARKER
    disabled = install_dir / constants.PORTABLE_DISABLED_MARKER
    if enabled.exists() and not portable:
        os.replace(enabled, disabled)
        _LOGGER.debug("Disabled portable mode in %s", install_dir)
    elif disabled.exists() and portable:
        os.replace(disabled, enabled)
        _LOGGER.debug("Enabled portable mode in %s", install_dir)
    elif portable and not enabled.exists() and not disabled.exists():
        install_dir.mkdir(parents=True, exist_ok=True)
        enabled.write_text("", encoding="utf-8")


def read_selected_executable(install_dir: Path) -> Path | None:
    path = install_dir / constants.SELECTED_EXECUTABLE_MARKER
    try:
        text = path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError):
        return None
    return Path(text) if text else None


def write_selected_executable(install_dir: Path, executable: Path) -> None:
    target = install_dir / constants.SELECTED_EXECUTABLE_MARKER
    target.write_text(str(Path(executable).absolute()), encoding="utf-8")


def write_last_played(install_dir: Path, when: datetime.datetime | None = None) -> None:
    moment = when or datetime.datetime.now()
    path = install_dir / constants.LAST_PLAYED_MARKER
    try:
        path.write_text(moment.strftime(constants.LAST_PLAYED_FORMAT), encoding="utf-8")
    except OSError as exc:
        _LOGGER.warning("Failed to update %s: %s", path, exc)


def read_last_played(install_dir: Path) -> datetime.datetime | None:
    path = install_dir / constants.LAST_PLAYED_MARKER
    try:
        text = path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError):
        return None
    try:
        return datetime.datetime.strptime(text, constants.LAST_PLAYED_FORMAT)
    except ValueError:
        return None


def mark_executable(path: Path) -> None:
    """Add the execute bits to ``path`` on hosts that have them."""

    if os.name == "nt":
        return
    try:
        mode = path.stat().st_mode
        path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    except OSError as exc:
        _LOGGER.warning("Unable to mark %s as executable: %s", path, exc)


def remove_path_with_retry(
    path: Path,
    *,
    attempts: int = constants.DELETE_RETRY_ATTEMPTS,
    initial_delay: float = constants.DELETE_RETRY_INITIAL_DELAY,
    raise_on_failure: bool = False,
) -> bool:
    """Delete a file or directory tree, retrying while it is locked.

    The delay doubles after every failed attempt.  When all attempts fail the
    error is logged and ``False`` returned, unless ``raise_on_failure`` asks
    for :class:`PermissionDenied` (permission problems) or the original
    :class:`OSError`.
    """

    delay = initial_delay
    last_error: OSError | None = None
    for attempt in range(1, max(1, attempts) + 1):
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
            return True
        except FileNotFoundError:
            return True
        except OSError as exc:
            last_error = exc
            if attempt >= attempts:
                break
            _LOGGER.debug(
                "Attempt %s to delete %s failed: %s. Retrying in %.1fs", attempt, path, exc, delay
            )
            time.sleep(delay)
            delay *= 2

    if raise_on_failure and last_error is not None:
        if isinstance(last_error, PermissionError):
            raise PermissionDenied(f"Permission denied while removing {path}") from last_error
        raise last_error
    _LOGGER.warning("Unable to delete %s after %s attempts: %s", path, attempts, last_error)
    return False


__all__ = [
    "apply_portable_preference",
    "ensure_portable_marker",
    "mark_executable",
    "read_installed_version",
    "read_last_played",
    "read_selected_executable",
    "remove_path_with_retry",
    "write_installed_version",
    "write_last_played",
    "write_selected_executable",
]
