"""Repair archive layouts so the launchable file sits at the install root.

Many projects wrap their build in a project-named folder.  Lifting that
folder's contents is a cosmetic repair: failures to delete the leftover
directory are logged and ignored.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Tuple

from services.releases import constants
from services.releases.markers import remove_path_with_retry
from services.releases.models import HostOS, PlatformDescriptor


_LOGGER = logging.getLogger(__name__)

_MAX_PASSES = 8


@dataclass(frozen=True)
class FlattenResult:
    """What a flattening pass changed below the install root."""

    changed: bool
    source: Path | None = None
    moved: Tuple[str, ...] = ()


def _has_suffix(path: Path, suffixes: Iterable[str]) -> bool:
    name = path.name.lower()
    return any(name.endswith(suffix) for suffix in suffixes)


def _is_large_extensionless(path: Path) -> bool:
    if path.suffix or not path.is_file():
        return False
    try:
        return path.stat().st_size >= constants.MIN_EXECUTABLE_BYTES
    except OSError:
        return False


def _is_app_bundle(path: Path) -> bool:
    return path.is_dir() and path.name.lower().endswith(".app")


def is_root_executable(path: Path, platform: PlatformDescriptor) -> bool:
    """Return ``True`` when ``path`` is a launchable entry for ``platform``."""

    if _has_suffix(path, constants.NON_EXECUTABLE_SUFFIXES):
        return False
    host = platform.os
    if host is HostOS.WINDOWS:
        return path.is_file() and _has_suffix(path, (".exe",))
    if host is HostOS.MACOS:
        return _is_app_bundle(path) or _is_large_extensionless(path)
    if host.is_linux:
        if not path.is_file():
            return False
        # A Windows build run through a compatibility layer is also launchable.
        return (
            _has_suffix(path, constants.LINUX_RUNTIME_SUFFIXES + (".exe",))
            or _is_large_extensionless(path)
        )
    return path.is_file() and (
        _has_suffix(path, constants.BARE_EXECUTABLE_SUFFIXES) or _is_large_extensionless(path)
    )


def has_root_executable(root: Path, platform: PlatformDescriptor) -> bool:
    try:
        entries = list(root.iterdir())
    except OSError:
        return False
    return any(is_root_executable(entry, platform) for entry in entries)


def _find_app_bundle(root: Path) -> Path | None:
    bundles: list[Path] = []
    for candidate in root.rglob("*"):
        if not _is_app_bundle(candidate):
            continue
        if any(_is_app_bundle(parent) for parent in candidate.parents if parent != root):
            continue
        bundles.append(candidate)
    if not bundles:
        return None
    bundles.sort(key=lambda path: (len(path.relative_to(root).parts), path.name.lower()))
    return bundles[0]


def _best_executable(
    root: Path, platform: PlatformDescriptor, project_hint: str | None
) -> Path | None:
    files = [path for path in root.rglob("*") if path.is_file()]
    host = platform.os

    if host is HostOS.WINDOWS:
        exes = [path for path in files if _has_suffix(path, (".exe",))]
        exes.sort(key=lambda path: (len(path.relative_to(root).parts), path.name.lower()))
        return exes[0] if exes else None

    hint = (project_hint or "").strip().lower()
    candidates: list[tuple[int, int, Path]] = []
    for path in files:
        if _has_suffix(path, constants.NON_EXECUTABLE_SUFFIXES):
            continue
        named = bool(hint) and hint in path.name.lower()
        runtime = _has_suffix(path, constants.LINUX_RUNTIME_SUFFIXES)
        large = _is_large_extensionless(path)
        if not (named or runtime or large):
            continue
        try:
            size = path.stat().st_size
        except OSError:
            continue
        candidates.append((0 if named else 1, -size, path))

    if not candidates and host.is_linux:
        exes = [path for path in files if _has_suffix(path, (".exe",))]
        candidates = [(1, -path.stat().st_size, path) for path in exes]
    if not candidates:
        return None
    candidates.sort(key=lambda item: (item[0], item[1], str(item[2])))
    return candidates[0][2]


def _top_level_files(root: Path) -> list[Path]:
    return [entry for entry in root.iterdir() if not entry.is_dir()]


def _move_aside(source: Path) -> Path:
    """Rename ``source`` so a child sharing its name can take its place."""

    counter = 0
    while True:
        candidate = source.with_name(f".{source.name}.flatten-{counter}")
        if not candidate.exists():
            break
        counter += 1
    source.rename(candidate)
    _LOGGER.debug("Renamed %s to %s before lifting its contents", source.name, candidate.name)
    return candidate


def _lift_directory(root: Path, source: Path) -> tuple[Path, list[str]]:
    if source.parent == root and (source / source.name).exists():
        source = _move_aside(source)
    moved: list[str] = []
    for child in sorted(source.iterdir()):
        destination = root / child.name
        if destination.exists():
            _LOGGER.debug("Skipping %s; %s already exists at the root", child, destination.name)
            continue
        shutil.move(str(child), str(destination))
        moved.append(child.name)
    return source, moved


def _prune_empty_parents(root: Path, start: Path) -> None:
    current = start
    while current != root and root in current.parents:
        try:
            if any(current.iterdir()):
                return
            current.rmdir()
        except OSError as exc:
            _LOGGER.debug("Stopped pruning at %s: %s", current, exc)
            return
        current = current.parent


def _flatten_once(
    root: Path, platform: PlatformDescriptor, project_hint: str | None
) -> tuple[Path, list[str]] | None:
    if platform.os is HostOS.MACOS:
        bundle = _find_app_bundle(root)
        if bundle is not None and bundle.parent != root:
            destination = root / bundle.name
            if destination.exists():
                _LOGGER.debug("Bundle %s already present at root", bundle.name)
                return None
            parent = bundle.parent
            shutil.move(str(bundle), str(destination))
            _LOGGER.info("Moved application bundle %s to %s", bundle.name, root)
            _prune_empty_parents(root, parent)
            return parent, [bundle.name]

    subdirectories = [entry for entry in root.iterdir() if entry.is_dir()]
    source: Path | None = None
    if len(subdirectories) == 1 and not _top_level_files(root):
        source = subdirectories[0]
    else:
        executable = _best_executable(root, platform, project_hint)
        if executable is not None and executable.parent != root:
            source = executable.parent
    if source is None:
        return None

    leftover, moved = _lift_directory(root, source)
    _LOGGER.info("Lifted %s entries from %s to %s", len(moved), source, root)
    if leftover.exists():
        # The leftover directory only holds collisions now.
        remove_path_with_retry(leftover)
    _prune_empty_parents(root, source.parent)
    return source, moved


def ensure_executable_at_root(
    root: Path, platform: PlatformDescriptor, project_hint: str | None = None
) -> FlattenResult:
    """Lift nested contents until a launchable file is directly under ``root``.

    Running the pass on an already flat tree changes nothing.
    """

    root = Path(root)
    first_source: Path | None = None
    moved: list[str] = []
    for _ in range(_MAX_PASSES):
        if has_root_executable(root, platform):
            break
        outcome = _flatten_once(root, platform, project_hint)
        if outcome is None:
            _LOGGER.warning("No launchable file could be lifted into %s", root)
            break
        source, lifted = outcome
        first_source = first_source or source
        moved.extend(lifted)
        if not lifted:
            break
    return FlattenResult(changed=bool(moved), source=first_source, moved=tuple(moved))


__all__ = [
    "FlattenResult",
    "ensure_executable_at_root",
    "has_root_executable",
    "is_root_executable",
]
