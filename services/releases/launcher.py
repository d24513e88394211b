"""Resolve how to start an installed title and start it."""

from __future__ import annotations

import logging
import os
import plistlib
import subprocess
from pathlib import Path
from typing import Any, Callable

from services.releases import constants
from services.releases.compat_layer import compatibility_environment, detect_compatibility_layer
from services.releases.markers import mark_executable, write_last_played
from services.releases.models import (
    CompatibilityLayer,
    CompatibilityLayerUnavailable,
    HostOS,
    LaunchSpec,
    NoExecutableFound,
    PermissionDenied,
    PlatformDescriptor,
    ReleaseManagerError,
    SelectionRequired,
)


_LOGGER = logging.getLogger(__name__)

LayerDetector = Callable[[], "CompatibilityLayer | None"]


def _name_has(path: Path, suffixes: tuple[str, ...]) -> bool:
    return path.name.lower().endswith(suffixes)


def _is_large_extensionless(path: Path) -> bool:
    if path.suffix or not path.is_file() or path.name.startswith("."):
        return False
    try:
        return path.stat().st_size >= constants.MIN_EXECUTABLE_BYTES
    except OSError:
        return False


def bundle_executable(bundle: Path) -> Path | None:
    """Return the binary inside a macOS ``.app`` bundle."""

    macos_dir = bundle / "Contents" / "MacOS"
    info = bundle / "Contents" / "Info.plist"
    try:
        with info.open("rb") as handle:
            name = plistlib.load(handle).get("CFBundleExecutable")
    except (OSError, plistlib.InvalidFileException, ValueError) as exc:
        _LOGGER.debug("Unable to read %s: %s", info, exc)
        name = None
    if isinstance(name, str) and (macos_dir / name).is_file():
        return macos_dir / name
    try:
        binaries = sorted(path for path in macos_dir.iterdir() if path.is_file())
    except OSError:
        return None
    return binaries[0] if binaries else None


def _top_level(install_dir: Path) -> list[Path]:
    try:
        return sorted(install_dir.iterdir(), key=lambda path: path.name.lower())
    except OSError:
        return []


def enumerate_executables(install_dir: Path, platform: PlatformDescriptor) -> tuple[list[Path], bool]:
    """Return launch candidates and whether they need a compatibility layer."""

    entries = _top_level(install_dir)
    files = [
        entry
        for entry in entries
        if entry.is_file() and not _name_has(entry, constants.NON_EXECUTABLE_SUFFIXES)
    ]
    host = platform.os

    if host is HostOS.WINDOWS:
        return [entry for entry in files if _name_has(entry, (".exe",))], False

    if host is HostOS.MACOS:
        candidates = [entry for entry in entries if entry.is_dir() and _name_has(entry, (".app",))]
        candidates.extend(entry for entry in files if _is_large_extensionless(entry))
        return candidates, False

    if host.is_linux:
        candidates: list[Path] = []
        for suffix in constants.LINUX_RUNTIME_SUFFIXES:
            candidates.extend(entry for entry in files if _name_has(entry, (suffix,)))
        candidates.extend(entry for entry in files if _is_large_extensionless(entry))
        if candidates:
            return candidates, False
        return [entry for entry in files if _name_has(entry, (".exe",))], True

    candidates = [entry for entry in files if _name_has(entry, constants.BARE_EXECUTABLE_SUFFIXES)]
    candidates.extend(entry for entry in files if _is_large_extensionless(entry))
    return candidates, False


class LaunchResolver:
    """Turn an install directory into a :class:`LaunchSpec`."""

    def __init__(self, layer_detector: LayerDetector = detect_compatibility_layer) -> None:
        self._layer_detector = layer_detector

    def resolve_launch(
        self,
        install_dir: Path,
        platform: PlatformDescriptor,
        stored_preference: Path | None = None,
    ) -> LaunchSpec:
        install_dir = Path(install_dir)
        candidates, needs_layer = enumerate_executables(install_dir, platform)

        target: Path | None = None
        if stored_preference is not None and Path(stored_preference).exists():
            target = Path(stored_preference)
            if platform.os.is_linux and _name_has(target, (".exe",)):
                needs_layer = True
            _LOGGER.debug("Using stored launch preference %s", target)
        elif not candidates:
            raise NoExecutableFound(f"No launchable file found in {install_dir}")
        elif len(candidates) == 1:
            target = candidates[0]
        else:
            if stored_preference is not None:
                _LOGGER.info("Stored launch preference %s no longer exists", stored_preference)
            raise SelectionRequired(candidates)

        if needs_layer:
            spec = self._compatibility_spec(install_dir, target)
        else:
            spec = self._native_spec(install_dir, target)
        write_last_played(install_dir)
        _LOGGER.info("Resolved launch command %s", spec.argv)
        return spec

    def _native_spec(self, install_dir: Path, target: Path) -> LaunchSpec:
        executable = target
        if target.is_dir() and _name_has(target, (".app",)):
            inner = bundle_executable(target)
            if inner is None:
                raise NoExecutableFound(f"Application bundle {target.name} has no executable")
            executable = inner
        mark_executable(executable)
        return LaunchSpec(
            command=str(executable),
            arguments=(),
            working_directory=install_dir,
            executable=executable,
        )

    def _compatibility_spec(self, install_dir: Path, target: Path) -> LaunchSpec:
        layer = self._layer_detector()
        if layer is None:
            raise CompatibilityLayerUnavailable(
                f"{target.name} is a Windows build and no compatibility layer is installed"
            )
        environment = compatibility_environment(layer, install_dir)
        prefix = environment.get("STEAM_COMPAT_DATA_PATH") or environment.get("WINEPREFIX")
        if prefix:
            Path(prefix).mkdir(parents=True, exist_ok=True)
        return LaunchSpec(
            command=str(layer.executable),
            arguments=tuple(layer.arguments_for(target)),
            working_directory=install_dir,
            executable=target,
            compatibility_layer=layer,
            environment=environment,
        )


def resolve_launch(
    install_dir: Path,
    platform: PlatformDescriptor,
    stored_preference: Path | None = None,
) -> LaunchSpec:
    return LaunchResolver().resolve_launch(install_dir, platform, stored_preference)


def launch_process(spec: LaunchSpec) -> subprocess.Popen:
    """Start the process described by ``spec`` without waiting for it."""

    popen_kwargs: dict[str, Any] = {}
    if os.name == "nt":  # pragma: no cover - exercised on Windows
        creationflags = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        if creationflags:
            popen_kwargs["creationflags"] = creationflags
    else:
        popen_kwargs["start_new_session"] = True
    environment = None
    if spec.environment:
        environment = dict(os.environ)
        environment.update(spec.environment)
    _LOGGER.info("Launching %s in %s", spec.executable, spec.working_directory)
    try:
        return subprocess.Popen(  # nosec - command resolved from the install tree
            spec.argv,
            cwd=str(spec.working_directory),
            env=environment,
            **popen_kwargs,
        )
    except PermissionError as exc:
        raise PermissionDenied(f"Permission denied launching {spec.executable}: {exc}") from exc
    except OSError as exc:
        raise ReleaseManagerError(f"Failed to launch {spec.executable}: {exc}") from exc


__all__ = [
    "LaunchResolver",
    "bundle_executable",
    "enumerate_executables",
    "launch_process",
    "resolve_launch",
]
