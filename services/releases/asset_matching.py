"""Heuristic classification of release asset names by target platform.

Upstream projects name their assets inconsistently, so matching is a
best-effort classifier rather than a parser.  Conflicting platforms are
rejected before any positive marker is considered: an asset that mentions
both ``win`` and ``linux`` must never be offered on the wrong platform.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable

from services.releases.installer import classify_asset
from services.releases.models import (
    Asset,
    CompatibilityLayer,
    CompatibilityLayerUnavailable,
    HostOS,
    NoCompatibleAsset,
    PlatformDescriptor,
    Release,
    UnsupportedArchiveFormat,
)


_LOGGER = logging.getLogger(__name__)

_NON_WINDOWS_MARKERS = (
    "linux",
    "macos",
    "darwin",
    ".deb",
    ".rpm",
    ".appimage",
    ".dmg",
    ".pkg",
    "flatpak",
    "switch",
)
_WINDOWS_MARKERS = (
    "windows",
    "win64",
    "win32",
    "win-x64",
    "win-x86",
    ".exe",
    ".msi",
    "msvc",
    "mingw",
)
_WIN_TOKEN = re.compile(r"(?<![a-z0-9])win(?![a-z])")
_MACOS_MARKERS = ("macos", "osx", "darwin", ".dmg", ".pkg")
_MAC_TOKEN = re.compile(r"mac(?!hin)")
_LINUX_MARKERS = ("linux", ".appimage", ".deb", ".rpm", "tar.gz", "tar.xz")
_LINUX_EXCLUSIVE_MARKERS = ("linux", ".appimage", ".deb", ".rpm", "flatpak")
_ARM_MARKERS = ("arm64", "aarch64", "armv7", "armhf")
_FLATPAK_MARKERS = ("flatpak", ".flatpakref")
_X86_32_MARKERS = ("i686", "i386", "i586")
_X64_MARKERS = ("x86_64", "x64", "amd64", "x86-64")


def _contains_any(name: str, markers: Iterable[str]) -> bool:
    return any(marker in name for marker in markers)


def _has_windows_marker(name: str) -> bool:
    return _contains_any(name, _WINDOWS_MARKERS) or _WIN_TOKEN.search(name) is not None


def _has_macos_marker(name: str) -> bool:
    return _contains_any(name, _MACOS_MARKERS) or _MAC_TOKEN.search(name) is not None


def matches(file_name: str, platform: PlatformDescriptor) -> bool:
    """Return ``True`` when ``file_name`` looks like a build for ``platform``."""

    name = file_name.lower()
    host = platform.os

    if host is HostOS.WINDOWS:
        if _contains_any(name, _NON_WINDOWS_MARKERS):
            return False
        return _has_windows_marker(name)

    if host is HostOS.MACOS:
        if _has_windows_marker(name) or _contains_any(name, _LINUX_EXCLUSIVE_MARKERS):
            return False
        return _has_macos_marker(name)

    if host.is_linux:
        if _has_windows_marker(name) or _has_macos_marker(name):
            return False
        if not _contains_any(name, _LINUX_MARKERS):
            return False
        if host is HostOS.LINUX_ARM64:
            return _contains_any(name, _ARM_MARKERS)
        if host is HostOS.LINUX_FLATPAK:
            return _contains_any(name, _FLATPAK_MARKERS)
        if _contains_any(name, _X86_32_MARKERS):
            return False
        if _contains_any(name, _ARM_MARKERS) or _contains_any(name, _FLATPAK_MARKERS):
            return False
        return _contains_any(name, _X64_MARKERS)

    identifier = platform.label.lower()
    return bool(identifier) and identifier in name


@dataclass(frozen=True)
class AssetChoice:
    """The asset selected for installation on a platform."""

    asset: Asset
    requires_compatibility_layer: bool = False


def _installable(asset: Asset) -> bool:
    try:
        classify_asset(asset.file_name)
    except UnsupportedArchiveFormat:
        return False
    return True


def _pick(candidates: list[Asset]) -> Asset | None:
    """First candidate the installer can unpack, else the first candidate."""

    for asset in candidates:
        if _installable(asset):
            return asset
    return candidates[0] if candidates else None


def choose_asset(
    release: Release,
    platform: PlatformDescriptor,
    compatibility_layer: CompatibilityLayer | None = None,
) -> AssetChoice:
    """Pick the asset of ``release`` to install on ``platform``.

    Archives and executables the installer can unpack win over packages
    such as ``.deb`` or ``.dmg`` that match the same platform.  Linux hosts
    fall back to a Windows build when a compatibility layer is installed.
    Without one the Windows build is refused with guidance instead of being
    installed silently.
    """

    native = _pick([asset for asset in release.assets if matches(asset.file_name, platform)])
    if native is not None:
        _LOGGER.info(
            "Release %s provides %s asset %s", release.tag, platform.label, native.file_name
        )
        return AssetChoice(native)

    if platform.os.is_linux:
        windows = PlatformDescriptor(HostOS.WINDOWS)
        fallback = _pick([asset for asset in release.assets if matches(asset.file_name, windows)])
        if fallback is not None:
            if compatibility_layer is None:
                raise CompatibilityLayerUnavailable(
                    f"Release {release.tag} only provides a Windows build ({fallback.file_name}) "
                    f"and no compatibility layer is installed"
                )
            _LOGGER.info(
                "Release %s has no %s build; using Windows asset %s through %s",
                release.tag,
                platform.label,
                fallback.file_name,
                compatibility_layer.flavor.value,
            )
            return AssetChoice(fallback, requires_compatibility_layer=True)

    raise NoCompatibleAsset(f"No downloadable asset in release {release.tag} for {platform.label}")


__all__ = ["AssetChoice", "choose_asset", "matches"]
