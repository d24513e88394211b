"""Derive the target platform from the host or explicit configuration."""

from __future__ import annotations

import logging
import os
import platform
import sys

from services.releases.models import HostOS, PlatformDescriptor, PlatformSource


_LOGGER = logging.getLogger(__name__)

_ARM_MACHINES = {"arm64", "aarch64", "armv7l", "armv8l", "armhf"}

_OVERRIDE_ALIASES: dict[str, HostOS] = {
    "windows": HostOS.WINDOWS,
    "win": HostOS.WINDOWS,
    "macos": HostOS.MACOS,
    "mac": HostOS.MACOS,
    "osx": HostOS.MACOS,
    "linux": HostOS.LINUX_X64,
    "linux-x64": HostOS.LINUX_X64,
    "linux_x64": HostOS.LINUX_X64,
    "linux-x86_64": HostOS.LINUX_X64,
    "arm64": HostOS.LINUX_ARM64,
    "linux-arm64": HostOS.LINUX_ARM64,
    "linux_arm64": HostOS.LINUX_ARM64,
    "linux-flatpak": HostOS.LINUX_FLATPAK,
    "x64-flatpak": HostOS.LINUX_FLATPAK,
    "linux-x64-flatpak": HostOS.LINUX_FLATPAK,
    "linux-flatpak-x64": HostOS.LINUX_FLATPAK,
    "flatpak": HostOS.LINUX_FLATPAK,
}


def parse_platform_override(value: str) -> PlatformDescriptor:
    """Map a configured platform name onto a descriptor.

    Unknown names are kept verbatim as an ``OTHER`` identifier so asset
    matching can fall back to plain substring containment.
    """

    cleaned = value.strip()
    host = _OVERRIDE_ALIASES.get(cleaned.lower())
    if host is None:
        _LOGGER.info("Using custom platform identifier %r for asset matching", cleaned)
        return PlatformDescriptor(HostOS.OTHER, PlatformSource.OVERRIDE, cleaned)
    return PlatformDescriptor(host, PlatformSource.OVERRIDE, host.value)


def detect_host_platform(override: str | None = None) -> PlatformDescriptor:
    """Return the platform descriptor for the running host."""

    if override and override.strip():
        return parse_platform_override(override)

    if sys.platform.startswith("win"):
        host = HostOS.WINDOWS
    elif sys.platform == "darwin":
        host = HostOS.MACOS
    elif sys.platform.startswith("linux"):
        machine = platform.machine().lower()
        if machine in _ARM_MACHINES:
            host = HostOS.LINUX_ARM64
        elif os.environ.get("FLATPAK_ID"):
            host = HostOS.LINUX_FLATPAK
        else:
            host = HostOS.LINUX_X64
    else:
        _LOGGER.warning("Unrecognised host platform %s; using substring asset matching", sys.platform)
        return PlatformDescriptor(HostOS.OTHER, PlatformSource.AUTO, sys.platform)

    _LOGGER.debug("Detected host platform %s", host.value)
    return PlatformDescriptor(host, PlatformSource.AUTO, host.value)


__all__ = ["detect_host_platform", "parse_platform_override"]
