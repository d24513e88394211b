"""Data models and errors used by the release manager."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Sequence, Tuple


@dataclass(frozen=True)
class Asset:
    """A single downloadable file attached to a release."""

    file_name: str
    download_url: str
    sha256: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.file_name,
            "browser_download_url": self.download_url,
        }
        if self.sha256:
            payload["digest"] = f"sha256:{self.sha256}"
        return payload


@dataclass(frozen=True)
class Release:
    """An upstream release and the assets attached to it."""

    tag: str
    assets: Tuple[Asset, ...] = ()
    is_prerelease: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "tag_name": self.tag,
            "prerelease": self.is_prerelease,
            "assets": [asset.to_payload() for asset in self.assets],
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Release | None":
        """Build a release from the upstream JSON shape, ``None`` when unusable."""

        if not isinstance(payload, Mapping):
            return None
        tag = str(payload.get("tag_name") or "").strip()
        if not tag:
            return None
        assets: list[Asset] = []
        raw_assets = payload.get("assets") or []
        if isinstance(raw_assets, Sequence):
            for raw in raw_assets:
                asset = _asset_from_payload(raw)
                if asset is not None:
                    assets.append(asset)
        return cls(tag=tag, assets=tuple(assets), is_prerelease=bool(payload.get("prerelease")))


def _asset_from_payload(raw: object) -> Asset | None:
    if not isinstance(raw, Mapping):
        return None
    name = str(raw.get("name") or "").strip()
    url = str(raw.get("browser_download_url") or "").strip()
    if not name or not url:
        return None
    return Asset(file_name=name, download_url=url, sha256=parse_digest(raw.get("digest")))


def parse_digest(raw: object) -> str | None:
    """Return the hex SHA-256 value from a ``sha256:<hex>`` digest string."""

    if not isinstance(raw, str):
        return None
    digest = raw.strip()
    if not digest:
        return None
    algorithm: str | None = None
    value = digest
    if ":" in digest:
        algorithm, value = digest.split(":", 1)
    if algorithm is not None and algorithm.strip().lower() != "sha256":
        return None
    value = value.strip().lower()
    if len(value) != 64 or any(character not in "0123456789abcdef" for character in value):
        return None
    return value


@dataclass(frozen=True)
class CacheEntry:
    """Cached resolution state for one repository."""

    resolved_version: str
    validator_token: str | None
    cached_release: Release | None
    last_full_check: datetime.datetime
    last_stale_check: datetime.datetime


class HostOS(str, Enum):
    WINDOWS = "windows"
    MACOS = "macos"
    LINUX_X64 = "linux-x64"
    LINUX_ARM64 = "linux-arm64"
    LINUX_FLATPAK = "linux-flatpak"
    OTHER = "other"

    @property
    def is_linux(self) -> bool:
        return self in (HostOS.LINUX_X64, HostOS.LINUX_ARM64, HostOS.LINUX_FLATPAK)


class PlatformSource(str, Enum):
    AUTO = "auto"
    OVERRIDE = "override"


@dataclass(frozen=True)
class PlatformDescriptor:
    """Target platform used for asset matching and launch resolution."""

    os: HostOS
    source: PlatformSource = PlatformSource.AUTO
    identifier: str = ""

    @property
    def label(self) -> str:
        return self.identifier or self.os.value


class CompatibilityFlavor(str, Enum):
    PROTON = "proton"
    WINE = "wine"
    UMU = "umu"


@dataclass(frozen=True)
class CompatibilityLayer:
    """A runtime able to execute Windows binaries on Linux."""

    flavor: CompatibilityFlavor
    executable: Path
    steam_root: Path | None = None

    def arguments_for(self, target: Path) -> list[str]:
        if self.flavor is CompatibilityFlavor.PROTON:
            return ["run", str(target)]
        return [str(target)]


@dataclass(frozen=True)
class LaunchSpec:
    """Concrete description of how to start an installed title."""

    command: str
    arguments: Tuple[str, ...]
    working_directory: Path
    executable: Path
    compatibility_layer: CompatibilityLayer | None = None
    environment: Mapping[str, str] = field(default_factory=dict)

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.arguments]


class TitleStatus(str, Enum):
    NOT_INSTALLED = "not_installed"
    DOWNLOADING = "downloading"
    INSTALLING = "installing"
    INSTALLED = "installed"
    UPDATE_AVAILABLE = "update_available"
    UPDATING = "updating"

    @property
    def is_busy(self) -> bool:
        return self in (TitleStatus.DOWNLOADING, TitleStatus.INSTALLING, TitleStatus.UPDATING)


@dataclass(frozen=True)
class TitleSnapshot:
    """Observable state of one title after an operation."""

    title: str
    status: TitleStatus
    installed_version: str | None = None
    latest_version: str | None = None
    is_downgrade: bool = False
    last_error: str | None = None


class ReleaseManagerError(RuntimeError):
    """Base class for failures surfaced by the release manager."""


class UpstreamUnavailable(ReleaseManagerError):
    """Raised when the release API cannot be reached and nothing is cached."""


class NoReleasesFound(ReleaseManagerError):
    """Raised when the upstream release list is empty."""


class NoCompatibleAsset(ReleaseManagerError):
    """Raised when no asset of a release fits the target platform."""


class DownloadFailed(ReleaseManagerError):
    """Raised when an asset cannot be downloaded or verified."""


class DownloadCancelled(DownloadFailed):
    """Raised when a download is aborted through its cancellation token."""


class UnsupportedArchiveFormat(ReleaseManagerError):
    """Raised when a downloaded asset has no known unpacking strategy."""


class ExtractionFailed(ReleaseManagerError):
    """Raised when an archive cannot be unpacked or installed."""


class PermissionDenied(ReleaseManagerError):
    """Raised when the filesystem refuses access to an installation path."""


class NoExecutableFound(ReleaseManagerError):
    """Raised when an installed title contains nothing that can be launched."""


class CompatibilityLayerUnavailable(ReleaseManagerError):
    """Raised when a Windows build needs Wine/Proton and none is installed."""

    def __init__(self, message: str, *, guidance: str | None = None) -> None:
        super().__init__(message)
        self.guidance = guidance or (
            "Install Wine, umu-launcher or a Proton build through Steam and try again."
        )


class InstallationInProgress(ReleaseManagerError):
    """Raised when an install is requested while another one is running."""


class SelectionRequired(Exception):
    """Signal that several executables exist and the caller must choose one."""

    def __init__(self, candidates: Sequence[Path]) -> None:
        super().__init__(f"{len(candidates)} launchable files found; a selection is required")
        self.candidates = tuple(candidates)
