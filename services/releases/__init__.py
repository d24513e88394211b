"""Public API for the per-title release manager package."""

from __future__ import annotations

from services.releases.asset_matching import AssetChoice, choose_asset, matches
from services.releases.builder import ReleaseManager, build_release_manager, schedule_status_refresh
from services.releases.catalog import TitleDefinition, load_title_catalog, most_recently_played
from services.releases.compat_layer import detect_compatibility_layer
from services.releases.download import CancellationToken
from services.releases.flattening import FlattenResult, ensure_executable_at_root
from services.releases.installer import ArchiveInstaller
from services.releases.launcher import LaunchResolver, launch_process, resolve_launch
from services.releases.models import (
    Asset,
    CacheEntry,
    CompatibilityFlavor,
    CompatibilityLayer,
    CompatibilityLayerUnavailable,
    DownloadCancelled,
    DownloadFailed,
    ExtractionFailed,
    HostOS,
    InstallationInProgress,
    LaunchSpec,
    NoCompatibleAsset,
    NoExecutableFound,
    NoReleasesFound,
    PermissionDenied,
    PlatformDescriptor,
    PlatformSource,
    Release,
    ReleaseManagerError,
    SelectionRequired,
    TitleSnapshot,
    TitleStatus,
    UnsupportedArchiveFormat,
    UpstreamUnavailable,
)
from services.releases.platforms import detect_host_platform, parse_platform_override
from services.releases.providers import (
    GitHubReleaseProvider,
    LocalFolderReleaseProvider,
    ReleaseListing,
    ReleaseProvider,
)
from services.releases.resolver import ReleaseResolver
from services.releases.state_machine import TitleInstallation
from services.releases.version_cache import VersionCache

__all__ = [
    "ArchiveInstaller",
    "Asset",
    "AssetChoice",
    "CacheEntry",
    "CancellationToken",
    "CompatibilityFlavor",
    "CompatibilityLayer",
    "CompatibilityLayerUnavailable",
    "DownloadCancelled",
    "DownloadFailed",
    "ExtractionFailed",
    "FlattenResult",
    "GitHubReleaseProvider",
    "HostOS",
    "InstallationInProgress",
    "LaunchResolver",
    "LaunchSpec",
    "LocalFolderReleaseProvider",
    "NoCompatibleAsset",
    "NoExecutableFound",
    "NoReleasesFound",
    "PermissionDenied",
    "PlatformDescriptor",
    "PlatformSource",
    "Release",
    "ReleaseListing",
    "ReleaseManager",
    "ReleaseManagerError",
    "ReleaseProvider",
    "ReleaseResolver",
    "SelectionRequired",
    "TitleDefinition",
    "TitleInstallation",
    "TitleSnapshot",
    "TitleStatus",
    "UnsupportedArchiveFormat",
    "UpstreamUnavailable",
    "VersionCache",
    "build_release_manager",
    "choose_asset",
    "detect_compatibility_layer",
    "detect_host_platform",
    "ensure_executable_at_root",
    "launch_process",
    "load_title_catalog",
    "matches",
    "most_recently_played",
    "parse_platform_override",
    "resolve_launch",
    "schedule_status_refresh",
]
