"""Per-title installation lifecycle."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from pathlib import Path
from typing import Callable

from services.releases.asset_matching import AssetChoice, choose_asset
from services.releases.catalog import TitleDefinition
from services.releases.compat_layer import detect_compatibility_layer
from services.releases.download import CancellationToken
from services.releases.installer import ArchiveInstaller
from services.releases.launcher import LaunchResolver
from services.releases.markers import (
    apply_portable_preference,
    read_installed_version,
    read_selected_executable,
    remove_path_with_retry,
    write_selected_executable,
)
from services.releases.models import (
    CompatibilityLayer,
    CompatibilityLayerUnavailable,
    InstallationInProgress,
    LaunchSpec,
    NoExecutableFound,
    Release,
    ReleaseManagerError,
    TitleSnapshot,
    TitleStatus,
)
from services.releases.resolver import ReleaseResolver
from services.releases.versioning import compare_versions


_LOGGER = logging.getLogger(__name__)

StatusCallback = Callable[[TitleSnapshot], None]
ProgressCallback = Callable[[float], None]
LayerDetector = Callable[[], "CompatibilityLayer | None"]
ProcessStarter = Callable[[LaunchSpec], object]


class TitleInstallation:
    """Drive one title through NotInstalled, Downloading, Installing and Installed.

    Only one install may run per title; a second request while the title is
    busy raises :class:`InstallationInProgress`.  Observers receive every
    status change through ``on_status_changed``.
    """

    def __init__(
        self,
        title: TitleDefinition,
        games_root: Path,
        *,
        resolver: ReleaseResolver,
        installer: ArchiveInstaller,
        launcher: LaunchResolver | None = None,
        layer_detector: LayerDetector = detect_compatibility_layer,
        process_starter: ProcessStarter | None = None,
        on_status_changed: StatusCallback | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self._title = title
        self._install_dir = Path(games_root) / title.folder_name
        self._resolver = resolver
        self._installer = installer
        self._launcher = launcher or LaunchResolver(layer_detector)
        self._layer_detector = layer_detector
        self._process_starter = process_starter
        self.on_status_changed = on_status_changed
        self.on_progress = on_progress
        self._lock = threading.Lock()
        installed = read_installed_version(self._install_dir)
        self._snapshot = TitleSnapshot(
            title=title.name,
            status=TitleStatus.INSTALLED if installed else TitleStatus.NOT_INSTALLED,
            installed_version=installed,
        )

    @property
    def title(self) -> TitleDefinition:
        return self._title

    @property
    def install_dir(self) -> Path:
        return self._install_dir

    @property
    def snapshot(self) -> TitleSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def status(self) -> TitleStatus:
        return self.snapshot.status

    # -- status --------------------------------------------------------------

    def _publish(self, snapshot: TitleSnapshot) -> TitleSnapshot:
        if self.on_status_changed is not None:
            self.on_status_changed(snapshot)
        return snapshot

    def _update(self, **changes) -> TitleSnapshot:
        with self._lock:
            self._snapshot = replace(self._snapshot, **changes)
            snapshot = self._snapshot
        return self._publish(snapshot)

    @staticmethod
    def _derive_status(installed: str | None, latest: str | None) -> TitleStatus:
        if not installed:
            return TitleStatus.NOT_INSTALLED
        if latest and latest != installed:
            return TitleStatus.UPDATE_AVAILABLE
        return TitleStatus.INSTALLED

    @staticmethod
    def _is_downgrade(installed: str | None, latest: str | None) -> bool:
        if not installed or not latest or installed == latest:
            return False
        return compare_versions(installed, latest) < 0

    def refresh_status(self, force_revalidate: bool = False) -> TitleSnapshot:
        """Re-read the install from disk and compare it to the latest release.

        Upstream failures are recorded in ``last_error`` instead of raised.
        """

        installed = read_installed_version(self._install_dir)
        error: str | None = None
        try:
            release = self._resolver.resolve(
                self._title.repository, force_revalidate, installed=installed is not None
            )
            latest: str | None = release.tag
        except ReleaseManagerError as exc:
            _LOGGER.warning("Could not check releases for %s: %s", self._title.name, exc)
            cached = self._resolver.current_release(self._title.repository)
            latest = cached.tag if cached is not None else None
            error = str(exc)

        with self._lock:
            status = self._snapshot.status
            if not status.is_busy:
                status = self._derive_status(installed, latest)
            self._snapshot = replace(
                self._snapshot,
                status=status,
                installed_version=installed,
                latest_version=latest,
                is_downgrade=self._is_downgrade(installed, latest),
                last_error=error,
            )
            snapshot = self._snapshot
        return self._publish(snapshot)

    # -- installation --------------------------------------------------------

    def _begin_install(self) -> tuple[TitleSnapshot, bool]:
        with self._lock:
            if self._snapshot.status.is_busy:
                raise InstallationInProgress(
                    f"{self._title.name} is already {self._snapshot.status.value}"
                )
            updating = read_installed_version(self._install_dir) is not None
            status = TitleStatus.UPDATING if updating else TitleStatus.DOWNLOADING
            self._snapshot = replace(self._snapshot, status=status, last_error=None)
            snapshot = self._snapshot
        return self._publish(snapshot), updating

    def _choose(self, release: Release) -> AssetChoice:
        platform = self._installer.platform
        try:
            return choose_asset(release, platform)
        except CompatibilityLayerUnavailable:
            layer = self._layer_detector()
            if layer is None:
                raise
            return choose_asset(release, platform, layer)

    def install(
        self,
        portable: bool | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> TitleSnapshot:
        _snapshot, updating = self._begin_install()
        try:
            release = self._resolver.resolve(self._title.repository, installed=updating)
            choice = self._choose(release)

            def extracting() -> None:
                if not updating:
                    self._update(status=TitleStatus.INSTALLING)

            self._installer.install(
                choice.asset,
                self._install_dir,
                release.tag,
                progress=self.on_progress,
                on_extract=extracting,
                cancel_token=cancel_token,
                project_hint=self._title.repository.split("/", 1)[-1],
            )
            if portable is not None:
                apply_portable_preference(self._install_dir, portable)
        except BaseException as exc:
            if isinstance(exc, ReleaseManagerError):
                _LOGGER.error("Installing %s failed: %s", self._title.name, exc)
            else:
                _LOGGER.exception("Unexpected error while installing %s", self._title.name)
            installed = read_installed_version(self._install_dir)
            latest = self._snapshot.latest_version
            self._update(
                status=self._derive_status(installed, latest),
                installed_version=installed,
                is_downgrade=self._is_downgrade(installed, latest),
                last_error=str(exc),
            )
            raise

        _LOGGER.info("%s is now at %s", self._title.name, release.tag)
        return self._update(
            status=TitleStatus.INSTALLED,
            installed_version=release.tag,
            latest_version=release.tag,
            is_downgrade=False,
            last_error=None,
        )

    def apply_portable_preference(self, portable: bool) -> None:
        apply_portable_preference(self._install_dir, portable)

    # -- launching -----------------------------------------------------------

    def launch(self, portable: bool | None = None) -> LaunchSpec:
        if read_installed_version(self._install_dir) is None:
            raise NoExecutableFound(f"{self._title.name} is not installed")
        if portable is not None:
            apply_portable_preference(self._install_dir, portable)
        stored = read_selected_executable(self._install_dir)
        spec = self._launcher.resolve_launch(self._install_dir, self._installer.platform, stored)
        if self._process_starter is not None:
            self._process_starter(spec)
        return spec

    def perform_action(
        self,
        portable: bool | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> TitleSnapshot | LaunchSpec:
        """Install or update when needed, otherwise launch."""

        status = self.status
        if status.is_busy:
            raise InstallationInProgress(f"{self._title.name} is already {status.value}")
        if status in (TitleStatus.NOT_INSTALLED, TitleStatus.UPDATE_AVAILABLE):
            return self.install(portable, cancel_token)
        return self.launch(portable)

    def select_executable(self, path: Path) -> None:
        target = Path(path)
        if not target.is_absolute():
            target = self._install_dir / target
        if not target.exists():
            raise NoExecutableFound(f"{target} does not exist")
        write_selected_executable(self._install_dir, target)
        _LOGGER.info("Stored %s as launch target for %s", target, self._title.name)

    def uninstall(self) -> TitleSnapshot:
        with self._lock:
            if self._snapshot.status.is_busy:
                raise InstallationInProgress(
                    f"{self._title.name} is already {self._snapshot.status.value}"
                )
        remove_path_with_retry(self._install_dir, raise_on_failure=True)
        _LOGGER.info("Removed %s from %s", self._title.name, self._install_dir)
        return self._update(
            status=TitleStatus.NOT_INSTALLED,
            installed_version=None,
            is_downgrade=False,
            last_error=None,
        )


__all__ = ["TitleInstallation"]
