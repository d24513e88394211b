"""Helpers for constructing the release manager and refreshing titles."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from app.config import AppConfig, get_app_config
from app.version import user_agent
from services.releases.catalog import TitleDefinition, load_title_catalog, most_recently_played
from services.releases.compat_layer import detect_compatibility_layer
from services.releases.installer import ArchiveInstaller
from services.releases.launcher import LaunchResolver, launch_process
from services.releases.models import PlatformDescriptor, ReleaseManagerError, TitleSnapshot
from services.releases.platforms import detect_host_platform
from services.releases.providers import (
    GitHubReleaseProvider,
    LocalFolderReleaseProvider,
    ReleaseProvider,
)
from services.releases.resolver import ReleaseResolver
from services.releases.state_machine import LayerDetector, StatusCallback, TitleInstallation
from services.releases.version_cache import VersionCache
from shared.logging_config import ensure_app_logging


_LOGGER = logging.getLogger(__name__)


@dataclass
class ReleaseManager:
    """Components shared by every title, built once at start-up."""

    config: AppConfig
    platform: PlatformDescriptor
    cache: VersionCache
    resolver: ReleaseResolver
    installer: ArchiveInstaller
    launcher: LaunchResolver
    titles: tuple[TitleInstallation, ...]

    def title(self, name: str) -> TitleInstallation:
        for installation in self.titles:
            if name in (installation.title.name, installation.title.folder_name):
                return installation
        raise KeyError(name)

    def most_recently_played(self) -> TitleInstallation | None:
        definition = most_recently_played(
            (installation.title for installation in self.titles), self.config.paths.games_dir
        )
        if definition is None:
            return None
        return self.title(definition.folder_name)

    def refresh_status(
        self,
        *,
        force_revalidate: bool = False,
        on_complete: Callable[[], None] | None = None,
    ) -> list[Future]:
        """Refresh every title on the configured number of workers."""

        return schedule_status_refresh(
            self.titles,
            force_revalidate=force_revalidate,
            max_workers=self.config.refresh_workers,
            on_complete=on_complete,
        )


def _build_provider(config: AppConfig) -> ReleaseProvider:
    local_dir = config.paths.local_releases_dir
    if local_dir is not None:
        if local_dir.exists():
            _LOGGER.info("Using local release source at %s", local_dir)
            return LocalFolderReleaseProvider(local_dir)
        _LOGGER.warning("Configured local release directory does not exist: %s", local_dir)
    return GitHubReleaseProvider(
        config.github.api_base_url,
        token=config.github.token,
        user_agent=user_agent(config.github.user_agent),
        timeout=config.github.request_timeout,
    )


def build_release_manager(
    config: AppConfig | None = None,
    *,
    catalog: Sequence[TitleDefinition] | None = None,
    provider: ReleaseProvider | None = None,
    configure_logging: bool = True,
    start_processes: bool = True,
    on_status_changed: StatusCallback | None = None,
    layer_detector: LayerDetector = detect_compatibility_layer,
) -> ReleaseManager:
    """Wire one :class:`VersionCache` into every component and title."""

    if configure_logging:
        ensure_app_logging()
    config = config or get_app_config()
    platform = detect_host_platform(config.platform_override)
    cache = VersionCache(
        config.paths.cache_path,
        full_freshness=config.cache.full_freshness_seconds,
        installed_interval=config.cache.installed_interval_seconds,
        not_installed_interval=config.cache.not_installed_interval_seconds,
    )
    resolver = ReleaseResolver(provider or _build_provider(config), cache)
    installer = ArchiveInstaller(
        platform,
        user_agent=user_agent(config.github.user_agent),
        timeout=config.github.request_timeout,
    )
    launcher = LaunchResolver(layer_detector)
    definitions = catalog if catalog is not None else load_title_catalog(config.paths.catalog_path)
    titles = tuple(
        TitleInstallation(
            definition,
            config.paths.games_dir,
            resolver=resolver,
            installer=installer,
            launcher=launcher,
            layer_detector=layer_detector,
            process_starter=launch_process if start_processes else None,
            on_status_changed=on_status_changed,
        )
        for definition in definitions
    )
    _LOGGER.info(
        "Release manager ready for %s titles on %s (games in %s)",
        len(titles),
        platform.label,
        config.paths.games_dir,
    )
    return ReleaseManager(
        config=config,
        platform=platform,
        cache=cache,
        resolver=resolver,
        installer=installer,
        launcher=launcher,
        titles=titles,
    )


def _run_refresh(installation: TitleInstallation, force_revalidate: bool) -> TitleSnapshot | None:
    try:
        return installation.refresh_status(force_revalidate)
    except ReleaseManagerError as exc:
        _LOGGER.warning("Status refresh for %s failed: %s", installation.title.name, exc)
    except Exception:  # pragma: no cover - keeps other titles refreshing
        _LOGGER.exception("Unexpected error while refreshing %s", installation.title.name)
    return None


def schedule_status_refresh(
    titles: Iterable[TitleInstallation],
    *,
    force_revalidate: bool = False,
    max_workers: int = 4,
    on_complete: Callable[[], None] | None = None,
) -> list[Future]:
    """Refresh every title on a worker pool without blocking the caller.

    Each future resolves to the title's :class:`TitleSnapshot`, or ``None``
    when the refresh failed.  ``on_complete`` runs once all titles finished.
    """

    installations = list(titles)
    executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="recomp-refresh")
    futures = [
        executor.submit(_run_refresh, installation, force_revalidate) for installation in installations
    ]
    remaining = len(futures)

    if on_complete is not None:
        if not futures:
            on_complete()
        else:
            counter_lock = threading.Lock()

            def _done(_future: Future) -> None:
                nonlocal remaining
                with counter_lock:
                    remaining -= 1
                    finished = remaining == 0
                if finished:
                    on_complete()

            for future in futures:
                future.add_done_callback(_done)

    executor.shutdown(wait=False)
    _LOGGER.debug("Scheduled status refresh for %s titles", len(futures))
    return futures


__all__ = [
    "ReleaseManager",
    "build_release_manager",
    "schedule_status_refresh",
]
