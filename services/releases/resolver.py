"""Resolve the current release of a repository through the version cache."""

from __future__ import annotations

import logging
from typing import Sequence

from services.releases.models import NoReleasesFound, Release, UpstreamUnavailable
from services.releases.providers import ReleaseProvider
from services.releases.version_cache import VersionCache


_LOGGER = logging.getLogger(__name__)


def select_release(releases: Sequence[Release]) -> Release | None:
    """Return the newest stable release, else the newest pre-release.

    Repositories that only publish pre-releases stay installable.
    """

    for release in releases:
        if not release.is_prerelease:
            return release
    for release in releases:
        if release.is_prerelease:
            return release
    return None


class ReleaseResolver:
    """Combine a release provider with the shared :class:`VersionCache`."""

    def __init__(self, provider: ReleaseProvider, cache: VersionCache) -> None:
        self._provider = provider
        self._cache = cache

    @property
    def cache(self) -> VersionCache:
        return self._cache

    def current_release(self, repo: str) -> Release | None:
        """Return the release most recently resolved for ``repo`` without I/O."""

        entry = self._cache.get(repo)
        return entry.cached_release if entry is not None else None

    def resolve(self, repo: str, force_revalidate: bool = False, *, installed: bool = False) -> Release:
        entry = self._cache.get(repo)
        cached = entry.cached_release if entry is not None else None

        if cached is not None and not self._cache.needs_revalidation(
            repo, installed, force=force_revalidate
        ):
            _LOGGER.debug("Using cached release %s for %s", cached.tag, repo)
            return cached

        validator = entry.validator_token if cached is not None and entry is not None else None
        try:
            listing = self._provider.fetch_releases(repo, validator)
        except UpstreamUnavailable as exc:
            if cached is not None:
                _LOGGER.warning(
                    "Release check for %s failed; keeping cached release %s: %s",
                    repo,
                    cached.tag,
                    exc,
                )
                return cached
            raise

        if listing.not_modified and cached is not None:
            self._cache.touch(repo)
            return cached

        release = select_release(listing.releases)
        if release is None:
            raise NoReleasesFound(f"No releases published for {repo}")
        if release.is_prerelease:
            _LOGGER.info("%s has no stable release; using pre-release %s", repo, release.tag)

        self._cache.put(repo, release.tag, listing.validator_token, release)
        _LOGGER.info("Resolved %s to release %s", repo, release.tag)
        return release


__all__ = ["ReleaseResolver", "select_release"]
