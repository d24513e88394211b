"""Release provider implementations."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Protocol, Tuple
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from services.releases import constants
from services.releases.models import Asset, Release, UpstreamUnavailable


_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReleaseListing:
    """Result of a (conditional) release list request."""

    not_modified: bool
    releases: Tuple[Release, ...] = ()
    validator_token: str | None = None


class ReleaseProvider(Protocol):
    """Protocol describing release metadata sources."""

    def fetch_releases(self, repo: str, validator_token: str | None = None) -> ReleaseListing:
        """Return the release list for ``repo``, newest first."""


class GitHubReleaseProvider:
    """Fetch release lists from the GitHub Releases API."""

    def __init__(
        self,
        api_base_url: str = constants.API_BASE_URL,
        *,
        token: str | None = None,
        user_agent: str = constants.DEFAULT_USER_AGENT,
        timeout: float = 30.0,
    ) -> None:
        self._api_base_url = api_base_url.rstrip("/")
        self._token = token.strip() if token else None
        self._user_agent = user_agent
        self._timeout = timeout

    def releases_url(self, repo: str) -> str:
        return self._api_base_url + constants.RELEASES_PATH.format(repo=repo.strip("/"))

    def fetch_releases(self, repo: str, validator_token: str | None = None) -> ReleaseListing:
        url = self.releases_url(repo)
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": self._user_agent,
        }
        if validator_token:
            headers["If-None-Match"] = validator_token
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        _LOGGER.debug("Requesting release list %s (conditional=%s)", url, bool(validator_token))
        try:
            with urlopen(Request(url, headers=headers), timeout=self._timeout) as response:  # nosec - GitHub API over HTTPS
                etag = response.headers.get("ETag")
                payload = json.load(response)
        except HTTPError as exc:
            if exc.code == 304:
                _LOGGER.debug("Release list for %s not modified", repo)
                return ReleaseListing(not_modified=True, validator_token=validator_token)
            if exc.code in (401, 403):
                _LOGGER.warning(
                    "GitHub refused the release request for %s (HTTP %s); "
                    "rate limited or invalid token",
                    repo,
                    exc.code,
                )
            raise UpstreamUnavailable(f"Release API returned HTTP {exc.code} for {repo}") from exc
        except (OSError, URLError, ValueError) as exc:
            raise UpstreamUnavailable(f"Failed to query releases for {repo}: {exc}") from exc

        if not isinstance(payload, list):
            raise UpstreamUnavailable(f"Unexpected release payload for {repo}")
        releases = tuple(_parse_release_list(payload))
        _LOGGER.info("GitHub returned %s releases for %s", len(releases), repo)
        return ReleaseListing(not_modified=False, releases=releases, validator_token=etag or None)


class LocalFolderReleaseProvider:
    """Serve release metadata and assets from a local directory.

    The folder holds a ``releases.json`` file in the GitHub list shape whose
    asset names refer to files next to it.  Download URLs are ``file://`` URIs
    so the regular download path is exercised unchanged.
    """

    def __init__(self, folder: Path) -> None:
        self._folder = Path(folder)

    def fetch_releases(self, repo: str, validator_token: str | None = None) -> ReleaseListing:
        metadata_path = self._folder / constants.LOCAL_RELEASES_FILE
        try:
            data = json.loads(metadata_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise UpstreamUnavailable(f"Failed to read local release metadata: {exc}") from exc

        if isinstance(data, dict):
            data = data.get(repo, [])
        if not isinstance(data, list):
            raise UpstreamUnavailable(f"Local release metadata for {repo} is not a list")

        releases: list[Release] = []
        for release in _parse_release_list(data):
            assets = tuple(self._localise(asset) for asset in release.assets)
            releases.append(Release(release.tag, assets, release.is_prerelease))
        _LOGGER.info("Local folder %s supplies %s releases for %s", self._folder, len(releases), repo)
        return ReleaseListing(not_modified=False, releases=tuple(releases))

    def _localise(self, asset: Asset) -> Asset:
        if "://" in asset.download_url:
            return asset
        path = (self._folder / asset.download_url).resolve()
        return Asset(asset.file_name, path.as_uri(), asset.sha256)


def _parse_release_list(payload: Iterable[object]) -> Iterable[Release]:
    for entry in payload:
        if isinstance(entry, dict) and entry.get("draft"):
            continue
        release = Release.from_payload(entry) if isinstance(entry, dict) else None
        if release is None:
            _LOGGER.debug("Skipping release entry without a tag")
            continue
        yield release


__all__ = [
    "GitHubReleaseProvider",
    "LocalFolderReleaseProvider",
    "ReleaseListing",
    "ReleaseProvider",
]
