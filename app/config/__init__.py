"""Release manager configuration loaded from JSON resources and the environment."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from importlib import resources
from math import isfinite
from pathlib import Path
from typing import Any, Mapping

_CONFIG_RESOURCE = "release_manager.json"
_APP_CONFIG_CACHE: AppConfig | None = None

_DEFAULT_DATA_DIR = Path("~/.local/share/recomp-release-manager")
_DEFAULT_API_BASE_URL = "https://api.github.com"
_DEFAULT_USER_AGENT = "RecompReleaseManager"
_DEFAULT_TIMEOUT_SECONDS = 30
_DEFAULT_FULL_FRESHNESS_HOURS = 24.0
_DEFAULT_INSTALLED_INTERVAL_HOURS = 6.0
_DEFAULT_NOT_INSTALLED_INTERVAL_HOURS = 24.0
_DEFAULT_REFRESH_WORKERS = 4


@dataclass(frozen=True)
class GitHubConfig:
    """Settings for talking to the release API."""

    api_base_url: str
    user_agent: str
    token: str | None
    request_timeout: int


@dataclass(frozen=True)
class PathsConfig:
    """Where installs, the version cache and the title catalog live."""

    games_dir: Path
    cache_path: Path
    catalog_path: Path
    local_releases_dir: Path | None


@dataclass(frozen=True)
class CacheConfig:
    """Release cache freshness windows, in hours."""

    full_freshness_hours: float
    installed_interval_hours: float
    not_installed_interval_hours: float

    @property
    def full_freshness_seconds(self) -> float:
        return self.full_freshness_hours * 3600.0

    @property
    def installed_interval_seconds(self) -> float:
        return self.installed_interval_hours * 3600.0

    @property
    def not_installed_interval_seconds(self) -> float:
        return self.not_installed_interval_hours * 3600.0


@dataclass(frozen=True)
class AppConfig:
    """Structured configuration values for the release manager."""

    github: GitHubConfig
    paths: PathsConfig
    cache: CacheConfig
    platform_override: str | None
    refresh_workers: int


def get_app_config() -> AppConfig:
    """Return the cached application configuration."""

    global _APP_CONFIG_CACHE
    if _APP_CONFIG_CACHE is None:
        _APP_CONFIG_CACHE = load_app_config()
    return _APP_CONFIG_CACHE


def reset_app_config_cache() -> None:
    """Reset the cached configuration for subsequent reloads."""

    global _APP_CONFIG_CACHE
    _APP_CONFIG_CACHE = None


def load_app_config(
    path: str | Path | None = None, environ: Mapping[str, str] | None = None
) -> AppConfig:
    """Load configuration from ``path`` or the bundled JSON resource.

    ``RECOMP_*`` environment variables override the file's values.
    """

    env = os.environ if environ is None else environ
    data = _read_config_data(path)
    github = _parse_github_section(_section(data, "github"), env)
    paths = _parse_paths_section(_section(data, "paths"), env)
    cache = _parse_cache_section(_section(data, "cache"))
    platform_override = _clean_str(env.get("RECOMP_PLATFORM")) or _clean_str(data.get("platform"))
    workers = _coerce_positive_int(data.get("refresh_workers"), default=_DEFAULT_REFRESH_WORKERS)
    return AppConfig(
        github=github,
        paths=paths,
        cache=cache,
        platform_override=platform_override,
        refresh_workers=workers,
    )


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any] | None:
    section = data.get(name)
    return section if isinstance(section, Mapping) else None


def _read_config_data(path: str | Path | None) -> Mapping[str, Any]:
    if path is not None:
        return _load_json_from_path(Path(path).expanduser())
    return _load_default_config_data()


def _load_json_from_path(path: Path) -> Mapping[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    return _parse_json(raw)


def _load_default_config_data() -> Mapping[str, Any]:
    try:
        resource = resources.files(__package__).joinpath(_CONFIG_RESOURCE)
        raw = resource.read_text(encoding="utf-8")
    except (FileNotFoundError, OSError):
        return {}
    return _parse_json(raw)


def _parse_json(raw: str) -> Mapping[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    if isinstance(parsed, Mapping):
        return parsed
    return {}


def _parse_github_section(section: Mapping[str, Any] | None, env: Mapping[str, str]) -> GitHubConfig:
    section = section or {}
    api_base_url = _clean_str(section.get("api_base_url")) or _DEFAULT_API_BASE_URL
    user_agent = _clean_str(section.get("user_agent")) or _DEFAULT_USER_AGENT
    token = (
        _clean_str(env.get("RECOMP_GITHUB_TOKEN"))
        or _clean_str(env.get("GITHUB_TOKEN"))
        or _clean_str(section.get("token"))
    )
    timeout = _coerce_positive_int(section.get("request_timeout"), default=_DEFAULT_TIMEOUT_SECONDS)
    return GitHubConfig(
        api_base_url=api_base_url.rstrip("/"),
        user_agent=user_agent,
        token=token,
        request_timeout=timeout,
    )


def _parse_paths_section(section: Mapping[str, Any] | None, env: Mapping[str, str]) -> PathsConfig:
    section = section or {}
    data_dir = _coerce_path(section.get("data_dir")) or _DEFAULT_DATA_DIR.expanduser()
    games_dir = (
        _coerce_path(env.get("RECOMP_GAMES_DIR"))
        or _coerce_path(section.get("games_dir"))
        or data_dir / "games"
    )
    cache_path = (
        _coerce_path(env.get("RECOMP_CACHE_PATH"))
        or _coerce_path(section.get("cache_path"))
        or data_dir / "version_cache.json"
    )
    catalog_path = _coerce_path(section.get("catalog_path")) or data_dir / "games.json"
    local_releases = _coerce_path(env.get("RECOMP_LOCAL_RELEASES_DIR")) or _coerce_path(
        section.get("local_releases_dir")
    )
    return PathsConfig(
        games_dir=games_dir,
        cache_path=cache_path,
        catalog_path=catalog_path,
        local_releases_dir=local_releases,
    )


def _parse_cache_section(section: Mapping[str, Any] | None) -> CacheConfig:
    if not isinstance(section, Mapping):
        return CacheConfig(
            full_freshness_hours=_DEFAULT_FULL_FRESHNESS_HOURS,
            installed_interval_hours=_DEFAULT_INSTALLED_INTERVAL_HOURS,
            not_installed_interval_hours=_DEFAULT_NOT_INSTALLED_INTERVAL_HOURS,
        )
    return CacheConfig(
        full_freshness_hours=_coerce_hours(
            section.get("full_freshness_hours"), default=_DEFAULT_FULL_FRESHNESS_HOURS
        ),
        installed_interval_hours=_coerce_hours(
            section.get("installed_interval_hours"), default=_DEFAULT_INSTALLED_INTERVAL_HOURS
        ),
        not_installed_interval_hours=_coerce_hours(
            section.get("not_installed_interval_hours"),
            default=_DEFAULT_NOT_INSTALLED_INTERVAL_HOURS,
        ),
    )


def _clean_str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def _coerce_path(value: Any) -> Path | None:
    cleaned = _clean_str(value)
    if cleaned is None:
        return None
    return Path(cleaned).expanduser()


def _coerce_positive_int(value: Any, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        candidate = int(value)
    elif isinstance(value, str):
        try:
            candidate = int(float(value))
        except ValueError:
            return default
    else:
        return default
    if candidate <= 0:
        return default
    return candidate


def _coerce_hours(value: Any, *, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        candidate = float(value)
    elif isinstance(value, str):
        try:
            candidate = float(value.strip())
        except ValueError:
            return default
    else:
        return default
    if not isfinite(candidate) or candidate < 0:
        return default
    return candidate


__all__ = [
    "AppConfig",
    "CacheConfig",
    "GitHubConfig",
    "PathsConfig",
    "get_app_config",
    "load_app_config",
    "reset_app_config_cache",
]
