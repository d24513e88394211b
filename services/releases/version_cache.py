"""Persisted per-repository release cache with conditional re-validation."""

from __future__ import annotations

import datetime
import json
import logging
import os
import tempfile
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Mapping

from services.releases import constants
from services.releases.models import CacheEntry, Release


_LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime.datetime]


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class VersionCache:
    """Thread-safe map from repository identifier to :class:`CacheEntry`.

    Updates are read-modify-write operations against a single key, so each
    key has its own lock.  The backing JSON file is rewritten atomically after
    every mutation; a missing or corrupt file simply yields an empty cache.
    """

    def __init__(
        self,
        path: Path | None = None,
        *,
        clock: Clock = _utc_now,
        full_freshness: float = constants.FULL_FRESHNESS_SECONDS,
        installed_interval: float = constants.INSTALLED_REVALIDATION_SECONDS,
        not_installed_interval: float = constants.NOT_INSTALLED_REVALIDATION_SECONDS,
    ) -> None:
        self._path = Path(path) if path is not None else None
        self._clock = clock
        self._full_freshness = datetime.timedelta(seconds=full_freshness)
        self._installed_interval = datetime.timedelta(seconds=installed_interval)
        self._not_installed_interval = datetime.timedelta(seconds=not_installed_interval)
        self._entries: dict[str, CacheEntry] = self._load()
        self._key_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._save_lock = threading.Lock()

    @property
    def path(self) -> Path | None:
        return self._path

    def get(self, repo: str) -> CacheEntry | None:
        # Entries are frozen, so handing out the stored instance is a copy.
        return self._entries.get(repo)

    def put(
        self,
        repo: str,
        version: str | None,
        validator_token: str | None,
        release: Release | None,
    ) -> CacheEntry:
        """Record a successful full resolution for ``repo``.

        Fields passed as ``None`` (or empty) keep the previous entry's value,
        so a populated field never regresses to empty.
        """

        with self._lock_for(repo):
            previous = self._entries.get(repo)
            resolved = (version or "").strip() or (previous.resolved_version if previous else "")
            if not resolved:
                raise ValueError(f"Cannot cache {repo} without a resolved version")
            now = self._clock()
            entry = CacheEntry(
                resolved_version=resolved,
                validator_token=validator_token or (previous.validator_token if previous else None),
                cached_release=release or (previous.cached_release if previous else None),
                last_full_check=now,
                last_stale_check=now,
            )
            self._entries[repo] = entry
        _LOGGER.debug("Cached %s at version %s", repo, entry.resolved_version)
        self._save()
        return entry

    def touch(self, repo: str) -> CacheEntry | None:
        """Advance only the staleness timestamp after a "not modified" reply."""

        with self._lock_for(repo):
            previous = self._entries.get(repo)
            if previous is None:
                return None
            entry = replace(previous, last_stale_check=self._clock())
            self._entries[repo] = entry
        _LOGGER.debug("Revalidated cached release for %s (not modified)", repo)
        self._save()
        return entry

    def needs_revalidation(self, repo: str, installed: bool, force: bool = False) -> bool:
        if force:
            return True
        entry = self._entries.get(repo)
        if entry is None:
            return True
        now = self._clock()
        if now - entry.last_full_check < self._full_freshness:
            return False
        interval = self._installed_interval if installed else self._not_installed_interval
        return now - entry.last_stale_check >= interval

    def _lock_for(self, repo: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._key_locks.get(repo)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[repo] = lock
            return lock

    def _load(self) -> dict[str, CacheEntry]:
        if self._path is None or not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            _LOGGER.warning("Ignoring unreadable version cache %s: %s", self._path, exc)
            return {}
        if not isinstance(data, Mapping):
            _LOGGER.warning("Ignoring malformed version cache %s", self._path)
            return {}
        entries: dict[str, CacheEntry] = {}
        for repo, raw in data.items():
            entry = _entry_from_json(raw)
            if entry is None:
                _LOGGER.debug("Skipping invalid cache entry for %s", repo)
                continue
            entries[str(repo)] = entry
        _LOGGER.debug("Loaded %s cached repositories from %s", len(entries), self._path)
        return entries

    def _save(self) -> None:
        if self._path is None:
            return
        with self._save_lock:
            snapshot = {repo: _entry_to_json(entry) for repo, entry in dict(self._entries).items()}
            payload = json.dumps(snapshot, indent=2, sort_keys=True) + "\n"
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as handle:
                        handle.write(payload)
                    os.replace(tmp_name, self._path)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except OSError as exc:
                _LOGGER.warning("Failed to persist version cache to %s: %s", self._path, exc)


def _entry_to_json(entry: CacheEntry) -> dict[str, Any]:
    return {
        "resolved_version": entry.resolved_version,
        "validator_token": entry.validator_token,
        "cached_release": entry.cached_release.to_payload() if entry.cached_release else None,
        "last_full_check": entry.last_full_check.isoformat(),
        "last_stale_check": entry.last_stale_check.isoformat(),
    }


def _entry_from_json(raw: object) -> CacheEntry | None:
    if not isinstance(raw, Mapping):
        return None
    version = raw.get("resolved_version")
    if not isinstance(version, str) or not version.strip():
        return None
    full_check = _parse_timestamp(raw.get("last_full_check"))
    stale_check = _parse_timestamp(raw.get("last_stale_check")) or full_check
    if full_check is None or stale_check is None:
        return None
    token = raw.get("validator_token")
    release_payload = raw.get("cached_release")
    release = Release.from_payload(release_payload) if isinstance(release_payload, Mapping) else None
    return CacheEntry(
        resolved_version=version,
        validator_token=token if isinstance(token, str) and token else None,
        cached_release=release,
        last_full_check=full_check,
        last_stale_check=stale_check,
    )


def _parse_timestamp(raw: object) -> datetime.datetime | None:
    if not isinstance(raw, str):
        return None
    try:
        value = datetime.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value


__all__ = ["Clock", "VersionCache"]
