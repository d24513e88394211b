from __future__ import annotations

import datetime
import json
import threading

import pytest

from app.config import load_app_config
from services.releases.builder import build_release_manager, schedule_status_refresh
from services.releases.catalog import TitleDefinition
from services.releases.markers import write_last_played
from services.releases.models import HostOS, TitleStatus
from services.releases.providers import GitHubReleaseProvider, LocalFolderReleaseProvider

from tests.unit.release_test_utils import StaticReleaseProvider, make_release, unavailable


def _config(tmp_path, extra: dict | None = None, **environ):
    catalog = tmp_path / "games.json"
    catalog.write_text(
        json.dumps(
            {
                "standard": [
                    {"name": "Zelda 64", "repository": "owner/Zelda64Recomp"},
                    {"name": "Mario Kart", "repository": "owner/MarioKart64Recomp"},
                ]
            }
        ),
        encoding="utf-8",
    )
    config_path = tmp_path / "release_manager.json"
    config_path.write_text(
        json.dumps(
            {
                "paths": {"data_dir": str(tmp_path / "data"), "catalog_path": str(catalog)},
                **(extra or {}),
            }
        ),
        encoding="utf-8",
    )
    env = {"RECOMP_PLATFORM": "linux-x64"}
    env.update(environ)
    return load_app_config(config_path, environ=env)


def test_build_wires_one_cache_into_every_title(tmp_path) -> None:
    provider = StaticReleaseProvider([make_release("v1.0.0", "Game-linux-x86_64.tar.gz")])

    manager = build_release_manager(
        _config(tmp_path), provider=provider, configure_logging=False, start_processes=False
    )

    assert manager.platform.os is HostOS.LINUX_X64
    assert [title.title.name for title in manager.titles] == ["Zelda 64", "Mario Kart"]
    assert manager.cache.path == tmp_path / "data" / "version_cache.json"
    assert manager.title("Zelda64Recomp") is manager.titles[0]
    with pytest.raises(KeyError):
        manager.title("Unknown")

    manager.titles[0].refresh_status()
    manager.titles[1].refresh_status()
    assert manager.cache.get("owner/Zelda64Recomp") is not None
    assert manager.cache.get("owner/MarioKart64Recomp") is not None


def test_explicit_catalog_replaces_file(tmp_path) -> None:
    catalog = [TitleDefinition("Custom", "me/custom", "custom", custom=True)]

    manager = build_release_manager(
        _config(tmp_path),
        catalog=catalog,
        provider=StaticReleaseProvider(),
        configure_logging=False,
    )

    assert [title.title.name for title in manager.titles] == ["Custom"]


def test_provider_follows_configuration(tmp_path) -> None:
    releases = tmp_path / "releases"
    releases.mkdir()

    local = build_release_manager(
        _config(tmp_path, RECOMP_LOCAL_RELEASES_DIR=str(releases)), configure_logging=False
    )
    remote = build_release_manager(
        _config(tmp_path, RECOMP_LOCAL_RELEASES_DIR=str(tmp_path / "missing")), configure_logging=False
    )

    assert isinstance(local.resolver._provider, LocalFolderReleaseProvider)
    assert isinstance(remote.resolver._provider, GitHubReleaseProvider)


def test_most_recently_played_title(tmp_path) -> None:
    manager = build_release_manager(
        _config(tmp_path), provider=StaticReleaseProvider(), configure_logging=False
    )
    assert manager.most_recently_played() is None

    played = manager.titles[1].install_dir
    played.mkdir(parents=True)
    write_last_played(played, datetime.datetime(2024, 3, 1, 9, 0, 0))

    assert manager.most_recently_played() is manager.titles[1]


def test_schedule_status_refresh_updates_every_title(tmp_path) -> None:
    provider = StaticReleaseProvider([make_release("v1.0.0", "Game-linux-x86_64.tar.gz")])
    seen: list[TitleStatus] = []
    manager = build_release_manager(
        _config(tmp_path),
        provider=provider,
        configure_logging=False,
        on_status_changed=lambda snapshot: seen.append(snapshot.status),
    )
    finished = threading.Event()

    futures = schedule_status_refresh(manager.titles, max_workers=2, on_complete=finished.set)
    results = [future.result(timeout=30) for future in futures]

    assert finished.wait(timeout=30)
    assert [snapshot.latest_version for snapshot in results] == ["v1.0.0", "v1.0.0"]
    assert seen == [TitleStatus.NOT_INSTALLED, TitleStatus.NOT_INSTALLED]


def test_schedule_status_refresh_survives_upstream_errors(tmp_path) -> None:
    manager = build_release_manager(
        _config(tmp_path), provider=StaticReleaseProvider(error=unavailable()), configure_logging=False
    )

    futures = schedule_status_refresh(manager.titles)
    results = [future.result(timeout=30) for future in futures]

    assert all(snapshot.last_error for snapshot in results)


def test_schedule_status_refresh_without_titles_completes_immediately() -> None:
    completed: list[bool] = []

    assert schedule_status_refresh([], on_complete=lambda: completed.append(True)) == []
    assert completed == [True]


def test_manager_refresh_uses_configured_worker_count(tmp_path) -> None:
    provider = StaticReleaseProvider([make_release("v1.0.0", "Game-linux-x86_64.tar.gz")])
    threads: list[str] = []
    manager = build_release_manager(
        _config(tmp_path, {"refresh_workers": 1}),
        provider=provider,
        configure_logging=False,
        on_status_changed=lambda _snapshot: threads.append(threading.current_thread().name),
    )
    finished = threading.Event()

    futures = manager.refresh_status(on_complete=finished.set)
    results = [future.result(timeout=30) for future in futures]

    assert finished.wait(timeout=30)
    assert manager.config.refresh_workers == 1
    assert [snapshot.latest_version for snapshot in results] == ["v1.0.0", "v1.0.0"]
    assert len(threads) == 2 and len(set(threads)) == 1
