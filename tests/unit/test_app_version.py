from __future__ import annotations

from importlib import resources

from app import version
from app.version import get_app_version, user_agent


def _reset_cache() -> None:
    get_app_version.cache_clear()  # type: ignore[attr-defined]


def test_get_app_version_prefers_environment(monkeypatch) -> None:
    monkeypatch.setenv("RECOMP_APP_VERSION", "v1.2.3")
    _reset_cache()

    try:
        assert get_app_version() == "1.2.3"
        assert user_agent("RecompReleaseManager") == "RecompReleaseManager/1.2.3"
    finally:
        _reset_cache()


def test_get_app_version_falls_back_to_version_file(monkeypatch) -> None:
    monkeypatch.delenv("RECOMP_APP_VERSION", raising=False)
    _reset_cache()

    version_file = resources.files("app").joinpath("VERSION")
    expected = version_file.read_text(encoding="utf-8").strip()
    try:
        assert expected
        assert get_app_version() == expected
    finally:
        _reset_cache()


def test_get_app_version_without_any_source(monkeypatch) -> None:
    monkeypatch.delenv("RECOMP_APP_VERSION", raising=False)
    monkeypatch.setattr(version, "_read_version_file", lambda: None)
    monkeypatch.setattr(version, "_version_from_git", lambda: None)
    _reset_cache()

    try:
        assert get_app_version() == "0.0.0-dev"
    finally:
        _reset_cache()
