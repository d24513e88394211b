from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_project_root_on_path() -> None:
    """Guarantee the repository root is discoverable for absolute imports."""

    root = Path(__file__).resolve().parent.parent
    root_str = str(root)
    if root_str not in sys.path:
        sys.path.insert(0, root_str)


_ensure_project_root_on_path()


_ISOLATED_ENV = (
    "RECOMP_GITHUB_TOKEN",
    "GITHUB_TOKEN",
    "RECOMP_GAMES_DIR",
    "RECOMP_CACHE_PATH",
    "RECOMP_PLATFORM",
    "RECOMP_LOCAL_RELEASES_DIR",
    "RECOMP_APP_VERSION",
)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory):
    """Keep tests away from real user data, credentials and log files."""

    for name in _ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("RECOMP_LOG_FILE", raising=False)
    monkeypatch.setenv("RECOMP_LOG_DIR", str(tmp_path_factory.mktemp("logs")))
    yield
