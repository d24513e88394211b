from __future__ import annotations

import io
import os
import plistlib

import pytest

from services.releases import constants, markers
from services.releases.download import CancellationToken
from services.releases.hashing import calculate_sha256
from services.releases.installer import ArchiveInstaller, ArchiveKind, classify_asset
from services.releases.models import (
    Asset,
    DownloadCancelled,
    DownloadFailed,
    PermissionDenied,
    UnsupportedArchiveFormat,
)

from tests.unit.release_test_utils import (
    LARGE_BINARY,
    LINUX_X64,
    MACOS,
    WINDOWS,
    build_tar,
    build_zip,
    file_asset,
)


def _installer(tmp_path, platform=LINUX_X64) -> ArchiveInstaller:
    temp_root = tmp_path / "scratch"
    temp_root.mkdir(exist_ok=True)
    return ArchiveInstaller(platform, temp_root=temp_root)


@pytest.mark.parametrize(
    ("name", "kind"),
    [
        ("Game-linux-x86_64.tar.gz", ArchiveKind.TAR),
        ("Game.tgz", ArchiveKind.TAR),
        ("Game-linux-arm64.tar.xz", ArchiveKind.TAR),
        ("Game-Windows.ZIP", ArchiveKind.ZIP),
        ("Game.x86_64", ArchiveKind.BARE),
        ("Game-x86_64.AppImage", ArchiveKind.BARE),
        ("Game.exe", ArchiveKind.BARE),
        ("Game", ArchiveKind.BARE),
    ],
)
def test_classify_asset(name, kind) -> None:
    assert classify_asset(name) is kind


def test_unsupported_format_is_rejected_before_download(tmp_path) -> None:
    asset = Asset("Game-macOS.dmg", "file:///nonexistent/Game-macOS.dmg")
    with pytest.raises(UnsupportedArchiveFormat):
        _installer(tmp_path, MACOS).install(asset, tmp_path / "games" / "Game", "v1.0.0")
    assert not (tmp_path / "games" / "Game").exists()


def test_bare_executable_becomes_the_install(tmp_path) -> None:
    source = tmp_path / "source" / "Game-linux.x86_64"
    source.parent.mkdir()
    source.write_bytes(LARGE_BINARY)
    destination = tmp_path / "games" / "Game"

    _installer(tmp_path).install(file_asset(source), destination, "v1.0.0")

    binary = destination / "Game-linux.x86_64"
    assert binary.read_bytes() == LARGE_BINARY
    assert (destination / constants.VERSION_MARKER).read_text(encoding="utf-8") == "v1.0.0"
    assert (destination / constants.PORTABLE_MARKER).exists()
    if os.name != "nt":
        assert os.access(binary, os.X_OK)


def test_nested_zip_is_flattened_on_windows(tmp_path) -> None:
    source = build_zip(
        tmp_path / "source" / "Game-Windows.zip",
        {"Game-1.0/Game.exe": b"MZ program", "Game-1.0/data/level.pak": b"level data"},
    )
    destination = tmp_path / "games" / "Game"

    _installer(tmp_path, WINDOWS).install(file_asset(source), destination, "v1.0.0")

    assert (destination / "Game.exe").read_bytes() == b"MZ program"
    assert (destination / "data" / "level.pak").is_file()
    assert not (destination / "Game-1.0").exists()


def test_tarball_is_installed_with_exec_bits(tmp_path) -> None:
    source = build_tar(
        tmp_path / "source" / "Game-linux-x86_64.tar.gz",
        {"Game/Game.x86_64": b"binary", "Game/assets/data.pak": b"data"},
        executable=("Game/Game.x86_64",),
    )
    destination = tmp_path / "games" / "Game"

    _installer(tmp_path).install(file_asset(source), destination, "v2.0.0")

    assert (destination / "Game.x86_64").read_bytes() == b"binary"
    assert (destination / "assets" / "data.pak").read_bytes() == b"data"
    if os.name != "nt":
        assert os.access(destination / "Game.x86_64", os.X_OK)


def test_zip_wrapping_a_tarball_is_unwrapped_on_linux(tmp_path) -> None:
    inner = build_tar(
        tmp_path / "inner" / "Game-linux-x86_64.tar.gz",
        {"Game.x86_64": b"binary"},
        executable=("Game.x86_64",),
    )
    source = build_zip(
        tmp_path / "source" / "Game-linux-x86_64.zip",
        {"Game-linux-x86_64.tar.gz": inner.read_bytes()},
    )
    destination = tmp_path / "games" / "Game"

    _installer(tmp_path).install(file_asset(source), destination, "v1.0.0")

    assert (destination / "Game.x86_64").read_bytes() == b"binary"
    assert not (destination / "Game-linux-x86_64.tar.gz").exists()


def test_zip_with_nested_bundle_on_macos(tmp_path) -> None:
    buffer = io.BytesIO()
    plistlib.dump({"CFBundleExecutable": "Game"}, buffer)
    source = build_zip(
        tmp_path / "source" / "Game-macOS.zip",
        {
            "dist/Game.app/Contents/MacOS/Game": LARGE_BINARY,
            "dist/Game.app/Contents/Info.plist": buffer.getvalue(),
            "README.txt": b"read me",
        },
        executable=("dist/Game.app/Contents/MacOS/Game",),
    )
    destination = tmp_path / "games" / "Game"

    _installer(tmp_path, MACOS).install(file_asset(source), destination, "v1.0.0")

    assert (destination / "Game.app" / "Contents" / "MacOS" / "Game").is_file()
    assert not (destination / "dist").exists()


def test_progress_is_monotonic_and_spans_all_phases(tmp_path) -> None:
    source = build_tar(tmp_path / "source" / "Game-linux-x86_64.tar.gz", {"Game.x86_64": LARGE_BINARY})
    reported: list[float] = []
    extracting: list[bool] = []

    _installer(tmp_path).install(
        file_asset(source),
        tmp_path / "games" / "Game",
        "v1.0.0",
        progress=reported.append,
        on_extract=lambda: extracting.append(True),
    )

    assert reported[0] == 0.0
    assert reported[-1] == 1.0
    assert reported == sorted(reported)
    assert constants.PROGRESS_PREFLIGHT_END in reported
    assert constants.PROGRESS_DOWNLOAD_END in reported
    download_phase = [
        value
        for value in reported
        if constants.PROGRESS_PREFLIGHT_END < value < constants.PROGRESS_DOWNLOAD_END
    ]
    assert download_phase
    assert extracting == [True]


def test_update_keeps_user_markers_and_drops_old_files(tmp_path) -> None:
    destination = tmp_path / "games" / "Game"
    destination.mkdir(parents=True)
    (destination / constants.VERSION_MARKER).write_text("v1.0.0", encoding="utf-8")
    (destination / constants.PORTABLE_DISABLED_MARKER).write_text("", encoding="utf-8")
    (destination / constants.LAST_PLAYED_MARKER).write_text("2024-01-01 10:00:00", encoding="utf-8")
    (destination / "stale.bin").write_bytes(b"old")
    source = build_tar(tmp_path / "source" / "Game-linux-x86_64.tar.gz", {"Game.x86_64": b"new"})

    _installer(tmp_path).install(file_asset(source), destination, "v2.0.0")

    assert (destination / constants.VERSION_MARKER).read_text(encoding="utf-8") == "v2.0.0"
    assert (destination / constants.PORTABLE_DISABLED_MARKER).exists()
    assert not (destination / constants.PORTABLE_MARKER).exists()
    assert (destination / constants.LAST_PLAYED_MARKER).read_text(encoding="utf-8") == "2024-01-01 10:00:00"
    assert not (destination / "stale.bin").exists()


def test_checksum_mismatch_leaves_previous_install_untouched(tmp_path) -> None:
    destination = tmp_path / "games" / "Game"
    destination.mkdir(parents=True)
    (destination / constants.VERSION_MARKER).write_text("v1.0.0", encoding="utf-8")
    source = build_tar(tmp_path / "source" / "Game-linux-x86_64.tar.gz", {"Game.x86_64": b"new"})
    asset = Asset(source.name, source.resolve().as_uri(), sha256="0" * 64)

    with pytest.raises(DownloadFailed):
        _installer(tmp_path).install(asset, destination, "v2.0.0")

    assert (destination / constants.VERSION_MARKER).read_text(encoding="utf-8") == "v1.0.0"
    assert sorted(path.name for path in destination.parent.iterdir()) == ["Game"]


def test_matching_checksum_is_accepted(tmp_path) -> None:
    source = build_tar(tmp_path / "source" / "Game-linux-x86_64.tar.gz", {"Game.x86_64": b"new"})
    asset = Asset(source.name, source.resolve().as_uri(), sha256=calculate_sha256(source).upper())

    _installer(tmp_path).install(asset, tmp_path / "games" / "Game", "v1.0.0")

    assert (tmp_path / "games" / "Game" / "Game.x86_64").is_file()


def test_cancelled_install_commits_nothing(tmp_path) -> None:
    source = build_tar(tmp_path / "source" / "Game-linux-x86_64.tar.gz", {"Game.x86_64": LARGE_BINARY})
    token = CancellationToken()
    token.cancel()

    with pytest.raises(DownloadCancelled):
        _installer(tmp_path).install(
            file_asset(source), tmp_path / "games" / "Game", "v1.0.0", cancel_token=token
        )

    assert not (tmp_path / "games" / "Game").exists()


def test_scratch_space_is_cleaned_up(tmp_path) -> None:
    source = build_zip(tmp_path / "source" / "Game-Windows.zip", {"Game.exe": b"MZ program"})
    installer = _installer(tmp_path, WINDOWS)

    installer.install(file_asset(source), tmp_path / "games" / "Game", "v1.0.0")

    assert list((tmp_path / "scratch").iterdir()) == []
    assert sorted(path.name for path in (tmp_path / "games").iterdir()) == ["Game"]


def _installed_v1(tmp_path):
    destination = tmp_path / "games" / "Game"
    destination.mkdir(parents=True)
    (destination / constants.VERSION_MARKER).write_text("v1.0.0", encoding="utf-8")
    (destination / "data").mkdir()
    (destination / "data" / "x.pak").write_bytes(b"old data")
    return destination


def test_locked_previous_install_does_not_fail_the_update(tmp_path, monkeypatch) -> None:
    destination = _installed_v1(tmp_path)
    source = build_tar(tmp_path / "source" / "Game-linux-x86_64.tar.gz", {"Game.x86_64": b"new"})
    real_rmtree = markers.shutil.rmtree

    def locked_rmtree(path, *args, **kwargs):
        if ".previous-" in os.fspath(path):
            raise PermissionError(13, "file is locked", os.fspath(path))
        return real_rmtree(path, *args, **kwargs)

    monkeypatch.setattr(markers.shutil, "rmtree", locked_rmtree)
    monkeypatch.setattr(markers.time, "sleep", lambda _seconds: None)

    _installer(tmp_path).install(file_asset(source), destination, "v2.0.0")

    assert (destination / constants.VERSION_MARKER).read_text(encoding="utf-8") == "v2.0.0"
    assert (destination / "Game.x86_64").read_bytes() == b"new"
    assert not (destination / "data").exists()


def test_failed_swap_restores_previous_install(tmp_path, monkeypatch) -> None:
    destination = _installed_v1(tmp_path)
    source = build_tar(tmp_path / "source" / "Game-linux-x86_64.tar.gz", {"Game.x86_64": b"new"})
    real_replace = os.replace

    def refusing_replace(src, dst, *args, **kwargs):
        if os.fspath(src).endswith(".staging"):
            raise PermissionError(13, "destination is busy", os.fspath(dst))
        return real_replace(src, dst, *args, **kwargs)

    monkeypatch.setattr(os, "replace", refusing_replace)

    with pytest.raises(PermissionDenied):
        _installer(tmp_path).install(file_asset(source), destination, "v2.0.0")

    assert (destination / constants.VERSION_MARKER).read_text(encoding="utf-8") == "v1.0.0"
    assert (destination / "data" / "x.pak").read_bytes() == b"old data"
    assert sorted(path.name for path in destination.parent.iterdir()) == ["Game"]
