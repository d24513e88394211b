from __future__ import annotations

import io
import os
import tarfile
from zipfile import ZipFile

import pytest

from services.releases import archive
from services.releases.archive import (
    TAR_BLOCK_SIZE,
    extract_tar_archive,
    extract_tar_stream,
    extract_zip,
    parse_tar_header,
)
from services.releases.models import ExtractionFailed

from tests.unit.release_test_utils import build_tar, build_zip


def _tar_bytes(entries: dict[str, bytes], tar_format: int = tarfile.USTAR_FORMAT) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w", format=tar_format) as handle:
        for name, content in entries.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            handle.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def test_tar_reader_trims_data_to_declared_size(tmp_path) -> None:
    entries = {
        "empty.bin": b"",
        "exact.bin": b"e" * TAR_BLOCK_SIZE,
        "spill.bin": b"s" * (TAR_BLOCK_SIZE + 1),
        "small.txt": b"hello",
    }

    written = extract_tar_stream(io.BytesIO(_tar_bytes(entries)), tmp_path / "out")

    assert written == 4
    for name, content in entries.items():
        assert (tmp_path / "out" / name).read_bytes() == content


@pytest.mark.parametrize("tar_format", [tarfile.USTAR_FORMAT, tarfile.GNU_FORMAT, tarfile.PAX_FORMAT])
def test_tar_reader_handles_long_names(tmp_path, tar_format) -> None:
    name = "a" * 60 + "/" + "b" * 60 + "/game.x86_64"

    extract_tar_stream(io.BytesIO(_tar_bytes({name: b"binary"}, tar_format)), tmp_path)

    assert (tmp_path / name).read_bytes() == b"binary"


def test_tar_header_parsing_reads_type_and_size() -> None:
    raw = _tar_bytes({"dir/file.txt": b"12345"})
    header = parse_tar_header(raw[:TAR_BLOCK_SIZE])

    assert header is not None
    assert header.name == "dir/file.txt"
    assert header.size == 5
    assert header.is_file
    assert header.padded_size == TAR_BLOCK_SIZE
    assert parse_tar_header(b"\0" * TAR_BLOCK_SIZE) is None


def test_tar_reader_rejects_path_traversal(tmp_path) -> None:
    payload = _tar_bytes({"../escape.txt": b"nope"})
    with pytest.raises(ExtractionFailed):
        extract_tar_stream(io.BytesIO(payload), tmp_path / "out")
    assert not (tmp_path / "escape.txt").exists()


def test_tar_reader_detects_truncated_archive(tmp_path) -> None:
    payload = _tar_bytes({"big.bin": b"x" * 4096})
    with pytest.raises(ExtractionFailed):
        extract_tar_stream(io.BytesIO(payload[: TAR_BLOCK_SIZE + 1024]), tmp_path)


def test_tar_reader_accepts_stream_without_trailer(tmp_path) -> None:
    payload = _tar_bytes({"game.x86_64": b"hello"})[: 2 * TAR_BLOCK_SIZE]

    written = extract_tar_stream(io.BytesIO(payload), tmp_path / "out")

    assert written == 1
    assert (tmp_path / "out" / "game.x86_64").read_bytes() == b"hello"


def test_tar_reader_rejects_partial_header_block(tmp_path) -> None:
    payload = _tar_bytes({"game.x86_64": b"hello"})[: 2 * TAR_BLOCK_SIZE + 100]
    with pytest.raises(ExtractionFailed):
        extract_tar_stream(io.BytesIO(payload), tmp_path / "out")


def test_tar_reader_creates_directories_and_keeps_exec_bits(tmp_path) -> None:
    source = build_tar(
        tmp_path / "Game.tar.gz",
        {"Game/game.x86_64": b"binary", "Game/assets/data.pak": b"data"},
        executable=("Game/game.x86_64",),
    )

    extract_tar_archive(source, tmp_path / "out", use_system_tar=False)

    assert (tmp_path / "out" / "Game" / "assets").is_dir()
    assert (tmp_path / "out" / "Game" / "assets" / "data.pak").read_bytes() == b"data"
    if os.name != "nt":
        assert os.access(tmp_path / "out" / "Game" / "game.x86_64", os.X_OK)


@pytest.mark.parametrize(("suffix", "mode"), [(".tar.xz", "w:xz"), (".tgz", "w:gz")])
def test_builtin_reader_handles_compression_variants(tmp_path, suffix, mode) -> None:
    source = build_tar(tmp_path / f"Game{suffix}", {"game.bin": b"payload"}, mode=mode)

    extract_tar_archive(source, tmp_path / "out", use_system_tar=False)

    assert (tmp_path / "out" / "game.bin").read_bytes() == b"payload"


def test_system_tar_failure_falls_back_to_builtin_reader(tmp_path, monkeypatch) -> None:
    source = build_tar(tmp_path / "Game.tar.gz", {"game.bin": b"payload"})
    monkeypatch.setattr(archive.shutil, "which", lambda name: "/nonexistent/tar")

    extract_tar_archive(source, tmp_path / "out", use_system_tar=True)

    assert (tmp_path / "out" / "game.bin").read_bytes() == b"payload"


def test_corrupt_tar_gz_raises_extraction_failed(tmp_path) -> None:
    broken = tmp_path / "broken.tar.gz"
    broken.write_bytes(b"definitely not gzip")
    with pytest.raises(ExtractionFailed):
        extract_tar_archive(broken, tmp_path / "out", use_system_tar=False)


def test_zip_extraction_restores_exec_bits(tmp_path) -> None:
    source = build_zip(
        tmp_path / "Game.zip",
        {"Game/game.x86_64": b"binary", "Game/readme.txt": b"text"},
        executable=("Game/game.x86_64",),
    )

    extract_zip(source, tmp_path / "out")

    assert (tmp_path / "out" / "Game" / "readme.txt").read_bytes() == b"text"
    if os.name != "nt":
        assert os.access(tmp_path / "out" / "Game" / "game.x86_64", os.X_OK)
        assert not os.access(tmp_path / "out" / "Game" / "readme.txt", os.X_OK)


def test_zip_extraction_rejects_path_traversal(tmp_path) -> None:
    source = tmp_path / "evil.zip"
    with ZipFile(source, "w") as handle:
        handle.writestr("../evil.txt", b"nope")

    with pytest.raises(ExtractionFailed):
        extract_zip(source, tmp_path / "out")
    assert not (tmp_path / "evil.txt").exists()


def test_zip_extraction_enforces_entry_limit(tmp_path, monkeypatch) -> None:
    source = build_zip(tmp_path / "many.zip", {f"file{index}.txt": b"x" for index in range(5)})
    monkeypatch.setattr(archive.constants, "MAX_ARCHIVE_ENTRIES", 3)

    with pytest.raises(ExtractionFailed):
        extract_zip(source, tmp_path / "out")


def test_invalid_zip_raises_extraction_failed(tmp_path) -> None:
    broken = tmp_path / "broken.zip"
    broken.write_bytes(b"PK not really")
    with pytest.raises(ExtractionFailed):
        extract_zip(broken, tmp_path / "out")
