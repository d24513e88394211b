"""Archive extraction helpers for installed titles."""

from __future__ import annotations

import gzip
import logging
import lzma
import os
import shutil
import stat
import subprocess
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterator

from services.releases import constants
from services.releases.models import ExtractionFailed


_LOGGER = logging.getLogger(__name__)

TAR_BLOCK_SIZE = 512

_REGULAR_TYPES = (b"0", b"\0", b"7")
_DIRECTORY_TYPE = b"5"
_GNU_LONG_NAME_TYPE = b"L"
_PAX_HEADER_TYPE = b"x"


def _safe_destination(root: Path, name: str) -> Path:
    """Return ``root / name`` after rejecting absolute and escaping paths."""

    normalised = name.replace("\\", "/")
    if normalised.startswith("/") or PurePosixPath(normalised).is_absolute():
        raise ExtractionFailed(f"Archive contained an absolute path entry: {name}")
    if len(normalised) > 1 and normalised[1] == ":":
        raise ExtractionFailed(f"Archive contained a drive-qualified entry: {name}")
    destination = (root / normalised).resolve()
    try:
        destination.relative_to(root)
    except ValueError:
        raise ExtractionFailed(f"Archive contained an unsafe relative path: {name}") from None
    return destination


class _ExtractionBudget:
    """Track entry count and expanded size against the archive limits."""

    def __init__(self) -> None:
        self.entries = 0
        self.total_bytes = 0

    def add_entry(self) -> None:
        self.entries += 1
        if self.entries > constants.MAX_ARCHIVE_ENTRIES:
            _LOGGER.error(
                "Archive entry count %s exceeded limit %s",
                self.entries,
                constants.MAX_ARCHIVE_ENTRIES,
            )
            raise ExtractionFailed("Archive contained too many entries")

    def add_file(self, name: str, size: int) -> None:
        if size > constants.MAX_ARCHIVE_FILE_SIZE:
            _LOGGER.error(
                "Archive member %s exceeded file size limit (%s > %s)",
                name,
                size,
                constants.MAX_ARCHIVE_FILE_SIZE,
            )
            raise ExtractionFailed("Archive contained an oversized file")
        self.total_bytes += size
        if self.total_bytes > constants.MAX_ARCHIVE_TOTAL_BYTES:
            _LOGGER.error(
                "Archive expanded to %s bytes which exceeds limit %s",
                self.total_bytes,
                constants.MAX_ARCHIVE_TOTAL_BYTES,
            )
            raise ExtractionFailed("Archive expanded beyond safe limits")


def _apply_unix_mode(path: Path, mode: int) -> None:
    if os.name == "nt" or not mode & 0o111:
        return
    try:
        current = path.stat().st_mode
        path.chmod(current | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    except OSError as exc:
        _LOGGER.debug("Unable to restore execute bits on %s: %s", path, exc)


# -- zip ----------------------------------------------------------------------


def extract_zip_safely(archive: zipfile.ZipFile, target_dir: Path) -> None:
    root = target_dir.resolve()
    budget = _ExtractionBudget()
    for member in archive.infolist():
        name = member.filename
        if not name:
            continue
        budget.add_entry()
        destination = _safe_destination(root, name)
        if member.is_dir():
            destination.mkdir(parents=True, exist_ok=True)
            continue
        if member.compress_size == 0 and member.file_size > 0:
            _LOGGER.error("Archive member %s reported zero compression size", name)
            raise ExtractionFailed("Archive contained a suspiciously compressed file")
        if (
            member.compress_size > 0
            and member.file_size > member.compress_size * constants.MAX_COMPRESSION_RATIO
        ):
            _LOGGER.error(
                "Archive member %s exceeded compression ratio limit (%s > %s)",
                name,
                member.file_size,
                member.compress_size * constants.MAX_COMPRESSION_RATIO,
            )
            raise ExtractionFailed("Archive exceeded safe compression ratio")
        budget.add_file(name, member.file_size)
        destination.parent.mkdir(parents=True, exist_ok=True)
        with archive.open(member) as source, destination.open("wb") as target:
            shutil.copyfileobj(source, target)
        # Zips built on Unix keep the permission bits in the high word.
        _apply_unix_mode(destination, (member.external_attr >> 16) & 0o777)
        _LOGGER.debug("Extracted archive member %s to %s", name, destination)

    _LOGGER.info(
        "Extracted %s entries totalling %s bytes", budget.entries, budget.total_bytes
    )


def extract_zip(archive_path: Path, target_dir: Path) -> Path:
    _LOGGER.info("Extracting zip archive %s", archive_path)
    target_dir.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(archive_path) as archive:
            extract_zip_safely(archive, target_dir)
    except PermissionError:
        raise
    except (OSError, zipfile.BadZipFile, EOFError) as exc:
        raise ExtractionFailed(f"Failed to extract {archive_path.name}: {exc}") from exc
    return target_dir


# -- tar ----------------------------------------------------------------------


@dataclass(frozen=True)
class TarHeader:
    """The fields of a tar header block the installer relies on."""

    name: str
    size: int
    type_flag: bytes
    mode: int

    @property
    def is_directory(self) -> bool:
        return self.type_flag == _DIRECTORY_TYPE or (
            self.type_flag in _REGULAR_TYPES and self.name.endswith("/")
        )

    @property
    def is_file(self) -> bool:
        return self.type_flag in _REGULAR_TYPES and not self.name.endswith("/")

    @property
    def padded_size(self) -> int:
        return -(-self.size // TAR_BLOCK_SIZE) * TAR_BLOCK_SIZE


def _nul_terminated(field: bytes) -> str:
    return field.split(b"\0", 1)[0].decode("utf-8", errors="replace")


def _parse_number(field: bytes) -> int:
    """Decode an octal header number, or the GNU base-256 form for big files."""

    if field and field[0] & 0x80:
        value = field[0] & 0x7F
        for byte in field[1:]:
            value = (value << 8) | byte
        return value
    text = field.split(b"\0", 1)[0].strip(b" \0").decode("ascii", errors="replace")
    if not text:
        return 0
    try:
        return int(text, 8)
    except ValueError:
        raise ExtractionFailed(f"Corrupt tar header number {text!r}") from None


def parse_tar_header(block: bytes) -> TarHeader | None:
    """Decode one 512-byte header.

    Returns ``None`` at the end of the archive: a zero block, or no data at
    all for streams written without the trailer.
    """

    if not block:
        return None
    if len(block) != TAR_BLOCK_SIZE:
        raise ExtractionFailed("Tar archive ended inside a header block")
    if not block.strip(b"\0"):
        return None
    name = _nul_terminated(block[0:100])
    if block[257:262] == b"ustar":
        prefix = _nul_terminated(block[345:500])
        if prefix:
            name = f"{prefix}/{name}"
    type_flag = block[156:157] or b"\0"
    return TarHeader(
        name=name,
        size=_parse_number(block[124:136]),
        type_flag=type_flag,
        mode=_parse_number(block[100:108]),
    )


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    chunks: list[bytes] = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _copy_member(stream: BinaryIO, header: TarHeader, destination: BinaryIO | None) -> None:
    """Consume a member's padded data, writing only its declared bytes."""

    remaining_padded = header.padded_size
    remaining_data = header.size
    while remaining_padded > 0:
        chunk = _read_exact(stream, min(constants.DOWNLOAD_CHUNK_SIZE, remaining_padded))
        if not chunk:
            raise ExtractionFailed(f"Tar archive truncated inside {header.name}")
        remaining_padded -= len(chunk)
        if destination is not None and remaining_data > 0:
            payload = chunk[:remaining_data]
            destination.write(payload)
            remaining_data -= len(payload)


def _pax_path(data: bytes) -> str | None:
    for record in data.decode("utf-8", errors="replace").splitlines():
        _length, _sep, keyword_value = record.partition(" ")
        key, sep, value = keyword_value.partition("=")
        if sep and key == "path":
            return value
    return None


def iter_tar_members(stream: BinaryIO) -> Iterator[tuple[TarHeader, BinaryIO]]:
    """Yield each header together with the stream positioned at its data.

    The consumer must read the member's data (see :func:`_copy_member`)
    before advancing the iterator.  GNU long names and pax ``path`` records
    override the name of the following header.
    """

    pending_name: str | None = None
    while True:
        header = parse_tar_header(_read_exact(stream, TAR_BLOCK_SIZE))
        if header is None:
            return
        if header.type_flag in (_GNU_LONG_NAME_TYPE, _PAX_HEADER_TYPE):
            data = _read_exact(stream, header.padded_size)[: header.size]
            if header.type_flag == _GNU_LONG_NAME_TYPE:
                pending_name = _nul_terminated(data)
            else:
                pending_name = _pax_path(data) or pending_name
            continue
        if pending_name:
            header = TarHeader(pending_name, header.size, header.type_flag, header.mode)
            pending_name = None
        yield header, stream


def extract_tar_stream(stream: BinaryIO, target_dir: Path) -> int:
    """Unpack an uncompressed tar stream into ``target_dir``.

    Only regular files and directories are materialised; links and special
    entries are skipped along with their data.  Returns the number of files
    written.
    """

    target_dir.mkdir(parents=True, exist_ok=True)
    root = target_dir.resolve()
    budget = _ExtractionBudget()
    written = 0
    for header, source in iter_tar_members(stream):
        if not header.name or header.name in (".", "./"):
            _copy_member(source, header, None)
            continue
        budget.add_entry()
        destination = _safe_destination(root, header.name)
        if header.is_directory:
            destination.mkdir(parents=True, exist_ok=True)
            _copy_member(source, header, None)
            continue
        if not header.is_file:
            _LOGGER.debug(
                "Skipping tar entry %s with type %r", header.name, header.type_flag
            )
            _copy_member(source, header, None)
            continue
        budget.add_file(header.name, header.size)
        destination.parent.mkdir(parents=True, exist_ok=True)
        with destination.open("wb") as handle:
            _copy_member(source, header, handle)
        _apply_unix_mode(destination, header.mode)
        written += 1
    _LOGGER.info("Unpacked %s files totalling %s bytes", written, budget.total_bytes)
    return written


def open_decompressed(archive_path: Path) -> BinaryIO:
    name = archive_path.name.lower()
    if name.endswith(".tar.xz"):
        return lzma.open(archive_path, "rb")
    if name.endswith((".tar.gz", ".tgz")):
        return gzip.open(archive_path, "rb")
    raise ExtractionFailed(f"{archive_path.name} is not a compressed tar archive")


def _extract_with_system_tar(tar_command: str, archive_path: Path, target_dir: Path) -> bool:
    try:
        subprocess.run(  # nosec - fixed argument list
            [tar_command, "-xf", str(archive_path), "-C", str(target_dir)],
            check=True,
            capture_output=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        stderr = getattr(exc, "stderr", b"") or b""
        _LOGGER.warning(
            "System tar failed for %s (%s); using the built-in reader",
            archive_path.name,
            stderr.decode("utf-8", errors="replace").strip() or exc,
        )
        return False
    _LOGGER.info("Extracted %s with %s", archive_path.name, tar_command)
    return True


def extract_tar_archive(
    archive_path: Path, target_dir: Path, *, use_system_tar: bool | None = None
) -> Path:
    """Extract a ``.tar.gz``/``.tgz``/``.tar.xz`` archive into ``target_dir``.

    On Unix hosts with ``tar`` on ``PATH`` the system binary does the work;
    otherwise, or when it fails, the archive is decompressed in-process and
    walked by :func:`extract_tar_stream`.
    """

    target_dir.mkdir(parents=True, exist_ok=True)
    if use_system_tar is None:
        use_system_tar = os.name != "nt"
    tar_command = shutil.which("tar") if use_system_tar else None
    if tar_command and _extract_with_system_tar(tar_command, archive_path, target_dir):
        return target_dir

    for leftover in list(target_dir.iterdir()):
        if leftover.is_dir() and not leftover.is_symlink():
            shutil.rmtree(leftover, ignore_errors=True)
        else:
            leftover.unlink(missing_ok=True)

    _LOGGER.info("Unpacking %s with the built-in tar reader", archive_path.name)
    try:
        with open_decompressed(archive_path) as stream:
            extract_tar_stream(stream, target_dir)
    except ExtractionFailed:
        raise
    except PermissionError:
        raise
    except (OSError, EOFError, lzma.LZMAError) as exc:
        raise ExtractionFailed(f"Failed to unpack {archive_path.name}: {exc}") from exc
    return target_dir


__all__ = [
    "TAR_BLOCK_SIZE",
    "TarHeader",
    "extract_tar_archive",
    "extract_tar_stream",
    "extract_zip",
    "extract_zip_safely",
    "iter_tar_members",
    "open_decompressed",
    "parse_tar_header",
]
