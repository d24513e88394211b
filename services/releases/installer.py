"""Download, unpack and commit a release asset into an install directory."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from enum import Enum
from pathlib import Path
from typing import Callable

from services.releases import constants
from services.releases.archive import extract_tar_archive, extract_zip
from services.releases.download import CancellationToken, ProgressCallback, download_asset
from services.releases.flattening import ensure_executable_at_root
from services.releases.hashing import verify_sha256
from services.releases.markers import (
    ensure_portable_marker,
    mark_executable,
    remove_path_with_retry,
    write_installed_version,
)
from services.releases.models import (
    Asset,
    DownloadCancelled,
    ExtractionFailed,
    HostOS,
    PermissionDenied,
    PlatformDescriptor,
    ReleaseManagerError,
    UnsupportedArchiveFormat,
)


_LOGGER = logging.getLogger(__name__)


class ArchiveKind(str, Enum):
    BARE = "bare"
    ZIP = "zip"
    TAR = "tar"


def classify_asset(file_name: str) -> ArchiveKind:
    """Return the unpacking strategy for ``file_name``."""

    name = file_name.lower()
    if name.endswith(constants.TAR_SUFFIXES):
        return ArchiveKind.TAR
    if name.endswith(constants.ZIP_SUFFIXES):
        return ArchiveKind.ZIP
    if name.endswith(constants.BARE_EXECUTABLE_SUFFIXES) or not Path(name).suffix:
        return ArchiveKind.BARE
    raise UnsupportedArchiveFormat(f"Don't know how to install {file_name}")


def _scaled(progress: ProgressCallback | None, start: float, end: float) -> ProgressCallback | None:
    if progress is None:
        return None

    def report(fraction: float) -> None:
        progress(start + (end - start) * max(0.0, min(1.0, fraction)))

    return report


class ArchiveInstaller:
    """Install release assets for one target platform.

    Caller-visible progress is split into pre-flight (0-10 %), download
    (10-90 %) and normalisation (90-100 %).  The version marker is written
    into the staged tree last, and the staged tree replaces the install in
    a single rename.
    """

    def __init__(
        self,
        platform: PlatformDescriptor,
        *,
        user_agent: str = constants.DEFAULT_USER_AGENT,
        timeout: float = 60.0,
        temp_root: Path | None = None,
    ) -> None:
        self._platform = platform
        self._user_agent = user_agent
        self._timeout = timeout
        self._temp_root = temp_root

    @property
    def platform(self) -> PlatformDescriptor:
        return self._platform

    def install(
        self,
        asset: Asset,
        destination: Path,
        version: str,
        *,
        progress: ProgressCallback | None = None,
        on_extract: Callable[[], None] | None = None,
        cancel_token: CancellationToken | None = None,
        project_hint: str | None = None,
    ) -> Path:
        destination = Path(destination)
        kind = classify_asset(asset.file_name)
        if progress:
            progress(0.0)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            work_dir = Path(tempfile.mkdtemp(prefix="recomp-download-", dir=self._temp_root))
        except PermissionError as exc:
            raise PermissionDenied(f"Cannot prepare {destination}: {exc}") from exc
        except OSError as exc:
            raise ExtractionFailed(f"Cannot prepare {destination}: {exc}") from exc

        staging: Path | None = None
        try:
            if progress:
                progress(constants.PROGRESS_PREFLIGHT_END)
            download_path = download_asset(
                asset,
                work_dir / asset.file_name,
                user_agent=self._user_agent,
                timeout=self._timeout,
                progress=_scaled(
                    progress, constants.PROGRESS_PREFLIGHT_END, constants.PROGRESS_DOWNLOAD_END
                ),
                cancel_token=cancel_token,
            )
            if asset.sha256:
                verify_sha256(download_path, asset.sha256)
            if cancel_token is not None and cancel_token.cancelled:
                raise DownloadCancelled(f"Installation of {asset.file_name} was cancelled")
            if progress:
                progress(constants.PROGRESS_DOWNLOAD_END)
            if on_extract is not None:
                on_extract()

            staging = Path(
                tempfile.mkdtemp(
                    prefix=f".{destination.name}.", suffix=".staging", dir=destination.parent
                )
            )
            self._unpack(kind, download_path, staging, work_dir)
            result = ensure_executable_at_root(staging, self._platform, project_hint)
            if result.changed:
                _LOGGER.info("Normalised layout of %s (%s entries lifted)", asset.file_name, len(result.moved))
            if progress:
                progress(0.95)
            self._commit(staging, destination, version)
            staging = None
        except ReleaseManagerError:
            raise
        except PermissionError as exc:
            raise PermissionDenied(f"Permission denied while installing {asset.file_name}: {exc}") from exc
        except OSError as exc:
            raise ExtractionFailed(f"Failed to install {asset.file_name}: {exc}") from exc
        finally:
            remove_path_with_retry(work_dir)
            if staging is not None and staging.exists():
                remove_path_with_retry(staging)

        if progress:
            progress(1.0)
        _LOGGER.info("Installed %s %s into %s", asset.file_name, version, destination)
        return destination

    def _unpack(self, kind: ArchiveKind, download_path: Path, staging: Path, work_dir: Path) -> None:
        if kind is ArchiveKind.BARE:
            # The download itself becomes the install and must survive cleanup.
            target = staging / download_path.name
            shutil.move(str(download_path), str(target))
            mark_executable(target)
            _LOGGER.debug("Installed bare executable %s", target)
            return
        if kind is ArchiveKind.TAR:
            extract_tar_archive(download_path, staging)
            return
        if self._platform.os is HostOS.MACOS or self._platform.os.is_linux:
            scratch = work_dir / "scratch"
            extract_zip(download_path, scratch)
            self._promote_scratch(scratch, staging)
            return
        extract_zip(download_path, staging)

    def _promote_scratch(self, scratch: Path, staging: Path) -> None:
        """Move a scratch extraction into ``staging``, unwrapping nested payloads."""

        if self._platform.os is HostOS.MACOS:
            bundles = sorted(
                (path for path in scratch.rglob("*.app") if path.is_dir()),
                key=lambda path: len(path.parts),
            )
            if bundles:
                bundle = bundles[0]
                shutil.move(str(bundle), str(staging / bundle.name))
                _LOGGER.info("Found application bundle %s inside the zip", bundle.name)
                return

        embedded = sorted(
            path
            for path in scratch.rglob("*")
            if path.is_file() and path.name.lower().endswith(constants.TAR_SUFFIXES)
        )
        if len(embedded) == 1:
            _LOGGER.info("Unpacking embedded archive %s", embedded[0].name)
            extract_tar_archive(embedded[0], staging)
            return

        for child in scratch.iterdir():
            shutil.move(str(child), str(staging / child.name))

    def _commit(self, staging: Path, destination: Path, version: str) -> None:
        """Swap ``staging`` in for ``destination``.

        The previous install is renamed aside first and restored when the
        swap fails; deleting it afterwards is best-effort.
        """

        backup: Path | None = None
        if destination.exists():
            for marker in constants.USER_MARKERS:
                previous = destination / marker
                if previous.is_file() and not (staging / marker).exists():
                    shutil.copy2(previous, staging / marker)
            backup = _unused_sibling(destination, "previous")
            os.replace(destination, backup)
        ensure_portable_marker(staging)
        write_installed_version(staging, version)
        try:
            os.replace(staging, destination)
        except OSError:
            if backup is not None:
                os.replace(backup, destination)
                _LOGGER.warning("Restored previous install of %s", destination.name)
            raise
        if backup is not None:
            remove_path_with_retry(backup)


def _unused_sibling(path: Path, label: str) -> Path:
    counter = 0
    while True:
        candidate = path.with_name(f".{path.name}.{label}-{counter}")
        if not candidate.exists():
            return candidate
        counter += 1


__all__ = ["ArchiveInstaller", "ArchiveKind", "classify_asset"]
