"""SHA-256 checks for downloaded release assets."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from services.releases import constants
from services.releases.models import DownloadFailed


_LOGGER = logging.getLogger(__name__)


def calculate_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as source:
        while True:
            block = source.read(constants.DOWNLOAD_CHUNK_SIZE)
            if not block:
                break
            digest.update(block)
    return digest.hexdigest()


def verify_sha256(path: Path, expected: str) -> None:
    """Raise :class:`DownloadFailed` unless ``path`` hashes to ``expected``."""

    wanted = expected.strip().lower()
    actual = calculate_sha256(path)
    if actual != wanted:
        raise DownloadFailed(
            f"Checksum mismatch for {path.name}: release lists {wanted}, download is {actual}"
        )
    _LOGGER.debug("Verified SHA-256 of %s", path.name)


__all__ = ["calculate_sha256", "verify_sha256"]
