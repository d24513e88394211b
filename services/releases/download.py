"""Streamed asset downloads with progress reporting and cancellation."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from services.releases import constants
from services.releases.models import (
    Asset,
    DownloadCancelled,
    DownloadFailed,
    PermissionDenied,
)


_LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a download."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def download_asset(
    asset: Asset,
    target: Path,
    *,
    user_agent: str = constants.DEFAULT_USER_AGENT,
    timeout: float = 60.0,
    progress: ProgressCallback | None = None,
    cancel_token: CancellationToken | None = None,
    chunk_size: int = constants.DOWNLOAD_CHUNK_SIZE,
) -> Path:
    """Stream ``asset`` into ``target`` and return ``target``.

    ``progress`` receives the received fraction of the declared content
    length.  A partially written file is removed whenever the download does
    not complete.
    """

    request = Request(asset.download_url, headers={"User-Agent": user_agent})
    _LOGGER.info("Downloading %s from %s", asset.file_name, asset.download_url)
    completed = False
    try:
        with urlopen(request, timeout=timeout) as response, target.open("wb") as destination:  # nosec - HTTPS or local file
            total = _content_length(response.headers.get("Content-Length"))
            received = 0
            while True:
                if cancel_token is not None and cancel_token.cancelled:
                    raise DownloadCancelled(f"Download of {asset.file_name} was cancelled")
                chunk = response.read(chunk_size)
                if not chunk:
                    break
                destination.write(chunk)
                received += len(chunk)
                if progress is not None and total:
                    progress(min(1.0, received / total))
        if total and received < total:
            raise DownloadFailed(
                f"Download of {asset.file_name} ended early ({received} of {total} bytes)"
            )
        completed = True
    except PermissionError as exc:
        raise PermissionDenied(f"Cannot write download to {target}: {exc}") from exc
    except HTTPError as exc:
        raise DownloadFailed(f"Download of {asset.file_name} failed with HTTP {exc.code}") from exc
    except (OSError, URLError, ValueError) as exc:
        raise DownloadFailed(f"Failed to download {asset.file_name}: {exc}") from exc
    finally:
        if not completed:
            target.unlink(missing_ok=True)

    if progress is not None:
        progress(1.0)
    _LOGGER.debug("Downloaded %s bytes to %s", received, target)
    return target


def _content_length(raw: str | None) -> int | None:
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


__all__ = ["CancellationToken", "ProgressCallback", "download_asset"]
