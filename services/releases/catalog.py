"""Catalog of titles the release manager knows how to install."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Sequence, Tuple

from services.releases.markers import read_last_played


_LOGGER = logging.getLogger(__name__)

CATALOG_SECTIONS = ("standard", "experimental", "custom")


@dataclass(frozen=True)
class TitleDefinition:
    """One installable title and the repository publishing its builds."""

    name: str
    repository: str
    folder_name: str
    experimental: bool = False
    custom: bool = False


def _definition_from_payload(raw: object, section: str) -> TitleDefinition | None:
    if not isinstance(raw, Mapping):
        return None
    name = str(raw.get("name") or "").strip()
    repository = str(raw.get("repository") or "").strip().strip("/")
    if not name or not repository or repository.count("/") != 1:
        return None
    folder_name = str(raw.get("folderName") or raw.get("folder_name") or "").strip()
    if not folder_name:
        folder_name = repository.split("/", 1)[1]
    if Path(folder_name).name != folder_name or folder_name in (".", ".."):
        _LOGGER.warning("Ignoring %s: folder name %r is not a plain directory name", name, folder_name)
        return None
    return TitleDefinition(
        name=name,
        repository=repository,
        folder_name=folder_name,
        experimental=section == "experimental",
        custom=section == "custom",
    )


def parse_title_catalog(payload: Mapping[str, object]) -> Tuple[TitleDefinition, ...]:
    titles: list[TitleDefinition] = []
    seen: set[str] = set()
    for section in CATALOG_SECTIONS:
        entries = payload.get(section) or []
        if not isinstance(entries, Sequence) or isinstance(entries, (str, bytes)):
            _LOGGER.warning("Catalog section %s is not a list; ignoring it", section)
            continue
        for raw in entries:
            definition = _definition_from_payload(raw, section)
            if definition is None:
                _LOGGER.debug("Skipping invalid catalog entry in %s: %r", section, raw)
                continue
            if definition.folder_name in seen:
                _LOGGER.warning("Skipping %s: folder %s is already used", definition.name, definition.folder_name)
                continue
            seen.add(definition.folder_name)
            titles.append(definition)
    return tuple(titles)


def load_title_catalog(path: Path) -> Tuple[TitleDefinition, ...]:
    """Read ``standard``/``experimental``/``custom`` title lists from ``path``.

    A missing or unreadable file yields an empty catalog.
    """

    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        _LOGGER.info("No title catalog at %s", path)
        return ()
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        _LOGGER.warning("Ignoring unreadable title catalog %s: %s", path, exc)
        return ()
    if not isinstance(payload, Mapping):
        _LOGGER.warning("Ignoring malformed title catalog %s", path)
        return ()
    titles = parse_title_catalog(payload)
    _LOGGER.info("Loaded %s titles from %s", len(titles), path)
    return titles


def most_recently_played(
    titles: Iterable[TitleDefinition], games_root: Path
) -> TitleDefinition | None:
    """Return the installed title with the newest ``LastPlayed.txt`` stamp."""

    latest = None
    latest_title: TitleDefinition | None = None
    for title in titles:
        played = read_last_played(Path(games_root) / title.folder_name)
        if played is None:
            continue
        if latest is None or played > latest:
            latest = played
            latest_title = title
    return latest_title


__all__ = [
    "CATALOG_SECTIONS",
    "TitleDefinition",
    "load_title_catalog",
    "most_recently_played",
    "parse_title_catalog",
]
