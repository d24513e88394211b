"""Detect a runtime able to launch Windows builds on Linux hosts."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Callable, Iterable, Sequence

from services.releases import constants
from services.releases.models import CompatibilityFlavor, CompatibilityLayer


_LOGGER = logging.getLogger(__name__)

_COMMAND_FLAVORS = {
    "umu-run": CompatibilityFlavor.UMU,
    "wine": CompatibilityFlavor.WINE,
    "wine64": CompatibilityFlavor.WINE,
}


def default_steam_roots() -> list[Path]:
    return [Path(os.path.expanduser(candidate)) for candidate in constants.STEAM_ROOT_CANDIDATES]


def _proton_runtimes(steam_root: Path) -> Iterable[Path]:
    for container in (steam_root / "steamapps" / "common", steam_root / "compatibilitytools.d"):
        try:
            entries = list(container.iterdir())
        except OSError:
            continue
        for entry in entries:
            if entry.is_dir() and "proton" in entry.name.lower() and (entry / "proton").is_file():
                yield entry


def find_proton(steam_roots: Sequence[Path] | None = None) -> CompatibilityLayer | None:
    """Return the newest Proton build found under the known Steam roots.

    Runtime folders are versioned by name, so the lexicographically last
    folder wins.
    """

    found: list[tuple[Path, Path]] = []
    seen: set[Path] = set()
    for root in steam_roots if steam_roots is not None else default_steam_roots():
        if not root.is_dir():
            continue
        try:
            resolved_root = root.resolve()
        except OSError:
            continue
        if resolved_root in seen:
            continue
        seen.add(resolved_root)
        for runtime in _proton_runtimes(root):
            found.append((runtime, root))
    if not found:
        return None
    runtime, root = max(found, key=lambda item: item[0].name)
    _LOGGER.debug("Selected Proton runtime %s from %s candidates", runtime, len(found))
    return CompatibilityLayer(CompatibilityFlavor.PROTON, runtime / "proton", steam_root=root)


def detect_compatibility_layer(
    *,
    steam_roots: Sequence[Path] | None = None,
    which: Callable[[str], str | None] = shutil.which,
) -> CompatibilityLayer | None:
    """Probe for ``umu-run``/``wine``/``wine64`` and then for Steam's Proton."""

    for command in constants.COMPAT_LAYER_COMMANDS:
        location = which(command)
        if location:
            _LOGGER.info("Using %s at %s as compatibility layer", command, location)
            return CompatibilityLayer(_COMMAND_FLAVORS[command], Path(location))

    layer = find_proton(steam_roots)
    if layer is not None:
        _LOGGER.info("Using Proton at %s as compatibility layer", layer.executable)
    else:
        _LOGGER.debug("No compatibility layer found on this host")
    return layer


def compatibility_environment(layer: CompatibilityLayer, install_dir: Path) -> dict[str, str]:
    """Extra environment variables a layer needs to run a title."""

    if layer.flavor is CompatibilityFlavor.PROTON:
        environment = {"STEAM_COMPAT_DATA_PATH": str(install_dir / "compatdata")}
        if layer.steam_root is not None:
            environment["STEAM_COMPAT_CLIENT_INSTALL_PATH"] = str(layer.steam_root)
        return environment
    if layer.flavor is CompatibilityFlavor.UMU:
        return {"WINEPREFIX": str(install_dir / "wineprefix"), "GAMEID": "0"}
    return {}


__all__ = [
    "compatibility_environment",
    "default_steam_roots",
    "detect_compatibility_layer",
    "find_proton",
]
