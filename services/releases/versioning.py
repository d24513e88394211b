"""Ordering of release tags.

Recompiled ports mostly tag releases as PEP 440 style versions (``v1.2.0``),
but nightly channels use free-form tags such as ``nightly-2024.05.01``.
Those are ordered by splitting them into numeric and textual tokens.
"""

from __future__ import annotations

import re

from packaging.version import InvalidVersion, Version


_TAG_PREFIX = re.compile(r"^(?:release[-_ ]?|version[-_ ]?|v)(?=\d)", re.IGNORECASE)
_TOKEN_SPLIT = re.compile(r"[.\-+_]")
_PRERELEASE_WORDS = ("dev", "alpha", "beta", "rc", "pre", "preview", "nightly")


def normalise_tag(tag: str) -> str:
    """Strip decorations such as a leading ``v`` from a release tag."""

    return _TAG_PREFIX.sub("", tag.strip())


def _pep440(tag: str) -> Version | None:
    try:
        return Version(tag)
    except InvalidVersion:
        return None


def _tokens(tag: str) -> list[tuple[int, int | str]]:
    return [
        (0, int(part)) if part.isdigit() else (1, part.lower())
        for part in _TOKEN_SPLIT.split(tag)
        if part
    ]


def _compare_tokens(current: str, candidate: str) -> int:
    left, right = _tokens(current), _tokens(candidate)
    width = max(len(left), len(right))
    left += [(0, 0)] * (width - len(left))
    right += [(0, 0)] * (width - len(right))
    for mine, theirs in zip(left, right):
        if mine != theirs:
            return 1 if theirs > mine else -1
    return 0


def compare_versions(current_version: str, candidate: str) -> int:
    """Return ``1`` if ``candidate`` is newer, ``-1`` if older, ``0`` if equal."""

    current = normalise_tag(current_version)
    proposed = normalise_tag(candidate)
    if current == proposed:
        return 0
    parsed_current, parsed_proposed = _pep440(current), _pep440(proposed)
    if parsed_current is None or parsed_proposed is None:
        return _compare_tokens(current, proposed)
    return (parsed_proposed > parsed_current) - (parsed_proposed < parsed_current)


def is_version_newer(current_version: str, candidate: str) -> bool:
    return compare_versions(current_version, candidate) > 0


def is_prerelease_version(version: str) -> bool:
    parsed = _pep440(normalise_tag(version))
    if parsed is not None:
        return parsed.is_prerelease
    return any(
        isinstance(value, str) and value.startswith(_PRERELEASE_WORDS)
        for _kind, value in _tokens(version)
    )


__all__ = [
    "compare_versions",
    "is_prerelease_version",
    "is_version_newer",
    "normalise_tag",
]
