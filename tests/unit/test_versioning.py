from __future__ import annotations

import pytest

from services.releases.versioning import (
    compare_versions,
    is_prerelease_version,
    is_version_newer,
    normalise_tag,
)


@pytest.mark.parametrize(
    ("tag", "expected"),
    [("v1.2.3", "1.2.3"), ("release-2.0", "2.0"), ("Version_3", "3"), ("nightly-4", "nightly-4")],
)
def test_normalise_tag(tag, expected) -> None:
    assert normalise_tag(tag) == expected


def test_compare_pep440_versions() -> None:
    assert compare_versions("v1.0.0", "v1.1.0") == 1
    assert compare_versions("v1.10.0", "v1.9.0") == -1
    assert compare_versions("v1.0", "1.0.0") == 0
    assert is_version_newer("1.0.0", "1.0.1")
    assert not is_version_newer("1.0.1", "1.0.0rc1")


def test_compare_falls_back_to_tokens_for_free_form_tags() -> None:
    assert compare_versions("nightly-2024.05.01", "nightly-2024.05.02") == 1
    assert compare_versions("build-10", "build-9") == -1


def test_prerelease_detection() -> None:
    assert is_prerelease_version("v2.0.0-rc1")
    assert is_prerelease_version("nightly-5")
    assert not is_prerelease_version("v2.0.0")
