from __future__ import annotations

import pytest

from dpatch.utils.slug import slugify


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("pins", "pins"),
        ("Remove Recent", "remove-recent"),
        ("disable_auto_updates", "disable_auto_updates"),
        ("feature/../lock.", "feature-lock"),
        ("  spaced  ", "spaced"),
    ],
)
def test_slugify_normalises(value: str, expected: str) -> None:
    assert slugify(value) == expected


def test_slugify_falls_back_when_nothing_survives() -> None:
    assert slugify("...") == "patch"
    assert slugify(None, fallback="feature") == "feature"


def test_slugify_truncates_with_stable_digest() -> None:
    value = "a-very-long-patch-name-" * 5

    first = slugify(value, max_length=24)

    assert len(first) <= 24
    assert first == slugify(value, max_length=24)
    assert first != slugify(value + "x", max_length=24)
