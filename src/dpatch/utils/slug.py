"""Slugs that are safe to embed in git branch names."""

from __future__ import annotations

import hashlib
import re
from typing import Pattern

# Dots are excluded so slugs never produce ``..`` or a ``.lock`` suffix.
_REF_UNSAFE: Pattern[str] = re.compile(r"[^a-z0-9_-]+")
_HYPHEN_COLLAPSE = re.compile(r"-{2,}")


def slugify(
    value: str | None,
    *,
    fallback: str = "patch",
    max_length: int = 48,
) -> str:
    """Normalize ``value`` into a lowercase, ref-safe slug."""
    source = (value or "").strip().lower() or fallback
    slug = _normalize(source)
    if not slug:
        slug = _normalize(fallback.lower()) or "patch"

    if len(slug) > max_length:
        digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
        prefix = slug[: max(max_length - len(digest) - 1, 1)].rstrip("-")
        slug = f"{prefix}-{digest}"

    return slug


def _normalize(value: str) -> str:
    slug = _REF_UNSAFE.sub("-", value)
    slug = _HYPHEN_COLLAPSE.sub("-", slug)
    return slug.strip("-")
