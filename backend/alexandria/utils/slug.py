"""URL-safe slug generation for models and libraries."""

from __future__ import annotations

import re
import secrets
import string

SLUG_SUFFIX_LENGTH = 4
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Lowercase a name and collapse every non-alphanumeric run into one hyphen."""
    return _NON_ALNUM.sub("-", name.lower()).strip("-")


def generate_slug(name: str) -> str:
    """Generate a unique-ish slug such as ``dragon-bust-a3f2``.

    The random suffix keeps two models with the same name from colliding
    on the unique slug column.
    """
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(SLUG_SUFFIX_LENGTH))
    base = slugify(name)
    if not base:
        return suffix
    return f"{base}-{suffix}"
