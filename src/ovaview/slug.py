"""URL slug helpers."""

import re
import secrets
import time
from typing import Callable, Optional

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(number: int) -> str:
    digits = []
    while True:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
        if number == 0:
            break
    return "".join(reversed(digits))


def generate_slug(title: str) -> str:
    """Lowercase, hyphenated slug of ``title``."""
    slug = title.lower().strip()
    slug = re.sub(r"[^A-Za-z0-9_\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def generate_unique_slug(title: str, exists: Optional[Callable[[str], bool]] = None) -> str:
    """Slug for ``title`` that ``exists`` reports as free.

    Without a checker a base36 millisecond timestamp is appended.
    """
    base = generate_slug(title)
    if exists is None:
        return f"{base}-{_to_base36(int(time.time() * 1000))}"
    if not exists(base):
        return base
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{base}-{suffix}"
