# FILE: weblog/redaction.py
from __future__ import annotations

from typing import Iterable, Optional

MASK = "********"


def redact(key: Optional[str], value: str, enabled: bool, keywords: Iterable[str]) -> str:
    """
    Mask ``value`` when ``key`` contains any of ``keywords``.

    Matching is a case-insensitive substring test, so "password" masks
    "EndWithPassword" and "PasswordPrefix" alike.
    """
    if not enabled or key is None:
        return value
    k = key.lower()
    if any(kw.lower() in k for kw in keywords):
        return MASK
    return value
