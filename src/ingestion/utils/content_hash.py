"""Content hashing for change detection across crawl runs."""

from __future__ import annotations

import hashlib
import re

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_for_hash(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip().lower()


def hash_content(text: str) -> str:
    """SHA-256 hex digest of the whitespace-collapsed, lowercased text."""
    return hashlib.sha256(normalize_for_hash(text).encode("utf-8")).hexdigest()
