"""Text helpers for query parsing and content hashing."""

from __future__ import annotations

import hashlib
from typing import Iterable


def tokenize_query(query: str) -> list[str]:
    """Split a keyword query into lower-case terms."""
    return [term for term in query.lower().split() if term]


def parse_languages(value: str | Iterable[str] | None) -> frozenset[str]:
    """Turn ``"Rust, go"`` (or repeated values) into ``{"rust", "go"}``."""
    if value is None:
        return frozenset()
    parts = [value] if isinstance(value, str) else list(value)
    languages = set()
    for part in parts:
        for lang in part.split(","):
            lang = lang.strip().lower()
            if lang:
                languages.add(lang)
    return frozenset(languages)


def text_sha256(text: str) -> str:
    """Compute SHA256 hash for a piece of text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
