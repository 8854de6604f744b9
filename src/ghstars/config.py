"""Application configuration defaults."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path

from ghstars.embedding.encoder import DEFAULT_MODEL

GITHUB_API_URL = "https://api.github.com"

# GitHub logins: alphanumerics and single hyphens, at most 39 characters.
_USERNAME_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9]|-(?=[A-Za-z0-9])){0,38}$")


def _get_default_cache_dir() -> Path:
    """Get the per-tool cache directory, honouring XDG_CACHE_HOME."""
    xdg = os.environ.get("XDG_CACHE_HOME")
    base = Path(xdg) if xdg else Path.home() / ".cache"
    return base / "gh-stars"


def normalize_username(username: str) -> str:
    """Validate a GitHub login and return the lower-cased form used on disk."""
    candidate = username.strip()
    if not _USERNAME_RE.match(candidate):
        raise ValueError(f"Invalid GitHub username: {username!r}")
    return candidate.lower()


@dataclass(slots=True)
class AppConfig:
    cache_dir: Path | None = None
    model_name: str = DEFAULT_MODEL
    embed_workers: int = 2
    embed_batch_size: int = 32
    per_page: int = 100
    request_timeout: float = 30.0
    api_url: str = GITHUB_API_URL

    def __post_init__(self) -> None:
        if self.cache_dir is None:
            self.cache_dir = _get_default_cache_dir()

    def resolve_cache_dir(self, base_dir: Path | None = None) -> Path:
        if self.cache_dir is None:
            self.cache_dir = _get_default_cache_dir()
        if Path(self.cache_dir).is_absolute() or base_dir is None:
            return Path(self.cache_dir)
        return base_dir / self.cache_dir

    def user_dir(self, username: str) -> Path:
        return self.resolve_cache_dir() / normalize_username(username)

    def embeddings_path(self, username: str) -> Path:
        return self.user_dir(username) / "embeddings.db"
