"""Error taxonomy shared by the cache, index and CLI layers."""

from __future__ import annotations

from datetime import datetime


class GhStarsError(Exception):
    """Base class for errors surfaced to the user."""

    hint: str | None = None

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        if hint is not None:
            self.hint = hint


class CacheMissing(GhStarsError):
    hint = "Run `gh-stars fetch <username>` first."


class AuthRequired(GhStarsError):
    hint = "Pass --token, set GITHUB_TOKEN, or log in with `gh auth login`."


class RateLimited(GhStarsError):
    hint = "Authenticate to raise the limit, or wait for the reset."

    def __init__(self, message: str, *, reset_at: datetime | None = None) -> None:
        hint = None
        if reset_at is not None:
            hint = f"Rate limit resets at {reset_at.isoformat()}. Authenticate to raise the limit."
        super().__init__(message, hint=hint)
        self.reset_at = reset_at


class NetworkError(GhStarsError):
    hint = "Check your network connection and try again."


class EmbeddingUnavailable(GhStarsError):
    hint = "Keyword search still works; semantic results refresh on the next fetch."


class NotFound(GhStarsError):
    hint = "Use `gh-stars list` or `gh-stars search` to find the repository."


class StaleReference(GhStarsError):
    hint = "Numbers refer to the listing produced by the same options; re-run list or search."


class MergeConflict(GhStarsError):
    hint = "This is a bug; the cache was left unchanged."


class RecordParseError(GhStarsError, ValueError):
    """Raised when an API payload cannot be mapped to a repository record."""
