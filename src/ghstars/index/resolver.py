"""Map user-facing identifiers back to cached repositories."""

from __future__ import annotations

from typing import List, Sequence

from ghstars.errors import NotFound, StaleReference
from ghstars.index.cache_store import CacheStore
from ghstars.index.search import SearchResult
from ghstars.models import RepositoryRecord


class Resolver:
    """Resolves ``owner/name`` or a display number from the last listing.

    Display numbers only mean something relative to a listing remembered in
    the same invocation; nothing is persisted between runs.
    """

    def __init__(self, cache_store: CacheStore, users: Sequence[str]) -> None:
        self.cache_store = cache_store
        self.users = list(users)
        self._listing: List[SearchResult] | None = None

    def remember(self, results: Sequence[SearchResult]) -> None:
        self._listing = list(results)

    def resolve(self, identifier: str) -> RepositoryRecord:
        return self.resolve_result(identifier).record

    def resolve_result(self, identifier: str) -> SearchResult:
        ident = identifier.strip()
        if ident.isascii() and ident.isdecimal():
            return self._by_number(int(ident))
        if ident.count("/") == 1 and all(ident.split("/")):
            return self._by_key(ident)
        raise NotFound(f"{identifier!r} is neither owner/name nor a result number.")

    def _by_number(self, number: int) -> SearchResult:
        if self._listing is None:
            raise StaleReference(f"No listing to resolve #{number} against.")
        if not 1 <= number <= len(self._listing):
            raise StaleReference(
                f"#{number} is out of range; the last listing had {len(self._listing)} results."
            )
        return self._listing[number - 1]

    def _by_key(self, key: str) -> SearchResult:
        wanted = key.lower()
        for user in self.users:
            records = self.cache_store.load(user)
            record = records.get(key)
            if record is None:
                record = next((r for k, r in records.items() if k.lower() == wanted), None)
            if record is not None:
                return SearchResult(display_number=0, record=record, score=1.0, matched_user=user)
        raise NotFound(f"{key} is not in the starred repositories of {', '.join(self.users)}.")
