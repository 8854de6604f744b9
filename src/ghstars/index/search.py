"""Keyword, semantic and hybrid search over cached stars."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Collection, Dict, Iterable, List, Sequence, Tuple

from ghstars.config import normalize_username
from ghstars.embedding.encoder import EmbeddingModel
from ghstars.errors import CacheMissing, EmbeddingUnavailable
from ghstars.index.cache_store import CacheStore
from ghstars.index.storage import EmbeddingIndex, nearest_neighbors_multi_user
from ghstars.models import RepositoryRecord
from ghstars.utils.text import parse_languages, tokenize_query

LOGGER = logging.getLogger(__name__)

KEYWORD_FIELDS = 4
HYBRID_MIN_QUERY_LENGTH = 3

Entry = Tuple[float, RepositoryRecord, str]


@dataclass(slots=True)
class SearchResult:
    display_number: int
    record: RepositoryRecord
    score: float
    matched_user: str


def keyword_score(record: RepositoryRecord, terms: Sequence[str]) -> int:
    """Number of fields hit by the query, or 0 when some term matches nowhere.

    Every term must appear in at least one of name, description, topics or
    language.
    """
    fields = [
        record.name.lower(),
        (record.description or "").lower(),
        " ".join(record.topics).lower(),
        (record.language or "").lower(),
    ]
    for term in terms:
        if not any(term in value for value in fields):
            return 0
    return sum(1 for value in fields if value and any(term in value for term in terms))


def language_matches(record: RepositoryRecord, languages: Collection[str]) -> bool:
    if not languages:
        return True
    return record.language is not None and record.language.lower() in languages


def _number(entries: Iterable[Entry], limit: int) -> List[SearchResult]:
    ranked = list(entries)
    if limit > 0:
        ranked = ranked[:limit]
    return [
        SearchResult(display_number=i, record=record, score=score, matched_user=user)
        for i, (score, record, user) in enumerate(ranked, start=1)
    ]


class QueryEngine:
    """Read-only query layer across one or many users' caches."""

    def __init__(
        self,
        cache_store: CacheStore,
        open_index: Callable[..., EmbeddingIndex],
        embedder: EmbeddingModel | None = None,
    ) -> None:
        self.cache_store = cache_store
        self.open_index = open_index
        self.embedder = embedder

    def resolve_users(self, usernames: Sequence[str] | None) -> List[str]:
        """Explicit users in the given order, or every cached user when empty."""
        if not usernames:
            users = self.cache_store.users()
            if not users:
                raise CacheMissing("No cached users yet.")
            return users

        users: List[str] = []
        for name in usernames:
            user = normalize_username(name)
            if user in users:
                continue
            if not self.cache_store.exists(user):
                raise CacheMissing(
                    f"No cached stars for {name}.",
                    hint=f"Run `gh-stars fetch {name}` first.",
                )
            users.append(user)
        return users

    def _load(
        self, users: Sequence[str], languages: Collection[str]
    ) -> Dict[str, Dict[str, RepositoryRecord]]:
        loaded = {}
        for user in users:
            records = self.cache_store.load(user)
            loaded[user] = {
                key: record for key, record in records.items() if language_matches(record, languages)
            }
        return loaded

    def list(
        self,
        usernames: Sequence[str] | None,
        languages: Collection[str] | str | None = None,
        limit: int = 30,
    ) -> List[SearchResult]:
        """All cached stars, most recently starred first."""
        langs = parse_languages(languages)
        loaded = self._load(self.resolve_users(usernames), langs)
        entries = [
            (1.0, record, user) for user, records in loaded.items() for record in records.values()
        ]
        entries.sort(
            key=lambda e: (
                e[1].starred_at is None,
                -e[1].starred_at.timestamp() if e[1].starred_at else 0.0,
                e[1].key,
                e[2],
            )
        )
        return _number(entries, limit)

    def search(
        self,
        usernames: Sequence[str] | None,
        query: str,
        languages: Collection[str] | str | None = None,
        *,
        semantic: bool = False,
        hybrid: bool = False,
        limit: int = 30,
    ) -> List[SearchResult]:
        """Rank cached stars against ``query``.

        Keyword mode is the default. ``semantic`` ranks by embedding
        similarity and degrades to keyword mode when embeddings are
        unavailable. ``hybrid`` lists keyword hits first, then semantic
        neighbours not already listed; it takes precedence over ``semantic``.
        """
        if not query.strip():
            return self.list(usernames, languages, limit)

        langs = parse_languages(languages)
        users = self.resolve_users(usernames)
        loaded = self._load(users, langs)

        if hybrid:
            return _number(self._hybrid(loaded, query, limit), limit)
        if semantic:
            try:
                return _number(self._semantic(loaded, query, limit), limit)
            except EmbeddingUnavailable as exc:
                LOGGER.warning("Semantic search unavailable (%s); using keyword search", exc)

        return _number(self._keyword(loaded, query), limit)

    def _keyword(self, loaded: Dict[str, Dict[str, RepositoryRecord]], query: str) -> List[Entry]:
        terms = tokenize_query(query)
        entries = []
        for user, records in loaded.items():
            for record in records.values():
                hits = keyword_score(record, terms)
                if hits:
                    entries.append((hits / KEYWORD_FIELDS, record, user))
        entries.sort(key=lambda e: (-e[0], -e[1].stars, e[1].key, e[2]))
        return entries

    def _semantic(
        self, loaded: Dict[str, Dict[str, RepositoryRecord]], query: str, limit: int
    ) -> List[Entry]:
        if self.embedder is None:
            raise EmbeddingUnavailable("No embedding model configured")
        vector = self.embedder.embed_query(query)

        indexes: Dict[str, EmbeddingIndex] = {}
        try:
            for user in loaded:
                try:
                    indexes[user] = self.open_index(user, readonly=True)
                except EmbeddingUnavailable as exc:
                    LOGGER.info("Skipping %s in semantic search: %s", user, exc)
            neighbors = nearest_neighbors_multi_user(
                indexes,
                vector,
                limit,
                keys_by_user={user: set(records) for user, records in loaded.items()},
            )
        finally:
            for index in indexes.values():
                index.close()

        return [
            (min(1.0, max(0.0, n.similarity)), loaded[n.user][n.key], n.user) for n in neighbors
        ]

    def _hybrid(
        self, loaded: Dict[str, Dict[str, RepositoryRecord]], query: str, limit: int
    ) -> List[Entry]:
        entries = self._keyword(loaded, query)
        if len(query.strip()) < HYBRID_MIN_QUERY_LENGTH:
            return entries
        try:
            neighbors = self._semantic(loaded, query, limit)
        except EmbeddingUnavailable as exc:
            LOGGER.warning("Semantic part of hybrid search unavailable (%s)", exc)
            return entries
        seen = {(user, record.key) for _, record, user in entries}
        entries.extend(e for e in neighbors if (e[2], e[1].key) not in seen)
        return entries
