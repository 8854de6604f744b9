"""High-level operations wired together for one invocation."""

from __future__ import annotations

import logging
from typing import Collection, List, Sequence

from ghstars.config import AppConfig
from ghstars.embedding.encoder import EmbeddingConfig, EmbeddingModel
from ghstars.github.client import GitHubClient, resolve_token
from ghstars.index.cache_store import CacheStore
from ghstars.index.resolver import Resolver
from ghstars.index.search import QueryEngine, SearchResult
from ghstars.index.storage import EmbeddingIndex
from ghstars.index.sync import StarSource, SyncEngine
from ghstars.models import CacheSummary, MergeReport, RepositoryRecord

LOGGER = logging.getLogger(__name__)


class StarsService:
    """Entry point used by the CLI: fetch, list, search, info and users.

    The last listing produced by :meth:`list` or :meth:`search` is what
    numeric identifiers passed to :meth:`info` refer to.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        source: StarSource | None = None,
        embedder: EmbeddingModel | None = None,
        token: str | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.cache_store = CacheStore(self.config.resolve_cache_dir())
        self.embedder = embedder or EmbeddingModel(
            EmbeddingConfig(
                model_name=self.config.model_name,
                batch_size=self.config.embed_batch_size,
            )
        )
        self._source = source
        self._token = token
        self.queries = QueryEngine(self.cache_store, self.open_index, self.embedder)
        self.resolver: Resolver | None = None

    @property
    def source(self) -> StarSource:
        if self._source is None:
            token = resolve_token(self._token)
            if token is None:
                LOGGER.warning("No GitHub token found; unauthenticated requests are rate limited")
            self._source = GitHubClient(
                token,
                api_url=self.config.api_url,
                per_page=self.config.per_page,
                timeout=self.config.request_timeout,
            )
        return self._source

    def open_index(self, username: str, *, readonly: bool = False) -> EmbeddingIndex:
        return EmbeddingIndex(
            self.config.embeddings_path(username),
            model_name=self.config.model_name,
            embedder=self.embedder,
            readonly=readonly,
        )

    def fetch(self, username: str, *, force: bool = False) -> MergeReport:
        engine = SyncEngine(
            self.source,
            self.cache_store,
            self.open_index,
            embed_workers=self.config.embed_workers,
            embed_batch_size=self.config.embed_batch_size,
        )
        return engine.fetch(username, force=force)

    def list(
        self,
        usernames: Sequence[str] | None = None,
        languages: Collection[str] | str | None = None,
        limit: int = 30,
    ) -> List[SearchResult]:
        users = self.queries.resolve_users(usernames)
        results = self.queries.list(users, languages, limit)
        self._remember(users, results)
        return results

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
        users = self.queries.resolve_users(usernames)
        results = self.queries.search(
            users, query, languages, semantic=semantic, hybrid=hybrid, limit=limit
        )
        self._remember(users, results)
        return results

    def _remember(self, users: Sequence[str], results: Sequence[SearchResult]) -> None:
        self.resolver = Resolver(self.cache_store, users)
        self.resolver.remember(results)

    def info_result(self, identifier: str) -> SearchResult:
        resolver = self.resolver or Resolver(self.cache_store, self.cache_store.users())
        return resolver.resolve_result(identifier)

    def info(self, identifier: str) -> RepositoryRecord:
        return self.info_result(identifier).record

    def users(self) -> List[CacheSummary]:
        return [self.cache_store.summary(user) for user in self.cache_store.users()]
