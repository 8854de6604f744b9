"""Star synchronisation pipeline."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Protocol, Tuple

from ghstars.errors import EmbeddingUnavailable
from ghstars.index.cache_store import CacheStore
from ghstars.index.storage import EmbeddingIndex
from ghstars.models import MergeReport, RepositoryRecord

LOGGER = logging.getLogger(__name__)


class StarSource(Protocol):
    def fetch_starred_page(
        self, username: str, cursor: Optional[int] = None
    ) -> Tuple[List[RepositoryRecord], Optional[int]]: ...


class SyncEngine:
    """Coordinates fetching, cache reconciliation and embedding refresh.

    One call to :meth:`fetch` moves through fetching every page, merging into
    the cache store, then refreshing the embedding index. Nothing is written
    until all pages have arrived, so a failed page leaves the previous cache
    intact. Embedding problems never fail the fetch.
    """

    def __init__(
        self,
        source: StarSource,
        cache_store: CacheStore,
        open_index: Callable[[str], EmbeddingIndex],
        *,
        embed_workers: int = 2,
        embed_batch_size: int = 32,
    ) -> None:
        self.source = source
        self.cache_store = cache_store
        self.open_index = open_index
        self.embed_workers = embed_workers
        self.embed_batch_size = embed_batch_size

    def fetch(self, username: str, *, force: bool = False) -> MergeReport:
        if force:
            self.invalidate(username)

        records = self.fetch_all(username)
        report = self.cache_store.merge(username, records)
        self._refresh_embeddings(username, report)
        return report

    def invalidate(self, username: str) -> None:
        """Drop the cached collection and every embedding for ``username``."""
        self.cache_store.invalidate(username)
        index = self.open_index(username)
        try:
            index.clear()
        finally:
            index.close()

    def fetch_all(self, username: str) -> List[RepositoryRecord]:
        """Pull pages until the source reports no next cursor.

        A page can be empty after its malformed items are dropped yet still
        carry a cursor; only a missing cursor ends the walk.
        """
        records: List[RepositoryRecord] = []
        cursor: Optional[int] = None
        page = 0
        while True:
            batch, next_cursor = self.source.fetch_starred_page(username, cursor)
            page += 1
            records.extend(batch)
            LOGGER.info(f"Page {page}: {len(records)} repositories so far")
            if next_cursor is None:
                break
            cursor = next_cursor
        LOGGER.info(f"Fetched {len(records)} starred repositories for {username}")
        return records

    def _refresh_embeddings(self, username: str, report: MergeReport) -> None:
        records = self.cache_store.load(username)
        items = [(key, records[key].embeddable_text()) for key in sorted(records)]

        index = self.open_index(username)
        try:
            if report.removed:
                index.remove_many(report.removed)
            stats = index.upsert_many(
                items, workers=self.embed_workers, batch_size=self.embed_batch_size
            )
        except EmbeddingUnavailable as exc:
            LOGGER.warning(f"Embeddings not updated for {username}: {exc}")
            report.embedding_failed = len(items)
            return
        finally:
            index.close()

        report.embedded = stats.embedded
        report.embedding_skipped = stats.skipped
        report.embedding_failed = stats.failed
        if stats.failed:
            LOGGER.warning(
                f"{stats.failed} repositories have no embedding; "
                "semantic search will miss them until the next fetch"
            )
