"""SQLite vector store for repository embeddings."""

from __future__ import annotations

import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Collection, Iterable, Iterator, List, Mapping, NamedTuple

import numpy as np

from ghstars.embedding.encoder import EmbeddingModel, normalize_rows
from ghstars.errors import EmbeddingUnavailable
from ghstars.utils.text import text_sha256

LOGGER = logging.getLogger(__name__)


class Neighbor(NamedTuple):
    user: str
    key: str
    similarity: float


@dataclass(slots=True)
class UpsertStats:
    embedded: int = 0
    skipped: int = 0
    failed: int = 0
    failed_keys: list[str] = field(default_factory=list)


class EmbeddingIndex:
    """Persistence layer for one user's repository embeddings.

    Vectors are stored unit-normalised so cosine similarity is a dot product.
    Each row carries the hash of the text it was computed from; an upsert with
    the same text never reaches the embedding backend.

    With ``readonly=True`` the database must already exist and is opened
    without schema setup; any write raises.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        model_name: str,
        embedder: EmbeddingModel | None = None,
        readonly: bool = False,
    ) -> None:
        self.db_path = Path(db_path)
        self.model_name = model_name
        self.embedder = embedder
        self.readonly = readonly
        if readonly:
            if not self.db_path.exists():
                raise EmbeddingUnavailable(f"No embedding index at {self.db_path}")
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
        else:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._ensure_schema()
        self.stored_model = self._get_meta("model")

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    @property
    def model_mismatch(self) -> bool:
        return self.stored_model is not None and self.stored_model != self.model_name

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "EmbeddingIndex":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        self._check_writable()
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                    name TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS embeddings (
                    key TEXT PRIMARY KEY,
                    source_hash TEXT NOT NULL,
                    dimension INTEGER NOT NULL,
                    embedding BLOB NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

    def _get_meta(self, name: str) -> str | None:
        row = self._conn.execute("SELECT value FROM meta WHERE name = ?", (name,)).fetchone()
        return row["value"] if row else None

    def _check_writable(self) -> None:
        if self.readonly:
            raise RuntimeError(f"Index at {self.db_path} was opened read-only")

    def _prepare_write(self) -> None:
        """Claim the index for the current model, dropping vectors from another one."""
        self._check_writable()
        if self.model_mismatch:
            LOGGER.info(
                "Embedding model changed (%s -> %s), discarding %s",
                self.stored_model,
                self.model_name,
                self.db_path,
            )
            self.clear()
        if self.stored_model is None:
            with self.transaction() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO meta(name, value) VALUES ('model', ?)",
                    (self.model_name,),
                )
            self.stored_model = self.model_name

    def _require_embedder(self) -> EmbeddingModel:
        if self.embedder is None:
            raise EmbeddingUnavailable("No embedding model configured for this index")
        return self.embedder

    def keys(self) -> List[str]:
        return [row["key"] for row in self._conn.execute("SELECT key FROM embeddings ORDER BY key")]

    def source_hash(self, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT source_hash FROM embeddings WHERE key = ?", (key,)
        ).fetchone()
        return row["source_hash"] if row else None

    def _store(self, conn: sqlite3.Connection, key: str, source_hash: str, vector: np.ndarray) -> None:
        unit = normalize_rows(vector)[0]
        conn.execute(
            """
            INSERT INTO embeddings(key, source_hash, dimension, embedding)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                source_hash = excluded.source_hash,
                dimension = excluded.dimension,
                embedding = excluded.embedding,
                updated_at = CURRENT_TIMESTAMP
            """,
            (key, source_hash, int(unit.shape[0]), sqlite3.Binary(unit.tobytes())),
        )

    def upsert(self, key: str, text: str) -> str:
        """Embed ``text`` for ``key`` unless the stored vector came from the same text.

        Returns 'skipped', 'inserted' or 'updated'.
        """
        self._prepare_write()
        digest = text_sha256(text)
        existing = self.source_hash(key)
        if existing == digest:
            return "skipped"

        vector = self._require_embedder().embed([text])[0]
        with self.transaction() as conn:
            self._store(conn, key, digest, vector)
        return "updated" if existing else "inserted"

    def upsert_many(
        self,
        items: Iterable[tuple[str, str]],
        *,
        workers: int = 2,
        batch_size: int = 32,
    ) -> UpsertStats:
        """Bulk :meth:`upsert`; embedding runs on a bounded thread pool.

        Batches that fail are counted, not raised, so one bad batch does not
        discard the rest.
        """
        self._prepare_write()
        stats = UpsertStats()
        current = {
            row["key"]: row["source_hash"]
            for row in self._conn.execute("SELECT key, source_hash FROM embeddings")
        }

        pending: list[tuple[str, str, str]] = []
        for key, text in items:
            digest = text_sha256(text)
            if current.get(key) == digest:
                stats.skipped += 1
            else:
                pending.append((key, text, digest))

        if not pending:
            return stats

        embedder = self._require_embedder()
        size = max(1, batch_size)
        batches = [pending[i : i + size] for i in range(0, len(pending), size)]

        with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
            futures = {
                pool.submit(embedder.embed, [text for _, text, _ in batch]): batch
                for batch in batches
            }
            with self.transaction() as conn:
                for future in as_completed(futures):
                    batch = futures[future]
                    try:
                        vectors = future.result()
                    except EmbeddingUnavailable as exc:
                        LOGGER.warning("Embedding failed for %d repositories: %s", len(batch), exc)
                        stats.failed += len(batch)
                        stats.failed_keys.extend(key for key, _, _ in batch)
                        continue
                    for (key, _, digest), vector in zip(batch, vectors):
                        self._store(conn, key, digest, vector)
                    stats.embedded += len(batch)

        stats.failed_keys.sort()
        return stats

    def remove(self, key: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM embeddings WHERE key = ?", (key,))

    def remove_many(self, keys: Iterable[str]) -> None:
        with self.transaction() as conn:
            conn.executemany("DELETE FROM embeddings WHERE key = ?", [(key,) for key in keys])

    def clear(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM embeddings")
            conn.execute("DELETE FROM meta")
        self.stored_model = None

    def _candidates(self, keys: Collection[str] | None) -> tuple[list[str], np.ndarray | None]:
        if self.model_mismatch:
            raise EmbeddingUnavailable(
                f"Index at {self.db_path} was built with {self.stored_model}, not {self.model_name}",
                hint="Run `gh-stars fetch` again to rebuild embeddings with the current model.",
            )
        rows = self._conn.execute("SELECT key, embedding FROM embeddings").fetchall()
        if keys is not None:
            rows = [row for row in rows if row["key"] in keys]
        if not rows:
            return [], None
        names = [row["key"] for row in rows]
        matrix = np.vstack([np.frombuffer(row["embedding"], dtype="float32") for row in rows])
        return names, matrix

    def nearest_neighbors(
        self,
        embedding: np.ndarray,
        k: int,
        *,
        keys: Collection[str] | None = None,
    ) -> List[tuple[str, float]]:
        """Return up to ``k`` (key, similarity) pairs, best first.

        Ties are broken by the lexicographically smaller key. ``keys``
        restricts the candidates; ``k <= 0`` returns every candidate.
        """
        names, matrix = self._candidates(keys)
        if matrix is None:
            return []

        query = normalize_rows(embedding)[0]
        if query.shape[0] != matrix.shape[1]:
            raise EmbeddingUnavailable(
                f"Query dimension {query.shape[0]} does not match index dimension {matrix.shape[1]}"
            )
        scores = matrix @ query
        order = sorted(range(len(names)), key=lambda i: (-float(scores[i]), names[i]))
        if k > 0:
            order = order[:k]
        return [(names[i], float(scores[i])) for i in order]


def nearest_neighbors_multi_user(
    indexes: Mapping[str, EmbeddingIndex],
    embedding: np.ndarray,
    k: int,
    *,
    keys_by_user: Mapping[str, Collection[str]] | None = None,
) -> List[Neighbor]:
    """Merge per-user nearest neighbours into one ranking.

    Scores are comparable across users because every index holds unit vectors
    from the same model.
    """
    merged: List[Neighbor] = []
    for user, index in indexes.items():
        keys = keys_by_user.get(user, ()) if keys_by_user is not None else None
        for key, similarity in index.nearest_neighbors(embedding, k, keys=keys):
            merged.append(Neighbor(user, key, similarity))
    merged.sort(key=lambda n: (-n.similarity, n.key, n.user))
    return merged[:k] if k > 0 else merged
