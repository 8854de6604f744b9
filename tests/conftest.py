"""Shared fixtures: record factory and a deterministic embedder."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List

import numpy as np
import pytest

from ghstars.errors import EmbeddingUnavailable
from ghstars.models import RepositoryRecord

VOCAB = ["rust", "python", "cli", "web", "database", "search", "vector", "game"]


def make_record(key: str, **overrides) -> RepositoryRecord:
    owner, name = key.split("/")
    fields = {
        "owner": owner,
        "name": name,
        "url": f"https://github.com/{key}",
        "description": None,
        "language": None,
        "stars": 0,
        "forks": 0,
    }
    fields.update(overrides)
    return RepositoryRecord(**fields)


def starred(day: int) -> datetime:
    return datetime(2024, 1, day, tzinfo=timezone.utc)


class FakeEmbedder:
    """Bag-of-words embedder over a tiny vocabulary; records every call."""

    model_name = "fake-model"

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: List[List[str]] = []

    def _vector(self, text: str) -> np.ndarray:
        lowered = text.lower()
        vector = [float(lowered.count(word)) for word in VOCAB]
        vector.append(0.0 if any(vector) else 1.0)
        return np.asarray(vector, dtype="float32")

    def embed(self, texts: Iterable[str]) -> np.ndarray:
        batch = list(texts)
        self.calls.append(batch)
        if self.fail:
            raise EmbeddingUnavailable("backend down")
        return np.vstack([self._vector(text) for text in batch])

    def embed_query(self, text: str) -> np.ndarray:
        return self.embed([text])[0]

    @property
    def embedded_texts(self) -> List[str]:
        return [text for batch in self.calls for text in batch]


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()
