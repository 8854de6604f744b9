"""Tests for StarsService wiring."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from conftest import FakeEmbedder, make_record, starred
from ghstars.config import AppConfig
from ghstars.errors import CacheMissing, StaleReference
from ghstars.github.client import GitHubClient
from ghstars.service import StarsService

HELLO = make_record(
    "octocat/Hello-World", description="My first repository", language="Ruby", starred_at=starred(2)
)
LINGUIST = make_record(
    "github/linguist", description="Language detection", language="Ruby", starred_at=starred(4)
)


def _source(*records):
    source = MagicMock()
    source.fetch_starred_page.return_value = (list(records), None)
    return source


@pytest.fixture
def service(tmp_path: Path, embedder: FakeEmbedder) -> StarsService:
    svc = StarsService(
        AppConfig(cache_dir=tmp_path / "cache"),
        source=_source(HELLO, LINGUIST),
        embedder=embedder,
    )
    svc.fetch("octocat")
    return svc


class TestStarsService:
    def test_fetch_writes_both_stores(self, service: StarsService, tmp_path: Path) -> None:
        assert (tmp_path / "cache" / "octocat" / "stars.json").exists()
        assert (tmp_path / "cache" / "octocat" / "embeddings.db").exists()

    def test_fetch_twice_is_idempotent(self, service: StarsService) -> None:
        report = service.fetch("octocat")

        assert not report.changed
        assert report.embedding_skipped == 2

    def test_info_by_key_after_fetch(self, service: StarsService) -> None:
        assert service.info("octocat/Hello-World") == HELLO

    def test_info_by_number_uses_last_listing(self, service: StarsService) -> None:
        results = service.list(["octocat"])

        assert [r.record.key for r in results] == ["github/linguist", "octocat/Hello-World"]
        assert service.info("2") == HELLO

    def test_info_number_without_listing(self, service: StarsService) -> None:
        with pytest.raises(StaleReference):
            service.info("1")

    def test_info_number_out_of_range(self, service: StarsService) -> None:
        service.search(["octocat"], "first")

        with pytest.raises(StaleReference):
            service.info("42")

    def test_semantic_search(self, service: StarsService) -> None:
        results = service.search(["octocat"], "language", semantic=True)

        assert len(results) == 2

    def test_hybrid_search(self, service: StarsService) -> None:
        results = service.search(["octocat"], "first", hybrid=True)

        assert [r.record.key for r in results] == ["octocat/Hello-World", "github/linguist"]
        assert service.info("2") == LINGUIST

    def test_users(self, service: StarsService) -> None:
        summaries = service.users()

        assert [(s.username, s.repositories) for s in summaries] == [("octocat", 2)]

    def test_list_unknown_user(self, service: StarsService) -> None:
        with pytest.raises(CacheMissing):
            service.list(["hubot"])

    def test_default_source_is_github_client(self, tmp_path: Path) -> None:
        with patch("ghstars.service.resolve_token", return_value="tok"):
            svc = StarsService(AppConfig(cache_dir=tmp_path, per_page=20), token="tok")
            source = svc.source

        assert isinstance(source, GitHubClient)
        assert source.token == "tok"
        assert source.per_page == 20
