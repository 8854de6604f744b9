"""Tests for the identifier resolver."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import make_record
from ghstars.errors import NotFound, StaleReference
from ghstars.index.cache_store import CacheStore
from ghstars.index.resolver import Resolver
from ghstars.index.search import SearchResult

HELLO = make_record("octocat/Hello-World", description="My first repository")
SPOON = make_record("octocat/Spoon-Knife", description="Fork me")


@pytest.fixture
def store(tmp_path: Path) -> CacheStore:
    cache = CacheStore(tmp_path / "cache")
    cache.merge("octocat", [HELLO, SPOON])
    cache.merge("hubot", [SPOON])
    return cache


def _listing(*records) -> list[SearchResult]:
    return [
        SearchResult(display_number=i, record=record, score=1.0, matched_user="octocat")
        for i, record in enumerate(records, start=1)
    ]


class TestResolveKey:
    """Test owner/name lookups."""

    def test_resolves_after_fetch(self, store: CacheStore) -> None:
        resolver = Resolver(store, ["octocat"])

        assert resolver.resolve("octocat/Hello-World") == HELLO

    def test_case_insensitive(self, store: CacheStore) -> None:
        resolver = Resolver(store, ["octocat"])

        assert resolver.resolve("OctoCat/hello-world") == HELLO

    def test_first_user_wins(self, store: CacheStore) -> None:
        resolver = Resolver(store, ["hubot", "octocat"])

        assert resolver.resolve_result("octocat/Spoon-Knife").matched_user == "hubot"

    def test_missing_key(self, store: CacheStore) -> None:
        resolver = Resolver(store, ["hubot"])

        with pytest.raises(NotFound):
            resolver.resolve("octocat/Hello-World")

    @pytest.mark.parametrize("identifier", ["nonsense", "a/b/c", "/x", "-3", "\u00b2", "\u0663"])
    def test_malformed_identifier(self, store: CacheStore, identifier: str) -> None:
        with pytest.raises(NotFound):
            Resolver(store, ["octocat"]).resolve(identifier)


class TestResolveNumber:
    """Test display number lookups."""

    def test_without_listing(self, store: CacheStore) -> None:
        with pytest.raises(StaleReference):
            Resolver(store, ["octocat"]).resolve("1")

    def test_number_from_listing(self, store: CacheStore) -> None:
        resolver = Resolver(store, ["octocat"])
        resolver.remember(_listing(SPOON, HELLO))

        assert resolver.resolve("2") == HELLO
        assert resolver.resolve(" 1 ") == SPOON

    def test_out_of_range(self, store: CacheStore) -> None:
        resolver = Resolver(store, ["octocat"])
        resolver.remember(_listing(*[make_record(f"o/r{i}") for i in range(5)]))

        with pytest.raises(StaleReference):
            resolver.resolve("42")
        with pytest.raises(StaleReference):
            resolver.resolve("0")

    def test_empty_listing(self, store: CacheStore) -> None:
        resolver = Resolver(store, ["octocat"])
        resolver.remember([])

        with pytest.raises(StaleReference):
            resolver.resolve("1")
