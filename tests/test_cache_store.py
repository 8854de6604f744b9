"""Tests for CacheStore."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import make_record
from ghstars.errors import CacheMissing, MergeConflict
from ghstars.index.cache_store import CacheStore


@pytest.fixture
def store(tmp_path: Path) -> CacheStore:
    return CacheStore(tmp_path / "cache")


A = make_record("a/a", description="first")
B = make_record("b/b", description="second")
C = make_record("c/c", description="third")
D = make_record("d/d", description="fourth")


class TestLoad:
    """Test reading cached collections."""

    def test_missing_cache_raises(self, store: CacheStore) -> None:
        with pytest.raises(CacheMissing):
            store.load("octocat")

    def test_round_trip(self, store: CacheStore) -> None:
        store.merge("octocat", [A, B])

        assert store.load("octocat") == {"a/a": A, "b/b": B}

    def test_username_is_case_insensitive(self, store: CacheStore) -> None:
        store.merge("OctoCat", [A])

        assert store.exists("octocat")
        assert store.load("OCTOCAT") == {"a/a": A}

    def test_corrupt_file_raises_cache_missing(self, store: CacheStore) -> None:
        path = store.path_for("octocat")
        path.parent.mkdir(parents=True)
        path.write_text("{not json")

        with pytest.raises(CacheMissing) as excinfo:
            store.load("octocat")
        assert "--force" in excinfo.value.hint

    def test_invalid_username_rejected(self, store: CacheStore) -> None:
        with pytest.raises(ValueError):
            store.load("../../etc")

    def test_document_layout(self, store: CacheStore) -> None:
        """Repositories are stored sorted by key with a fetch timestamp."""
        store.merge("octocat", [B, A])

        document = json.loads(store.path_for("octocat").read_text())
        assert document["username"] == "octocat"
        assert document["fetched_at"]
        assert [r["name"] for r in document["repositories"]] == ["a", "b"]


class TestMerge:
    """Test merge policy."""

    def test_first_merge_adds_everything(self, store: CacheStore) -> None:
        report = store.merge("octocat", [A, B])

        assert report.added == ["a/a", "b/b"]
        assert report.updated == report.unchanged == report.removed == []

    def test_merge_correctness(self, store: CacheStore) -> None:
        """Cached {A,B,C} merged with fetched {A,B,D}."""
        store.merge("octocat", [A, B, C])

        report = store.merge("octocat", [A, B, D])

        assert report.added == ["d/d"]
        assert report.removed == ["c/c"]
        assert report.unchanged == ["a/a", "b/b"]
        assert report.updated == []
        assert set(store.load("octocat")) == {"a/a", "b/b", "d/d"}

    def test_idempotent(self, store: CacheStore) -> None:
        store.merge("octocat", [A, B, C])

        report = store.merge("octocat", [A, B, C])

        assert report.added == report.updated == report.removed == []
        assert report.unchanged == ["a/a", "b/b", "c/c"]
        assert report.changed is False

    def test_changed_attribute_is_update(self, store: CacheStore) -> None:
        store.merge("octocat", [A, B])
        bumped = make_record("a/a", description="first", stars=10)

        report = store.merge("octocat", [bumped, B])

        assert report.updated == ["a/a"]
        assert store.load("octocat")["a/a"].stars == 10

    def test_duplicates_keep_last(self, store: CacheStore) -> None:
        newer = make_record("a/a", description="newer")

        report = store.merge("octocat", [A, newer])

        assert report.added == ["a/a"]
        assert store.load("octocat")["a/a"].description == "newer"

    def test_users_are_independent(self, store: CacheStore) -> None:
        store.merge("alice", [A])
        store.merge("bob", [B])

        assert store.users() == ["alice", "bob"]
        assert set(store.load("alice")) == {"a/a"}
        assert set(store.load("bob")) == {"b/b"}

    def test_failed_write_keeps_previous_cache(self, store: CacheStore) -> None:
        store.merge("octocat", [A, B])

        with patch("ghstars.utils.files.os.replace", side_effect=KeyboardInterrupt):
            with pytest.raises(KeyboardInterrupt):
                store.merge("octocat", [C])

        assert set(store.load("octocat")) == {"a/a", "b/b"}

    def test_accounting_mismatch_raises_merge_conflict(self, store: CacheStore) -> None:
        store.merge("octocat", [A])

        with patch("ghstars.index.cache_store.MergeReport.total", new=99):
            with pytest.raises(MergeConflict):
                store.merge("octocat", [A, B])

        assert set(store.load("octocat")) == {"a/a"}


class TestInvalidate:
    """Test cache invalidation."""

    def test_invalidate_removes_collection(self, store: CacheStore) -> None:
        store.merge("octocat", [A])

        assert store.invalidate("octocat") is True
        assert not store.exists("octocat")
        with pytest.raises(CacheMissing):
            store.load("octocat")

    def test_invalidate_missing_is_noop(self, store: CacheStore) -> None:
        assert store.invalidate("octocat") is False

    def test_users_empty_root(self, store: CacheStore) -> None:
        assert store.users() == []


class TestSummary:
    def test_summary(self, store: CacheStore) -> None:
        store.merge("octocat", [A, B])

        summary = store.summary("octocat")

        assert summary.username == "octocat"
        assert summary.repositories == 2
        assert summary.fetched_at is not None
