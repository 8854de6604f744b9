"""JSON document store holding each user's starred repositories."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List

from ghstars.config import normalize_username
from ghstars.errors import CacheMissing, MergeConflict, RecordParseError
from ghstars.models import CacheSummary, MergeReport, RepositoryRecord
from ghstars.utils.files import atomic_write_text, remove_file

LOGGER = logging.getLogger(__name__)

STARS_FILE = "stars.json"
FORMAT_VERSION = 1


class CacheStore:
    """Persistence layer for per-user star collections.

    Layout: ``<root>/<username>/stars.json``. Every write replaces the whole
    document atomically.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, username: str) -> Path:
        return self.root / normalize_username(username) / STARS_FILE

    def exists(self, username: str) -> bool:
        return self.path_for(username).is_file()

    def users(self) -> List[str]:
        """Usernames with a cached collection, sorted."""
        if not self.root.is_dir():
            return []
        return sorted(
            child.name for child in self.root.iterdir() if (child / STARS_FILE).is_file()
        )

    def _read(self, username: str) -> Dict[str, Any]:
        path = self.path_for(username)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise CacheMissing(f"No cached stars for {username}.") from None
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CacheMissing(
                f"Cache for {username} is unreadable: {exc}",
                hint=f"Run `gh-stars fetch {username} --force` to rebuild it.",
            ) from exc
        if not isinstance(document, dict) or not isinstance(document.get("repositories"), list):
            raise CacheMissing(
                f"Cache for {username} has an unexpected format.",
                hint=f"Run `gh-stars fetch {username} --force` to rebuild it.",
            )
        return document

    def load(self, username: str) -> Dict[str, RepositoryRecord]:
        """Return the cached records keyed by ``owner/name``."""
        document = self._read(username)
        records: Dict[str, RepositoryRecord] = {}
        for item in document["repositories"]:
            try:
                record = RepositoryRecord.from_dict(item)
            except RecordParseError as exc:
                LOGGER.warning("Skipping unreadable cache entry for %s: %s", username, exc)
                continue
            records[record.key] = record
        return records

    def summary(self, username: str) -> CacheSummary:
        document = self._read(username)
        fetched_at = document.get("fetched_at")
        return CacheSummary(
            username=document.get("username", normalize_username(username)),
            repositories=len(document["repositories"]),
            fetched_at=datetime.fromisoformat(fetched_at) if fetched_at else None,
        )

    def _write(self, username: str, records: Dict[str, RepositoryRecord]) -> None:
        document = {
            "version": FORMAT_VERSION,
            "username": normalize_username(username),
            "fetched_at": datetime.now(timezone.utc).isoformat(),
            "repositories": [records[key].to_dict() for key in sorted(records)],
        }
        atomic_write_text(self.path_for(username), json.dumps(document, ensure_ascii=True, indent=1))

    def merge(self, username: str, fetched: Iterable[RepositoryRecord]) -> MergeReport:
        """Reconcile a complete fetch with the cached collection and persist it.

        A fetched record replaces the cached one when any attribute differs;
        cached records missing from the fetch were unstarred and are dropped.
        """
        existing = self.load(username) if self.exists(username) else {}

        fresh: Dict[str, RepositoryRecord] = {}
        for record in fetched:
            if record.key in fresh:
                LOGGER.debug("Duplicate %s in fetch, keeping the later copy", record.key)
            fresh[record.key] = record

        report = MergeReport()
        for key in sorted(fresh):
            previous = existing.get(key)
            if previous is None:
                report.added.append(key)
            elif previous != fresh[key]:
                report.updated.append(key)
            else:
                report.unchanged.append(key)
        report.removed = sorted(set(existing) - set(fresh))

        if report.total != len(fresh) or len(existing) - len(report.removed) != len(
            report.updated
        ) + len(report.unchanged):
            raise MergeConflict(f"Merge accounting mismatch for {username}")

        self._write(username, fresh)
        LOGGER.info(
            "Merged %s: %d added, %d updated, %d unchanged, %d removed",
            username,
            len(report.added),
            len(report.updated),
            len(report.unchanged),
            len(report.removed),
        )
        return report

    def invalidate(self, username: str) -> bool:
        """Delete the stored collection; returns whether one existed."""
        removed = remove_file(self.path_for(username))
        if removed:
            LOGGER.info("Invalidated cache for %s", username)
        return removed
