"""Core gh-stars data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping

from ghstars.errors import RecordParseError


def _parse_timestamp(value: Any, field_name: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise RecordParseError(f"{field_name}: expected an ISO timestamp, got {value!r}")
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise RecordParseError(f"{field_name}: invalid timestamp {value!r}") from exc


def _parse_count(value: Any, field_name: str, *, required: bool = True) -> int | None:
    if value is None:
        return 0 if required else None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise RecordParseError(f"{field_name}: expected a non-negative integer, got {value!r}")
    return value


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return str(value)
    return value or None


def _format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True, slots=True)
class RepositoryRecord:
    """A starred repository as cached for one user.

    Records are immutable; a refetch replaces them wholesale. Equality covers
    every attribute, so any upstream change is seen as an update.
    """

    owner: str
    name: str
    url: str
    description: str | None = None
    language: str | None = None
    stars: int = 0
    forks: int = 0
    open_issues: int | None = None
    homepage: str | None = None
    topics: tuple[str, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None
    pushed_at: datetime | None = None
    starred_at: datetime | None = None

    @property
    def key(self) -> str:
        return f"{self.owner}/{self.name}"

    def embeddable_text(self) -> str:
        """Text fed to the embedding model: name, description, topics, language."""
        parts = [self.name]
        if self.description:
            parts.append(self.description)
        parts.extend(self.topics)
        if self.language:
            parts.append(self.language)
        return " ".join(parts)

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "RepositoryRecord":
        """Parse a GitHub API object into a record.

        Accepts a bare repository object or the ``{"starred_at", "repo"}``
        envelope returned for the ``star+json`` media type.
        """
        if not isinstance(payload, Mapping):
            raise RecordParseError(f"expected a JSON object, got {type(payload).__name__}")

        starred_at = None
        repo = payload
        if isinstance(payload.get("repo"), Mapping):
            starred_at = payload.get("starred_at")
            repo = payload["repo"]

        name = repo.get("name")
        owner_obj = repo.get("owner")
        owner = owner_obj.get("login") if isinstance(owner_obj, Mapping) else None
        full_name = repo.get("full_name")
        if (not owner or not name) and isinstance(full_name, str) and "/" in full_name:
            owner, name = full_name.split("/", 1)
        if not isinstance(owner, str) or not owner or not isinstance(name, str) or not name:
            raise RecordParseError(f"repository payload without owner/name: {full_name!r}")

        topics = repo.get("topics") or []
        if not isinstance(topics, list) or not all(isinstance(t, str) for t in topics):
            raise RecordParseError(f"{owner}/{name}: topics must be a list of strings")

        return cls(
            owner=owner,
            name=name,
            url=repo.get("html_url") or f"https://github.com/{owner}/{name}",
            description=_optional_str(repo.get("description")),
            language=_optional_str(repo.get("language")),
            stars=_parse_count(repo.get("stargazers_count"), "stargazers_count"),
            forks=_parse_count(repo.get("forks_count"), "forks_count"),
            open_issues=_parse_count(repo.get("open_issues_count"), "open_issues_count", required=False),
            homepage=_optional_str(repo.get("homepage")),
            topics=tuple(sorted(set(topics))),
            created_at=_parse_timestamp(repo.get("created_at"), "created_at"),
            updated_at=_parse_timestamp(repo.get("updated_at"), "updated_at"),
            pushed_at=_parse_timestamp(repo.get("pushed_at"), "pushed_at"),
            starred_at=_parse_timestamp(starred_at, "starred_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "name": self.name,
            "url": self.url,
            "description": self.description,
            "language": self.language,
            "stars": self.stars,
            "forks": self.forks,
            "open_issues": self.open_issues,
            "homepage": self.homepage,
            "topics": list(self.topics),
            "created_at": _format_timestamp(self.created_at),
            "updated_at": _format_timestamp(self.updated_at),
            "pushed_at": _format_timestamp(self.pushed_at),
            "starred_at": _format_timestamp(self.starred_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RepositoryRecord":
        """Inverse of :meth:`to_dict`, used when reading the cache file."""
        try:
            return cls(
                owner=data["owner"],
                name=data["name"],
                url=data["url"],
                description=data.get("description"),
                language=data.get("language"),
                stars=_parse_count(data.get("stars"), "stars"),
                forks=_parse_count(data.get("forks"), "forks"),
                open_issues=_parse_count(data.get("open_issues"), "open_issues", required=False),
                homepage=data.get("homepage"),
                topics=tuple(data.get("topics") or ()),
                created_at=_parse_timestamp(data.get("created_at"), "created_at"),
                updated_at=_parse_timestamp(data.get("updated_at"), "updated_at"),
                pushed_at=_parse_timestamp(data.get("pushed_at"), "pushed_at"),
                starred_at=_parse_timestamp(data.get("starred_at"), "starred_at"),
            )
        except KeyError as exc:
            raise RecordParseError(f"cached record missing field {exc.args[0]!r}") from exc


@dataclass(slots=True)
class MergeReport:
    """Outcome of merging a fetch into a user's cache."""

    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    embedded: int = 0
    embedding_skipped: int = 0
    embedding_failed: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.removed)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.updated) + len(self.unchanged)


@dataclass(slots=True)
class CacheSummary:
    """Per-user cache overview."""

    username: str
    repositories: int
    fetched_at: datetime | None
