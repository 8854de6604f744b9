"""GitHub REST API client for starred repositories."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import requests

from ghstars.config import GITHUB_API_URL
from ghstars.errors import AuthRequired, NetworkError, NotFound, RateLimited, RecordParseError
from ghstars.models import RepositoryRecord

logger = logging.getLogger(__name__)

USER_AGENT = "gh-stars-cli"
STAR_MEDIA_TYPE = "application/vnd.github.star+json"


def _token_from_gh_cli() -> Optional[str]:
    """Ask the GitHub CLI for its stored token, if it is installed and logged in."""
    gh = shutil.which("gh")
    if gh is None:
        return None
    try:
        completed = subprocess.run(
            [gh, "auth", "token"], capture_output=True, text=True, timeout=10, check=False
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug(f"gh auth token failed: {exc}")
        return None
    token = completed.stdout.strip()
    return token if completed.returncode == 0 and token else None


def resolve_token(explicit: Optional[str] = None) -> Optional[str]:
    """Token precedence: explicit value, GITHUB_TOKEN, GH_TOKEN, then `gh auth token`."""
    if explicit:
        return explicit
    for name in ("GITHUB_TOKEN", "GH_TOKEN"):
        value = os.getenv(name)
        if value:
            return value
    return _token_from_gh_cli()


class GitHubClient:
    """Client for the `/users/{user}/starred` endpoint.

    The cursor is the page number; the next cursor is derived from the
    ``Link: rel="next"`` header. No retries happen here: rate limiting and
    transport failures are raised to the caller.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        *,
        api_url: str = GITHUB_API_URL,
        per_page: int = 100,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.per_page = min(max(per_page, 1), 100)
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {
            "Accept": STAR_MEDIA_TYPE,
            "User-Agent": USER_AGENT,
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            self.headers["Authorization"] = f"Bearer {self.token}"

    @property
    def authenticated(self) -> bool:
        return bool(self.token)

    def fetch_starred_page(
        self, username: str, cursor: Optional[int] = None
    ) -> Tuple[List[RepositoryRecord], Optional[int]]:
        """
        Fetch one page of a user's stars.

        Args:
            username: GitHub login whose stars are listed.
            cursor: Page number to fetch; None means the first page.

        Returns:
            Tuple of (records on this page, next cursor or None when last page).

        Raises:
            AuthRequired, RateLimited, NotFound, NetworkError
        """
        page = cursor or 1
        url = f"{self.api_url}/users/{username}/starred"
        params = {"per_page": self.per_page, "page": page}

        try:
            response = self.session.get(url, params=params, headers=self.headers, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            raise NetworkError(f"Request to {url} failed: {exc}") from exc

        self._raise_for_status(response, username)

        try:
            payload = response.json()
        except ValueError as exc:
            raise NetworkError(f"GitHub returned invalid JSON for page {page}: {exc}") from exc
        if not isinstance(payload, list):
            raise NetworkError(f"Unexpected response for page {page}: expected a list")

        records: List[RepositoryRecord] = []
        for item in payload:
            try:
                records.append(RepositoryRecord.from_api(item))
            except RecordParseError as exc:
                logger.warning(f"Skipping malformed repository on page {page}: {exc}")

        next_page = response.links.get("next")
        next_cursor = page + 1 if next_page and payload else None
        logger.debug(f"Fetched page {page} for {username}: {len(records)} repositories")
        return records, next_cursor

    def _raise_for_status(self, response: requests.Response, username: str) -> None:
        status = response.status_code
        if status == 200:
            return
        if status == 401:
            raise AuthRequired("Authentication failed. Check your GitHub token.")
        if status in (403, 429):
            remaining = response.headers.get("X-RateLimit-Remaining")
            if status == 429 or remaining == "0":
                reset = response.headers.get("X-RateLimit-Reset")
                reset_at = (
                    datetime.fromtimestamp(int(reset), tz=timezone.utc)
                    if reset and reset.isdigit()
                    else None
                )
                raise RateLimited("GitHub API rate limit exceeded.", reset_at=reset_at)
            if not self.authenticated:
                raise AuthRequired(f"Forbidden: {response.text[:200]}")
            raise NetworkError(f"Forbidden: {response.text[:200]}")
        if status == 404:
            raise NotFound(
                f"GitHub user {username!r} does not exist.",
                hint="Check the spelling of the username.",
            )
        raise NetworkError(f"GitHub API error: {status} - {response.text[:200]}")
