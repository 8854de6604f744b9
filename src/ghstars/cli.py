"""Command line interface for gh-stars."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence

import typer
from rich.console import Console
from rich.table import Table

from ghstars.config import AppConfig
from ghstars.errors import GhStarsError
from ghstars.index.search import SearchResult
from ghstars.models import RepositoryRecord
from ghstars.service import StarsService


console = Console()
app = typer.Typer(help="gh-stars - cache and search your GitHub stars")

CacheDirOption = typer.Option(
    None, "--cache-dir", envvar="GH_STARS_CACHE_DIR", help="Cache directory"
)
ModelOption = typer.Option(
    AppConfig().model_name, "--model", envvar="GH_STARS_MODEL", help="Sentence-transformer model name"
)
UsersOption = typer.Option(
    None, "--user", "-u", envvar="GH_STARS_USER", help="Whose stars to use (repeatable)"
)
AllOption = typer.Option(False, "--all", help="Use every cached user")
LanguageOption = typer.Option(
    None, "--language", "-l", help="Language filter, comma separated (e.g. rust,go)"
)
LimitOption = typer.Option(30, "--limit", "-n", help="Maximum number of results (0 = all)")
SemanticOption = typer.Option(False, "--semantic", "-s", help="Rank by embedding similarity")
HybridOption = typer.Option(
    False, "--hybrid", "-H", help="Keyword hits first, then semantic neighbours"
)
VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose logging")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _build_service(
    cache_dir: Optional[Path], model: str, token: Optional[str] = None
) -> StarsService:
    config = AppConfig(
        cache_dir=cache_dir if cache_dir is not None else AppConfig().cache_dir,
        model_name=model,
    )
    return StarsService(config, token=token)


def _target_users(users: Optional[List[str]], all_users: bool) -> Optional[List[str]]:
    if all_users:
        return None
    if not users:
        raise typer.BadParameter("Pass --user NAME (or set GH_STARS_USER), or use --all.")
    return users


def _fail(exc: GhStarsError) -> typer.Exit:
    console.print(f"[red]Error:[/red] {exc}")
    if exc.hint:
        console.print(f"[dim]{exc.hint}[/dim]")
    return typer.Exit(code=1)


def _render_results(results: Sequence[SearchResult], *, show_score: bool) -> None:
    if not results:
        console.print("[yellow]No repositories found.[/yellow]")
        return

    multi_user = len({result.matched_user for result in results}) > 1
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("No.", justify="right")
    table.add_column("Repository")
    table.add_column("Language")
    table.add_column("Stars", justify="right")
    if show_score:
        table.add_column("Score", justify="right")
    if multi_user:
        table.add_column("Starred by")
    table.add_column("Description")

    for result in results:
        record = result.record
        row = [
            str(result.display_number),
            record.key,
            record.language or "N/A",
            str(record.stars),
        ]
        if show_score:
            row.append(f"{result.score:.4f}")
        if multi_user:
            row.append(result.matched_user)
        row.append(" ".join((record.description or "").split())[:80])
        table.add_row(*row)

    console.print(table)
    console.print("Use 'gh-stars info <number>' with the same options for details.")


def _render_record(record: RepositoryRecord, matched_user: str) -> None:
    console.print(f"[bold]{record.key}[/bold]")
    console.print(f"URL: {record.url}")
    if record.description:
        console.print(f"Description: {record.description}")
    if record.homepage:
        console.print(f"Homepage: {record.homepage}")
    console.print(f"Language: {record.language or 'N/A'}")
    console.print(f"Stars: {record.stars}")
    console.print(f"Forks: {record.forks}")
    if record.open_issues is not None:
        console.print(f"Open issues: {record.open_issues}")
    if record.topics:
        console.print(f"Topics: {', '.join(record.topics)}")
    if record.created_at:
        console.print(f"Created: {record.created_at.isoformat()}")
    if record.updated_at:
        console.print(f"Last updated: {record.updated_at.isoformat()}")
    if record.pushed_at:
        console.print(f"Last push: {record.pushed_at.isoformat()}")
    if record.starred_at:
        console.print(f"Starred: {record.starred_at.isoformat()} by {matched_user}")
    else:
        console.print(f"Starred by: {matched_user}")


@app.command()
def fetch(
    username: str = typer.Argument(..., help="GitHub username"),
    force: bool = typer.Option(False, "--force", "-f", help="Discard the cache and rebuild it"),
    token: Optional[str] = typer.Option(
        None, "--token", "-t", help="GitHub API token (overrides GITHUB_TOKEN)"
    ),
    cache_dir: Optional[Path] = CacheDirOption,
    model: str = ModelOption,
    verbose: bool = VerboseOption,
) -> None:
    """Fetch and cache stars for a GitHub user."""
    _setup_logging(verbose)
    service = _build_service(cache_dir, model, token)

    console.print(f"Fetching stars for [bold]{username}[/bold]...")
    try:
        report = service.fetch(username, force=force)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except GhStarsError as exc:
        raise _fail(exc) from exc

    if not report.changed:
        console.print("Already up to date.")
    console.print(
        f"Added: {len(report.added)}, updated: {len(report.updated)}, "
        f"unchanged: {len(report.unchanged)}, removed: {len(report.removed)}"
    )
    console.print(
        f"Embedded: {report.embedded}, skipped: {report.embedding_skipped}, "
        f"failed: {report.embedding_failed}"
    )
    if report.embedding_failed:
        console.print(
            "[yellow]Some embeddings could not be generated; "
            "semantic search will miss those repositories.[/yellow]"
        )


@app.command("list")
def list_stars(
    users: Optional[List[str]] = UsersOption,
    all_users: bool = AllOption,
    language: Optional[str] = LanguageOption,
    limit: int = LimitOption,
    cache_dir: Optional[Path] = CacheDirOption,
    model: str = ModelOption,
    verbose: bool = VerboseOption,
) -> None:
    """List cached stars, most recently starred first."""
    _setup_logging(verbose)
    service = _build_service(cache_dir, model)
    try:
        results = service.list(_target_users(users, all_users), language, limit)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except GhStarsError as exc:
        raise _fail(exc) from exc
    _render_results(results, show_score=False)


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    users: Optional[List[str]] = UsersOption,
    all_users: bool = AllOption,
    language: Optional[str] = LanguageOption,
    semantic: bool = SemanticOption,
    hybrid: bool = HybridOption,
    limit: int = LimitOption,
    cache_dir: Optional[Path] = CacheDirOption,
    model: str = ModelOption,
    verbose: bool = VerboseOption,
) -> None:
    """Search cached stars by keyword, by meaning with --semantic, or both with --hybrid."""
    _setup_logging(verbose)
    service = _build_service(cache_dir, model)
    try:
        results = service.search(
            _target_users(users, all_users),
            query,
            language,
            semantic=semantic,
            hybrid=hybrid,
            limit=limit,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except GhStarsError as exc:
        raise _fail(exc) from exc
    _render_results(results, show_score=True)


@app.command()
def info(
    identifier: str = typer.Argument(..., help="owner/name, or a number from list/search"),
    users: Optional[List[str]] = UsersOption,
    all_users: bool = AllOption,
    query: str = typer.Option("", "--query", "-q", help="Search the number refers to"),
    language: Optional[str] = LanguageOption,
    semantic: bool = SemanticOption,
    hybrid: bool = HybridOption,
    limit: int = LimitOption,
    cache_dir: Optional[Path] = CacheDirOption,
    model: str = ModelOption,
    verbose: bool = VerboseOption,
) -> None:
    """Show details about one repository.

    Numbers are resolved against the listing the same options produce.
    """
    _setup_logging(verbose)
    service = _build_service(cache_dir, model)
    try:
        targets = _target_users(users, all_users)
        if query:
            service.search(
                targets, query, language, semantic=semantic, hybrid=hybrid, limit=limit
            )
        else:
            service.list(targets, language, limit)
        result = service.info_result(identifier)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    except GhStarsError as exc:
        raise _fail(exc) from exc
    _render_record(result.record, result.matched_user)


@app.command()
def users(
    cache_dir: Optional[Path] = CacheDirOption,
    model: str = ModelOption,
) -> None:
    """Show which users have cached stars."""
    service = _build_service(cache_dir, model)
    try:
        summaries = service.users()
    except GhStarsError as exc:
        raise _fail(exc) from exc
    if not summaries:
        console.print("[yellow]No cached users.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("User")
    table.add_column("Repositories", justify="right")
    table.add_column("Fetched")
    for summary in summaries:
        fetched = summary.fetched_at.strftime("%Y-%m-%d %H:%M") if summary.fetched_at else "-"
        table.add_row(summary.username, str(summary.repositories), fetched)
    console.print(table)


if __name__ == "__main__":  # pragma: no cover
    app()
