"""
Release CLI Commands
====================

CLI commands for browsing and maintaining stored releases.
"""

from __future__ import annotations

from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from vinyl_drop.core.enums import SortOrder
from vinyl_drop.db.engine import get_session
from vinyl_drop.db.repositories import ReleaseRepository
from vinyl_drop.ingestion.normalizer import TitleNormalizer

console = Console()
releases_app = typer.Typer(help="Release browsing and maintenance commands")


@releases_app.command("list")
def list_releases(
    genre: Optional[str] = typer.Option(None, "--genre", "-g", help="Exact genre tag"),
    format: Optional[str] = typer.Option(None, "--format", "-f", help="Format substring, e.g. 180g"),
    search: Optional[str] = typer.Option(None, "--search", "-q", help="Search artist, album, label"),
    sort: SortOrder = typer.Option(SortOrder.DATE, "--sort", help="Sort order"),
    limit: int = typer.Option(20, "--limit", "-l", help="Page size"),
    offset: int = typer.Option(0, "--offset", help="Rows to skip"),
) -> None:
    """
    List stored releases.

    Examples:
        vinyl-drop releases list --genre Rock --sort price
        vinyl-drop releases list -q "tame impala"
    """
    with get_session() as session:
        page = ReleaseRepository(session).search(
            genre=genre,
            format=format,
            search=search,
            sort=sort,
            limit=limit,
            offset=offset,
        )

    if not page.releases:
        rprint("[yellow]No releases found[/yellow]")
        return

    table = Table(title=f"Releases ({offset + 1}-{offset + len(page.releases)} of {page.total})")
    table.add_column("Artist", style="bold")
    table.add_column("Album")
    table.add_column("Formats")
    table.add_column("Price", justify="right")
    table.add_column("Genres")
    table.add_column("Score", justify="right")
    table.add_column("Source")

    for release in page.releases:
        table.add_row(
            escape(release.artist),
            escape(release.album),
            escape(", ".join(release.formats)),
            f"${release.price}" if release.price is not None else "-",
            ", ".join(release.genres) or "-",
            str(release.reddit_score) if release.reddit_score is not None else "-",
            f"r/{release.subreddit}" if release.subreddit else release.source.value,
        )

    console.print(table)


@releases_app.command("stats")
def show_stats() -> None:
    """Show aggregate statistics over stored releases."""
    with get_session() as session:
        stats = ReleaseRepository(session).stats()

    rprint("\n[bold]Release Statistics[/bold]")
    rprint(f"  Total releases: {stats.total_releases}")
    rprint(f"  Distinct artists: {stats.total_artists}")
    rprint(f"  With price: {stats.with_price}")
    rprint(f"  With cover: {stats.with_cover}")
    if stats.avg_reddit_score is not None:
        rprint(f"  Average Reddit score: {stats.avg_reddit_score}")

    if stats.top_genres:
        table = Table(title="Top Genres")
        table.add_column("Genre", style="bold")
        table.add_column("Releases", justify="right")
        for genre, count in stats.top_genres:
            table.add_row(genre, str(count))
        console.print(table)


@releases_app.command("cleanup-stores")
def cleanup_store_names(
    yes: bool = typer.Option(False, "--yes", "-y", help="Delete without confirmation"),
) -> None:
    """
    Delete releases whose artist is really a store name.

    Titles like "Amazon - Album Name" get the retailer parsed as the
    artist; this removes those rows.
    """
    store_names = TitleNormalizer.STORE_NAMES

    with get_session() as session:
        repo = ReleaseRepository(session)
        matches = repo.list_store_name_artists(store_names)

        if not matches:
            rprint("[green]No store-name artists found[/green]")
            return

        rprint(f"\nFound {len(matches)} releases with store names as artists:")
        for release in matches[:20]:
            rprint(f"  • {escape(release.artist)} - {escape(release.album)}")
        if len(matches) > 20:
            rprint(f"  ... and {len(matches) - 20} more")

        if not yes and not typer.confirm("\nDelete these releases?"):
            rprint("Cleanup cancelled.")
            raise typer.Exit(0)

        deleted = repo.delete_store_name_artists(store_names)
        session.commit()

    rprint(f"\n[green]Deleted {len(deleted)} releases[/green]")


@releases_app.command("parse")
def parse_title(
    title: str = typer.Argument(..., help="Raw posting title"),
) -> None:
    """
    Show how a posting title is parsed.

    Examples:
        vinyl-drop releases parse "[Preorder] Tame Impala - Currents [2LP] \\$34.99"
    """
    parsed = TitleNormalizer().parse(title)

    rprint(f"\n[bold]Title:[/bold] {escape(parsed.original_title)}")
    rprint(f"  Artist: {escape(parsed.artist)}")
    rprint(f"  Album: {escape(parsed.album)}")
    formats = ", ".join(parsed.formats) or "Vinyl (default)"
    rprint(f"  Formats: {escape(formats)}")
    rprint(f"  Price: {parsed.price if parsed.price is not None else '-'}")
    rprint(f"  Genres: {', '.join(parsed.genres) or '-'}")
