"""VinylDrop CLI using Typer."""

import logging
import os
from pathlib import Path

import typer
from dotenv import load_dotenv

from vinyl_drop import __version__
from vinyl_drop.cli.ingest import ingest_app
from vinyl_drop.cli.releases import releases_app

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

app = typer.Typer(
    name="vinyl-drop",
    help="VinylDrop - Aggregate vinyl release postings from Reddit and Discogs",
    add_completion=False,
)
app.add_typer(ingest_app, name="ingest")
app.add_typer(releases_app, name="releases")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """VinylDrop command-line interface."""
    setup_logging(verbose)


@app.command()
def init_db(
    migrate: bool = typer.Option(
        False, "--migrate", help="Run Alembic migrations instead of create_all"
    ),
) -> None:
    """Initialize the database (create tables)."""
    from vinyl_drop.db.engine import init_db as db_init
    from vinyl_drop.db.engine import run_migrations

    typer.echo("Initializing database...")
    if migrate:
        run_migrations()
    else:
        db_init()
    typer.echo("Database initialized successfully!")


@app.command()
def version() -> None:
    """Show the VinylDrop version."""
    typer.echo(f"VinylDrop v{__version__}")


@app.command()
def check_config() -> None:
    """Check the current configuration status."""
    typer.echo("VinylDrop Configuration")
    typer.echo("=" * 40)

    # Check .env file
    env_found = False
    for _env_path in _env_paths:
        if _env_path.exists():
            typer.echo(f"  .env file: {_env_path}")
            env_found = True
            break
    if not env_found:
        typer.echo("  .env file: Not found")

    # Check database
    from vinyl_drop.db.engine import get_database_url

    typer.echo(f"  Database: {get_database_url()}")

    # Check sources
    from vinyl_drop.ingestion.registry import get_default_registry

    registry = get_default_registry()
    enabled = registry.list_enabled_sources()
    typer.echo(f"  Sources config: {registry.config_path or 'Not found'}")
    typer.echo(f"  Enabled sources: {', '.join(s.name for s in enabled) or 'none'}")

    # Check Discogs credentials
    if os.environ.get("DISCOGS_CONSUMER_KEY") and os.environ.get("DISCOGS_CONSUMER_SECRET"):
        typer.echo("  Discogs: credentials configured")
    else:
        typer.echo("  Discogs: no credentials (unauthenticated requests are rate limited harder)")

    redis_host = os.environ.get("REDIS_HOST", "localhost")
    redis_port = os.environ.get("REDIS_PORT", "6379")
    typer.echo(f"  Job queue: redis://{redis_host}:{redis_port}")


if __name__ == "__main__":
    app()
