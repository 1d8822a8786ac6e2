"""
Ingestion CLI Commands
======================

CLI commands for running and inspecting the release ingestion pipeline.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from vinyl_drop.ingestion.adapters import get_adapter_info, list_adapters
from vinyl_drop.ingestion.jobs import (
    JobStatus,
    enqueue_enrichment,
    enqueue_ingestion,
    enrich_sync,
    get_job_status,
    ingest_sources_sync,
)
from vinyl_drop.ingestion.registry import get_default_registry

console = Console()
ingest_app = typer.Typer(help="Ingestion pipeline commands")
sources_app = typer.Typer(help="Source management commands")
jobs_app = typer.Typer(help="Job management commands")

ingest_app.add_typer(sources_app, name="sources")
ingest_app.add_typer(jobs_app, name="jobs")


def _redis_hint() -> None:
    rprint("\nMake sure Redis is running:")
    rprint("  docker run -d -p 6379:6379 redis")


@ingest_app.command("run")
def run_ingestion(
    sources: Optional[list[str]] = typer.Option(
        None, "--source", "-s", help="Source name to ingest (repeatable; default: all enabled)"
    ),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum postings per source"),
    sync: bool = typer.Option(False, "--sync", help="Run synchronously (blocking)"),
) -> None:
    """
    Run the ingestion pipeline.

    Examples:
        vinyl-drop ingest run --sync
        vinyl-drop ingest run -s vinyl-releases -l 25 --sync
    """
    registry = get_default_registry()

    for name in sources or []:
        if registry.get_source(name) is None:
            rprint(f"[red]Error:[/red] Source '{name}' not found")
            rprint("\nAvailable sources:")
            for s in registry.list_sources():
                status = "[green]enabled[/green]" if s.enabled else "[yellow]disabled[/yellow]"
                rprint(f"  • {s.name} ({status})")
            raise typer.Exit(1)

    names = sources or [s.name for s in registry.list_enabled_sources()]
    rprint(f"\n[bold]Starting ingestion for:[/bold] {', '.join(names) or 'no sources'}")
    if limit:
        rprint(f"  Limit per source: {limit}")

    if sync:
        rprint("\n[dim]Running synchronously...[/dim]\n")

        with console.status("[bold blue]Ingesting...[/bold blue]"):
            result = asyncio.run(ingest_sources_sync(sources or None, limit))

        _display_job_result(result.to_dict())

        if result.status == JobStatus.FAILED:
            raise typer.Exit(1)
    else:
        rprint("\n[dim]Enqueueing job for async processing...[/dim]")

        try:
            job_id = asyncio.run(enqueue_ingestion(sources or None, limit))
        except Exception as e:
            rprint(f"\n[red]Error:[/red] Failed to enqueue job: {e}")
            _redis_hint()
            raise typer.Exit(1)

        rprint("\n[green]Job enqueued successfully![/green]")
        rprint(f"Job ID: [bold]{job_id}[/bold]")
        rprint("\nCheck status with:")
        rprint(f"  vinyl-drop ingest jobs status {job_id}")


@ingest_app.command("enrich")
def run_enrichment(
    limit: int = typer.Option(50, "--limit", "-l", help="Maximum releases to look up"),
    sync: bool = typer.Option(False, "--sync", help="Run synchronously (blocking)"),
) -> None:
    """
    Fill missing covers, prices and labels from Discogs.

    Examples:
        vinyl-drop ingest enrich --limit 20 --sync
    """
    if sync:
        with console.status("[bold blue]Enriching from Discogs...[/bold blue]"):
            result = asyncio.run(enrich_sync(limit))

        _display_enrichment_result(result.to_dict())

        if result.status == JobStatus.FAILED:
            raise typer.Exit(1)
    else:
        try:
            job_id = asyncio.run(enqueue_enrichment(limit))
        except Exception as e:
            rprint(f"\n[red]Error:[/red] Failed to enqueue job: {e}")
            _redis_hint()
            raise typer.Exit(1)

        rprint("\n[green]Job enqueued successfully![/green]")
        rprint(f"Job ID: [bold]{job_id}[/bold]")


@ingest_app.command("worker")
def start_worker(
    burst: bool = typer.Option(False, "--burst", help="Run in burst mode (exit when queue empty)"),
) -> None:
    """
    Start the ingestion worker.

    The worker processes queued ingestion and enrichment jobs from Redis.

    Examples:
        vinyl-drop ingest worker
        vinyl-drop ingest worker --burst
    """
    from arq import run_worker

    from vinyl_drop.ingestion.jobs import WorkerSettings

    rprint("[bold]Starting ingestion worker...[/bold]")
    rprint("Press Ctrl+C to stop\n")

    try:
        run_worker(WorkerSettings, burst=burst)
    except Exception as e:
        rprint(f"[red]Error:[/red] Worker failed: {e}")
        _redis_hint()
        raise typer.Exit(1)


# Sources subcommands


@sources_app.command("list")
def list_sources(
    all_sources: bool = typer.Option(False, "--all", "-a", help="Show all sources including disabled"),
) -> None:
    """
    List configured ingestion sources.

    Examples:
        vinyl-drop ingest sources list
        vinyl-drop ingest sources list --all
    """
    registry = get_default_registry()
    sources = registry.list_sources() if all_sources else registry.list_enabled_sources()

    if not sources:
        rprint("[yellow]No sources configured[/yellow]")
        rprint("\nAdd sources to config/sources.yaml")
        return

    table = Table(title="Ingestion Sources")
    table.add_column("Name", style="bold")
    table.add_column("Adapter")
    table.add_column("Target")
    table.add_column("Limit", justify="right")
    table.add_column("Status")
    table.add_column("Rate Limit")

    for source in sources:
        status = "[green]enabled[/green]" if source.enabled else "[yellow]disabled[/yellow]"
        subreddit = source.custom_config.get("subreddit")
        target = f"r/{subreddit}" if subreddit else source.domain
        rate = f"{source.rate_limit.requests_per_second}/s"
        table.add_row(source.name, source.adapter, target, str(source.limit), status, rate)

    console.print(table)


@sources_app.command("show")
def show_source(
    name: str = typer.Argument(..., help="Source name"),
) -> None:
    """
    Show detailed information about a source.

    Examples:
        vinyl-drop ingest sources show vgm-vinyl
    """
    registry = get_default_registry()
    source = registry.get_source(name)

    if source is None:
        rprint(f"[red]Error:[/red] Source '{name}' not found")
        raise typer.Exit(1)

    status = "[green]enabled[/green]" if source.enabled else "[yellow]disabled[/yellow]"

    rprint(f"\n[bold]Source: {source.name}[/bold]")
    rprint(f"  Status: {status}")
    rprint(f"  Domain: {source.domain}")
    rprint(f"  Adapter: {source.adapter}")
    rprint(f"  Limit: {source.limit}")
    if source.description:
        rprint(f"  Description: {source.description}")

    rprint("\n[bold]Rate Limiting:[/bold]")
    rprint(f"  Requests/second: {source.rate_limit.requests_per_second}")
    rprint(f"  Burst limit: {source.rate_limit.burst_limit}")

    if source.custom_config:
        rprint("\n[bold]Adapter Settings:[/bold]")
        for key, value in source.custom_config.items():
            if key in ("consumer_key", "consumer_secret"):
                value = "****"
            elif isinstance(value, list):
                value = ", ".join(str(v) for v in value)
            rprint(f"  {key}: {value}")

    adapter_info = get_adapter_info(source.adapter)
    if adapter_info:
        rprint("\n[bold]Adapter Info:[/bold]")
        rprint(f"  Name: {adapter_info['name']}")
        rprint(f"  Version: {adapter_info['version']}")
        rprint(f"  Class: {adapter_info['class']}")


@sources_app.command("adapters")
def list_source_adapters() -> None:
    """
    List available adapters.

    Examples:
        vinyl-drop ingest sources adapters
    """
    adapters = list_adapters()

    if not adapters:
        rprint("[yellow]No adapters registered[/yellow]")
        return

    table = Table(title="Available Adapters")
    table.add_column("Name", style="bold")
    table.add_column("Version")
    table.add_column("Class")

    for adapter_name in adapters:
        info = get_adapter_info(adapter_name)
        if info:
            table.add_row(info["name"], info["version"], info["class"])

    console.print(table)


# Jobs subcommands


@jobs_app.command("status")
def job_status(
    job_id: str = typer.Argument(..., help="Job ID to check"),
) -> None:
    """
    Check the status of a queued job.

    Examples:
        vinyl-drop ingest jobs status abc123
    """
    try:
        result = asyncio.run(get_job_status(job_id))
    except Exception as e:
        rprint(f"[red]Error:[/red] Failed to get job status: {e}")
        _redis_hint()
        raise typer.Exit(1)

    if result is None:
        rprint(f"[yellow]Job '{job_id}' not found[/yellow]")
        raise typer.Exit(1)

    rprint(f"\n[bold]Job: {job_id}[/bold]")
    rprint(f"  Queue status: {result.get('status', 'unknown')}")

    job_result = result.get("result")
    if isinstance(job_result, dict):
        if "sources" in job_result:
            _display_job_result(job_result)
        else:
            _display_enrichment_result(job_result)


def _status_line(result: dict) -> None:
    status = result.get("status", "unknown")
    status_color = {
        "completed": "green",
        "running": "blue",
        "pending": "yellow",
        "failed": "red",
    }.get(status, "white")

    rprint("\n[bold]Results:[/bold]")
    rprint(f"  Status: [{status_color}]{status}[/{status_color}]")
    if result.get("duration_seconds"):
        rprint(f"  Duration: {result['duration_seconds']:.1f}s")


def _display_errors(errors: list[str]) -> None:
    if errors:
        rprint(f"\n[bold red]Errors ({len(errors)}):[/bold red]")
        for error in errors[:10]:  # Show first 10
            rprint(f"  • {error}")
        if len(errors) > 10:
            rprint(f"  ... and {len(errors) - 10} more")


def _display_job_result(result: dict) -> None:
    """Display an ingestion result as a per-source table."""
    _status_line(result)

    table = Table(title="Sources")
    table.add_column("Source", style="bold")
    table.add_column("Fetched", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Inserted", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Rejected", justify="right")
    table.add_column("Status")

    errors = list(result.get("errors", []))
    for source in result.get("sources", []):
        status = "[red]failed[/red]" if source.get("failed") else "[green]ok[/green]"
        table.add_row(
            source["source_name"],
            str(source.get("fetched", 0)),
            str(source.get("skipped", 0)),
            str(source.get("inserted", 0)),
            str(source.get("updated", 0)),
            str(source.get("rejected", 0)),
            status,
        )
        errors.extend(f"{source['source_name']}: {e}" for e in source.get("errors", []))

    console.print(table)
    rprint(
        f"\n[bold]Total:[/bold] {result.get('inserted', 0)} inserted, "
        f"{result.get('updated', 0)} updated ({result.get('total', 0)} written)"
    )
    _display_errors(errors)


def _display_enrichment_result(result: dict) -> None:
    """Display an enrichment result."""
    _status_line(result)

    rprint("\n[bold]Statistics:[/bold]")
    rprint(f"  Examined: {result.get('examined', 0)}")
    rprint(f"  Enriched: {result.get('enriched', 0)}")
    rprint(f"  Failed: {result.get('failed', 0)}")
    _display_errors(result.get("errors", []))
