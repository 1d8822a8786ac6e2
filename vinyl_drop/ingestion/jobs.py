"""
Ingestion Jobs Module
=====================

Drives ingestion runs: for each configured source, fetch postings,
filter and map them to candidates, and write each candidate through the
merge engine. Also runs the Discogs enrichment pass over Reddit rows.

Runs can execute in-process (CLI --sync) or as arq tasks backed by Redis.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from arq import create_pool
from arq.connections import RedisSettings
from arq.jobs import Job
from arq.jobs import JobStatus as ArqJobStatus
from sqlalchemy.orm import Session

from vinyl_drop.core.enums import UpsertAction
from vinyl_drop.db.engine import get_session
from vinyl_drop.db.repositories import ReleaseRepository
from vinyl_drop.ingestion.adapters import AdapterError, BaseAdapter, DiscogsAdapter, get_adapter
from vinyl_drop.ingestion.crawler import Crawler
from vinyl_drop.ingestion.merge import MergeEngine, StoreUnavailableError
from vinyl_drop.ingestion.normalizer import TitleNormalizer
from vinyl_drop.ingestion.registry import (
    RateLimitConfig,
    SourceConfig,
    SourceRegistry,
    get_default_registry,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class JobStatus(str, Enum):
    """Status of an ingestion job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SourceRunResult:
    """Tallies for one source within a run."""

    source_name: str
    fetched: int = 0
    skipped: int = 0
    inserted: int = 0
    updated: int = 0
    rejected: int = 0
    errors: list[str] = field(default_factory=list)
    failed: bool = False

    @property
    def total(self) -> int:
        """Records written (inserted + updated)."""
        return self.inserted + self.updated

    def record(self, action: UpsertAction) -> None:
        if action == UpsertAction.INSERTED:
            self.inserted += 1
        elif action == UpsertAction.UPDATED:
            self.updated += 1
        else:
            self.rejected += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_name": self.source_name,
            "fetched": self.fetched,
            "skipped": self.skipped,
            "inserted": self.inserted,
            "updated": self.updated,
            "rejected": self.rejected,
            "total": self.total,
            "errors": self.errors,
            "failed": self.failed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SourceRunResult:
        return cls(
            source_name=data["source_name"],
            fetched=data.get("fetched", 0),
            skipped=data.get("skipped", 0),
            inserted=data.get("inserted", 0),
            updated=data.get("updated", 0),
            rejected=data.get("rejected", 0),
            errors=list(data.get("errors", [])),
            failed=data.get("failed", False),
        )


@dataclass
class JobResult:
    """Result of an ingestion run over one or more sources."""

    job_id: str
    status: JobStatus
    started_at: datetime | None = None
    completed_at: datetime | None = None
    sources: list[SourceRunResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    duration_seconds: float | None = None

    @property
    def inserted(self) -> int:
        return sum(s.inserted for s in self.sources)

    @property
    def updated(self) -> int:
        return sum(s.updated for s in self.sources)

    @property
    def rejected(self) -> int:
        return sum(s.rejected for s in self.sources)

    @property
    def total(self) -> int:
        return self.inserted + self.updated

    def finish(self, status: JobStatus) -> None:
        self.status = status
        self.completed_at = _utc_now()
        if self.started_at:
            self.duration_seconds = (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "sources": [s.to_dict() for s in self.sources],
            "inserted": self.inserted,
            "updated": self.updated,
            "rejected": self.rejected,
            "total": self.total,
            "errors": self.errors,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobResult:
        return cls(
            job_id=data["job_id"],
            status=JobStatus(data["status"]),
            started_at=_parse_datetime(data.get("started_at")),
            completed_at=_parse_datetime(data.get("completed_at")),
            sources=[SourceRunResult.from_dict(s) for s in data.get("sources", [])],
            errors=list(data.get("errors", [])),
            duration_seconds=data.get("duration_seconds"),
        )


@dataclass
class EnrichmentResult:
    """Result of a Discogs enrichment run."""

    job_id: str
    status: JobStatus
    started_at: datetime | None = None
    completed_at: datetime | None = None
    examined: int = 0
    enriched: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float | None = None

    def finish(self, status: JobStatus) -> None:
        self.status = status
        self.completed_at = _utc_now()
        if self.started_at:
            self.duration_seconds = (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "examined": self.examined,
            "enriched": self.enriched,
            "failed": self.failed,
            "errors": self.errors,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EnrichmentResult:
        return cls(
            job_id=data["job_id"],
            status=JobStatus(data["status"]),
            started_at=_parse_datetime(data.get("started_at")),
            completed_at=_parse_datetime(data.get("completed_at")),
            examined=data.get("examined", 0),
            enriched=data.get("enriched", 0),
            failed=data.get("failed", 0),
            errors=list(data.get("errors", [])),
            duration_seconds=data.get("duration_seconds"),
        )


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from environment."""
    return RedisSettings(
        host=os.environ.get("REDIS_HOST", "localhost"),
        port=int(os.environ.get("REDIS_PORT", "6379")),
        database=int(os.environ.get("REDIS_DB", "0")),
    )


def build_crawler(registry: SourceRegistry) -> Crawler:
    """Create a crawler from the registry's global settings."""
    global_config = registry.global_config
    return Crawler(
        user_agent=global_config.user_agent,
        timeout=global_config.request_timeout,
        max_retries=global_config.max_retries,
    )


def resolve_sources(
    registry: SourceRegistry,
    source_names: list[str] | None,
    errors: list[str],
) -> list[SourceConfig]:
    """
    Pick the sources for a run.

    With no names, every enabled source runs in configuration order.
    Unknown or disabled names are reported in ``errors`` and skipped.
    """
    if not source_names:
        return registry.list_enabled_sources()

    sources = []
    for name in source_names:
        source = registry.get_source(name)
        if source is None:
            errors.append(f"Source '{name}' not found")
        elif not source.enabled:
            errors.append(f"Source '{name}' is disabled")
        else:
            sources.append(source)
    return sources


async def ingest_source(
    source: SourceConfig,
    adapter: BaseAdapter,
    crawler: Crawler,
    engine: MergeEngine,
    limit: int | None = None,
) -> SourceRunResult:
    """
    Ingest one source.

    Raises:
        AdapterError: If the source's postings cannot be fetched
        StoreUnavailableError: If the database cannot be reached
    """
    result = SourceRunResult(source_name=source.name)
    postings = await adapter.fetch_postings(source, crawler, limit or source.limit)
    result.fetched = len(postings)

    for posting in postings:
        try:
            if not adapter.accept_posting(posting):
                result.skipped += 1
                continue

            candidate = adapter.map_posting(posting)
            if candidate is None:
                result.skipped += 1
                continue

            validation_errors = adapter.validate_candidate(candidate)
            if validation_errors:
                result.rejected += 1
                result.errors.extend(f"{candidate.source_id}: {e}" for e in validation_errors)
                continue

            outcome = engine.upsert(candidate)
        except StoreUnavailableError:
            raise
        except Exception as e:
            logger.exception(f"Error processing posting from '{source.name}'")
            result.rejected += 1
            posting_id = posting.get("id", "?") if isinstance(posting, dict) else "?"
            result.errors.append(f"{posting_id}: {e}")
            continue

        result.record(outcome.action)
        result.errors.extend(f"{candidate.source_id}: {e}" for e in outcome.errors)

    return result


async def run_ingestion(
    session: Session,
    source_names: list[str] | None = None,
    limit: int | None = None,
    registry: SourceRegistry | None = None,
    crawler: Crawler | None = None,
    normalizer: TitleNormalizer | None = None,
    job_id: str | None = None,
) -> JobResult:
    """
    Run ingestion over one or more sources, one after another.

    A source whose fetch fails is recorded as failed and the run moves on
    to the next source. Each source's writes are committed before the
    next source is fetched.

    Args:
        session: Database session (committed per source)
        source_names: Sources to run; all enabled sources if omitted
        limit: Posting bound per source (defaults to each source's limit)
        registry: Source registry (defaults to the shared one)
        crawler: Fetcher (defaults to one built from global settings)
        normalizer: Title normalizer shared by all adapters
        job_id: Identifier recorded on the result

    Returns:
        JobResult with per-source and aggregate tallies

    Raises:
        StoreUnavailableError: If the database cannot be reached
    """
    registry = registry or get_default_registry()
    crawler = crawler or build_crawler(registry)
    normalizer = normalizer or TitleNormalizer()
    engine = MergeEngine(session, parser_version=normalizer.TABLES_VERSION)

    result = JobResult(
        job_id=job_id or str(uuid4()),
        status=JobStatus.RUNNING,
        started_at=_utc_now(),
    )

    for source in resolve_sources(registry, source_names, result.errors):
        adapter = get_adapter(source.adapter, source.custom_config, normalizer)
        if adapter is None:
            result.errors.append(f"Adapter '{source.adapter}' not found for '{source.name}'")
            continue

        logger.info(f"Ingesting source '{source.name}'...")
        try:
            source_result = await ingest_source(source, adapter, crawler, engine, limit)
        except AdapterError as e:
            logger.error(f"Source '{source.name}' failed: {e}")
            source_result = SourceRunResult(source_name=source.name, failed=True, errors=[str(e)])
        except StoreUnavailableError:
            raise
        except Exception as e:
            logger.exception(f"Source '{source.name}' failed unexpectedly")
            session.rollback()
            source_result = SourceRunResult(source_name=source.name, failed=True, errors=[str(e)])
        else:
            session.commit()

        logger.info(
            f"Source '{source.name}': {source_result.inserted} inserted, "
            f"{source_result.updated} updated, {source_result.rejected} rejected"
        )
        result.sources.append(source_result)

    result.finish(JobStatus.COMPLETED)
    logger.info(
        f"Ingestion complete: {result.inserted} inserted, {result.updated} updated, "
        f"{result.total} total"
    )
    return result


def get_enrichment_source(registry: SourceRegistry) -> SourceConfig:
    """
    Source settings used for Discogs lookups.

    Uses the first configured discogs source (enabled or not, since
    enrichment is separate from scraping), else a one-request-per-second
    default.
    """
    configured = registry.list_sources_by_adapter("discogs")
    if configured:
        return configured[0]
    return SourceConfig(
        name="discogs",
        adapter="discogs",
        domain="api.discogs.com",
        rate_limit=RateLimitConfig(requests_per_second=1.0, burst_limit=1),
    )


async def enrich_releases(
    session: Session,
    limit: int = 50,
    registry: SourceRegistry | None = None,
    crawler: Crawler | None = None,
    adapter: DiscogsAdapter | None = None,
    job_id: str | None = None,
) -> EnrichmentResult:
    """
    Fill gaps in Reddit releases from Discogs.

    Picks Reddit rows missing a cover (or with a thumbnail cover), a price
    or a label, most popular first; looks each up on Discogs and
    fill-only merges the match. Each enriched row is committed before the
    next lookup.

    Raises:
        StoreUnavailableError: If the database cannot be reached
    """
    registry = registry or get_default_registry()
    crawler = crawler or build_crawler(registry)
    source = get_enrichment_source(registry)
    adapter = adapter or DiscogsAdapter(source.custom_config)
    engine = MergeEngine(session)

    result = EnrichmentResult(
        job_id=job_id or str(uuid4()),
        status=JobStatus.RUNNING,
        started_at=_utc_now(),
    )

    releases = ReleaseRepository(session).list_enrichment_candidates(limit)
    session.commit()
    logger.info(f"Found {len(releases)} releases to enrich")

    for release in releases:
        result.examined += 1
        try:
            match = await adapter.lookup(release.artist, release.album, source, crawler)
        except AdapterError as e:
            logger.warning(f"Discogs lookup failed for {release.artist} - {release.album}: {e}")
            result.failed += 1
            result.errors.append(f"{release.artist} - {release.album}: {e}")
            continue

        if match is None:
            logger.info(f"Not found on Discogs: {release.artist} - {release.album}")
            result.failed += 1
            continue

        enriched = engine.enrich(release.id, match)
        session.commit()
        if enriched is None:
            result.failed += 1
            result.errors.append(f"{release.artist} - {release.album}: write rejected")
            continue
        result.enriched += 1

    result.finish(JobStatus.COMPLETED)
    logger.info(f"Enrichment complete: {result.enriched} enriched, {result.failed} failed")
    return result


async def ingest_sources(
    ctx: dict[str, Any],
    source_names: list[str] | None = None,
    limit: int | None = None,
) -> dict[str, Any]:
    """
    arq task: run ingestion in a fresh session.

    Args:
        ctx: arq context (contains Redis connection and job id)
        source_names: Sources to run; all enabled sources if omitted
        limit: Optional posting bound per source

    Returns:
        JobResult as dictionary
    """
    job_id = ctx.get("job_id", str(uuid4()))
    started_at = _utc_now()
    try:
        with get_session() as session:
            result = await run_ingestion(session, source_names, limit, job_id=job_id)
    except StoreUnavailableError as e:
        logger.error(f"Ingestion job {job_id} aborted: {e}")
        result = JobResult(job_id=job_id, status=JobStatus.RUNNING, started_at=started_at)
        result.errors.append(str(e))
        result.finish(JobStatus.FAILED)
    except Exception as e:
        logger.exception(f"Ingestion job failed: {e}")
        result = JobResult(job_id=job_id, status=JobStatus.RUNNING, started_at=started_at)
        result.errors.append(str(e))
        result.finish(JobStatus.FAILED)

    return result.to_dict()


async def enrich_from_discogs(ctx: dict[str, Any], limit: int = 50) -> dict[str, Any]:
    """arq task: run the Discogs enrichment pass in a fresh session."""
    job_id = ctx.get("job_id", str(uuid4()))
    started_at = _utc_now()
    try:
        with get_session() as session:
            result = await enrich_releases(session, limit, job_id=job_id)
    except Exception as e:
        logger.exception(f"Enrichment job failed: {e}")
        result = EnrichmentResult(job_id=job_id, status=JobStatus.RUNNING, started_at=started_at)
        result.errors.append(str(e))
        result.finish(JobStatus.FAILED)

    return result.to_dict()


async def ingest_sources_sync(
    source_names: list[str] | None = None,
    limit: int | None = None,
) -> JobResult:
    """
    Run ingestion in-process (without arq).

    Useful for CLI commands with --sync flag.
    """
    ctx: dict[str, Any] = {"job_id": str(uuid4())}
    return JobResult.from_dict(await ingest_sources(ctx, source_names, limit))


async def enrich_sync(limit: int = 50) -> EnrichmentResult:
    """Run the Discogs enrichment pass in-process (without arq)."""
    ctx: dict[str, Any] = {"job_id": str(uuid4())}
    return EnrichmentResult.from_dict(await enrich_from_discogs(ctx, limit))


async def enqueue_ingestion(
    source_names: list[str] | None = None,
    limit: int | None = None,
) -> str | None:
    """
    Enqueue an ingestion job for the arq worker.

    Returns:
        Job ID, or None if the queue refused the job
    """
    redis = await create_pool(get_redis_settings())
    try:
        job = await redis.enqueue_job("ingest_sources", source_names, limit)
    finally:
        await redis.close()
    return job.job_id if job else None


async def enqueue_enrichment(limit: int = 50) -> str | None:
    """Enqueue a Discogs enrichment job for the arq worker."""
    redis = await create_pool(get_redis_settings())
    try:
        job = await redis.enqueue_job("enrich_from_discogs", limit)
    finally:
        await redis.close()
    return job.job_id if job else None


async def get_job_status(job_id: str) -> dict[str, Any] | None:
    """
    Get the status of a queued job.

    Args:
        job_id: Job ID to look up

    Returns:
        Job info dict, or None if the queue has never heard of it
    """
    redis = await create_pool(get_redis_settings())
    try:
        job = Job(job_id, redis)
        status = await job.status()
        if status == ArqJobStatus.not_found:
            return None
        info = await job.result_info()
    finally:
        await redis.close()

    return {
        "job_id": job_id,
        "status": status.value,
        "result": info.result if info else None,
    }


class WorkerSettings:
    """arq worker settings."""

    functions = [ingest_sources, enrich_from_discogs]
    redis_settings = get_redis_settings()
    max_jobs = 1  # sources share rate limits; one run at a time
    job_timeout = 3600  # 1 hour
    keep_result = 86400  # 24 hours
