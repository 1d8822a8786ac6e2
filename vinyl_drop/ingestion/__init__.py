"""
VinylDrop Ingestion Framework
=============================

This package turns vinyl release postings from external sources into
deduplicated release rows.

Pipeline Stages:
1. Fetch - Adapters pull postings through the rate-limited crawler
2. Filter - Source-level tag filters drop postings before parsing
3. Parse - Titles are normalized into artist, album, formats, price, genres
4. Merge - Candidates are upserted with fill-only merge semantics
5. Enrich - Discogs lookups fill gaps in Reddit rows
"""

from vinyl_drop.ingestion.registry import (
    GlobalConfig,
    RateLimitConfig,
    SourceConfig,
    SourceRegistry,
    get_default_registry,
)
from vinyl_drop.ingestion.crawler import (
    Crawler,
    FetchResult,
    TokenBucket,
)
from vinyl_drop.ingestion.normalizer import (
    ParsedTitle,
    TitleNormalizer,
)
from vinyl_drop.ingestion.merge import (
    MergeEngine,
    StoreUnavailableError,
    UpsertOutcome,
)
from vinyl_drop.ingestion.jobs import (
    EnrichmentResult,
    JobResult,
    JobStatus,
    SourceRunResult,
    enqueue_ingestion,
    enrich_releases,
    get_job_status,
    run_ingestion,
)

__all__ = [
    # Registry
    "SourceRegistry",
    "SourceConfig",
    "RateLimitConfig",
    "GlobalConfig",
    "get_default_registry",
    # Crawler
    "Crawler",
    "FetchResult",
    "TokenBucket",
    # Normalizer
    "TitleNormalizer",
    "ParsedTitle",
    # Merge
    "MergeEngine",
    "StoreUnavailableError",
    "UpsertOutcome",
    # Jobs
    "run_ingestion",
    "enrich_releases",
    "enqueue_ingestion",
    "get_job_status",
    "JobResult",
    "JobStatus",
    "SourceRunResult",
    "EnrichmentResult",
]
