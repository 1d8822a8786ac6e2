"""Tests for ingestion runs and the Discogs enrichment pass."""

import tempfile
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Any

import httpx
import pytest
from sqlalchemy import delete
from sqlalchemy.orm import Session, sessionmaker

from vinyl_drop.core.enums import ReleaseSource
from vinyl_drop.core.schema import ReleaseCandidate
from vinyl_drop.db.engine import create_db_engine
from vinyl_drop.db.models import Base, ReleaseDB
from vinyl_drop.db.repositories import ReleaseRepository
from vinyl_drop.ingestion import jobs
from vinyl_drop.ingestion.adapters import DiscogsAdapter, RedditAdapter
from vinyl_drop.ingestion.crawler import Crawler
from vinyl_drop.ingestion.jobs import (
    JobResult,
    JobStatus,
    SourceRunResult,
    enrich_releases,
    get_enrichment_source,
    resolve_sources,
    run_ingestion,
)
from vinyl_drop.ingestion.merge import MergeEngine, StoreUnavailableError
from vinyl_drop.ingestion.registry import RateLimitConfig, SourceConfig, SourceRegistry

FAST_RATE_LIMIT = RateLimitConfig(requests_per_second=1000.0, burst_limit=100)


def posting(post_id: str, title: str, flair: str | None = None) -> dict[str, Any]:
    """Build a minimal Reddit posting."""
    return {
        "id": post_id,
        "title": title,
        "url": f"https://www.reddit.com/r/x/comments/{post_id}/",
        "permalink": f"/r/x/comments/{post_id}/slug/",
        "created_utc": 1700000000,
        "score": 5,
        "num_comments": 1,
        "link_flair_text": flair,
    }


VINYL_RELEASES = [
    posting("a", "Tame Impala - Currents [2LP] $34.99"),
    posting("b", "Radiohead - Kid A [Clear Vinyl]"),
    posting("c", "[Restock] tame impala - CURRENTS (180g)"),
    posting("d", ""),
]

VGM_VINYL = [
    posting("v1", "Toby Fox - Undertale [2LP]", flair="New Release"),
    posting("v2", "What are you spinning this week?", flair="Discussion"),
]

DISCOGS_DETAIL = {
    "id": 249504,
    "title": "Currents",
    "artists_sort": "Tame Impala",
    "labels": [{"name": "Modular Recordings"}],
    "released": "2015-07-17",
    "genres": ["Rock"],
    "formats": [{"name": "Vinyl", "descriptions": ["LP"]}],
    "lowest_price": 28.5,
    "images": [{"type": "primary", "uri": "https://i.discogs.com/primary.jpg"}],
    "uri": "https://www.discogs.com/release/249504",
}


def reddit_handler(request: httpx.Request) -> httpx.Response:
    """Serve canned subreddit listings."""
    listings = {
        "/r/VinylReleases/new.json": VINYL_RELEASES,
        "/r/VGMvinyl/new.json": VGM_VINYL,
    }
    if request.url.path == "/r/Broken/new.json":
        return httpx.Response(500)
    if request.url.path in listings:
        children = [{"kind": "t3", "data": p} for p in listings[request.url.path]]
        return httpx.Response(200, json={"data": {"children": children}})
    return httpx.Response(404)


def discogs_handler(request: httpx.Request) -> httpx.Response:
    """Serve canned Discogs search and detail responses."""
    if request.url.path == "/database/search":
        if request.url.params["q"] == "Tame Impala Currents":
            return httpx.Response(200, json={"results": [{"id": 249504}]})
        if request.url.params["q"].startswith("Broken"):
            return httpx.Response(500)
        return httpx.Response(200, json={"results": []})
    if request.url.path == "/releases/249504":
        return httpx.Response(200, json=DISCOGS_DETAIL)
    return httpx.Response(404)


@pytest.fixture
def session():
    """Create a database session on a temporary file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = create_db_engine(Path(tmpdir) / "test.db")
        Base.metadata.create_all(engine)
        session = sessionmaker(bind=engine)()
        yield session
        session.close()
        engine.dispose()


@pytest.fixture
def registry() -> SourceRegistry:
    """Create a registry with a failing, two healthy and one disabled source."""
    registry = SourceRegistry()
    registry.add_source(
        SourceConfig(
            name="broken",
            adapter="reddit",
            rate_limit=FAST_RATE_LIMIT,
            custom_config={"subreddit": "Broken"},
        )
    )
    registry.add_source(
        SourceConfig(
            name="vinyl-releases",
            adapter="reddit",
            rate_limit=FAST_RATE_LIMIT,
            custom_config={"subreddit": "VinylReleases"},
        )
    )
    registry.add_source(
        SourceConfig(
            name="vgm-vinyl",
            adapter="reddit",
            rate_limit=FAST_RATE_LIMIT,
            custom_config={"subreddit": "VGMvinyl", "allowed_flairs": ["New Release"]},
        )
    )
    registry.add_source(
        SourceConfig(
            name="discogs-new",
            adapter="discogs",
            enabled=False,
            rate_limit=FAST_RATE_LIMIT,
            custom_config={"request_delay": 0},
        )
    )
    return registry


@pytest.fixture
def crawler() -> Crawler:
    """Create a crawler serving canned Reddit listings."""
    return Crawler(max_retries=1, backoff_base=0, transport=httpx.MockTransport(reddit_handler))


class TestResultTypes:
    """Tests for run result tallies."""

    def test_aggregates(self) -> None:
        """Test that job totals sum the per-source tallies."""
        result = JobResult(
            job_id="j1",
            status=JobStatus.COMPLETED,
            sources=[
                SourceRunResult(source_name="a", inserted=2, updated=1),
                SourceRunResult(source_name="b", inserted=1, rejected=3),
            ],
        )
        assert result.inserted == 3
        assert result.updated == 1
        assert result.rejected == 3
        assert result.total == 4

    def test_from_dict(self) -> None:
        """Test rebuilding a result from a worker payload."""
        data = {
            "job_id": "j1",
            "status": "completed",
            "started_at": "2025-10-18T12:00:00+00:00",
            "sources": [{"source_name": "a", "inserted": 2, "failed": True}],
        }
        result = JobResult.from_dict(data)

        assert result.status == JobStatus.COMPLETED
        assert result.started_at.year == 2025
        assert result.sources[0].failed is True
        assert result.inserted == 2


class TestResolveSources:
    """Tests for choosing which sources run."""

    def test_all_enabled_in_order(self, registry: SourceRegistry) -> None:
        """Test the default selection."""
        errors: list[str] = []
        names = [s.name for s in resolve_sources(registry, None, errors)]

        assert names == ["broken", "vinyl-releases", "vgm-vinyl"]
        assert errors == []

    def test_unknown_and_disabled(self, registry: SourceRegistry) -> None:
        """Test that unknown and disabled names are reported and skipped."""
        errors: list[str] = []
        sources = resolve_sources(registry, ["nope", "discogs-new", "vgm-vinyl"], errors)

        assert [s.name for s in sources] == ["vgm-vinyl"]
        assert errors == ["Source 'nope' not found", "Source 'discogs-new' is disabled"]


class TestRunIngestion:
    """Tests for the ingestion orchestrator."""

    @pytest.mark.asyncio
    async def test_run_all_sources(
        self, session: Session, registry: SourceRegistry, crawler: Crawler
    ) -> None:
        """Test a run where one source fails and the others complete."""
        result = await run_ingestion(session, registry=registry, crawler=crawler)

        assert result.status == JobStatus.COMPLETED
        assert [s.source_name for s in result.sources] == ["broken", "vinyl-releases", "vgm-vinyl"]

        broken, releases, vgm = result.sources
        assert broken.failed is True
        assert "HTTP 500" in broken.errors[0]

        assert releases.failed is False
        assert releases.fetched == 4
        assert releases.inserted == 2
        assert releases.updated == 1
        assert releases.skipped == 1

        assert vgm.fetched == 2
        assert vgm.inserted == 1
        assert vgm.skipped == 1

        assert result.inserted == 3
        assert ReleaseRepository(session).count() == 3

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(
        self, session: Session, registry: SourceRegistry, crawler: Crawler
    ) -> None:
        """Test that ingesting the same postings again only updates."""
        await run_ingestion(session, registry=registry, crawler=crawler)
        second = await run_ingestion(session, registry=registry, crawler=crawler)

        assert second.inserted == 0
        assert second.updated == 4
        assert ReleaseRepository(session).count() == 3

    @pytest.mark.asyncio
    async def test_merged_fields(
        self, session: Session, registry: SourceRegistry, crawler: Crawler
    ) -> None:
        """Test the stored row for a title seen twice in one listing."""
        await run_ingestion(session, ["vinyl-releases"], registry=registry, crawler=crawler)

        release = ReleaseRepository(session).find_by_identity("Tame Impala", "Currents", "reddit")
        assert release is not None
        assert release.artist == "Tame Impala"
        assert release.price == Decimal("34.99")
        assert release.formats == ["180g"]
        assert release.subreddit == "VinylReleases"
        assert release.ingest_count == 2

    @pytest.mark.asyncio
    async def test_named_sources(
        self, session: Session, registry: SourceRegistry, crawler: Crawler
    ) -> None:
        """Test running only named sources, reporting bad names."""
        result = await run_ingestion(
            session, ["vgm-vinyl", "missing"], registry=registry, crawler=crawler
        )

        assert [s.source_name for s in result.sources] == ["vgm-vinyl"]
        assert result.errors == ["Source 'missing' not found"]

    @pytest.mark.asyncio
    async def test_limit_bounds_postings(
        self, session: Session, registry: SourceRegistry, crawler: Crawler
    ) -> None:
        """Test that the limit caps postings per source."""
        result = await run_ingestion(
            session, ["vinyl-releases"], limit=1, registry=registry, crawler=crawler
        )

        assert result.sources[0].fetched == 1
        assert result.inserted == 1

    @pytest.mark.asyncio
    async def test_unknown_adapter(self, session: Session, crawler: Crawler) -> None:
        """Test that a source with an unknown adapter is reported."""
        registry = SourceRegistry()
        registry.add_source(SourceConfig(name="shop", adapter="bandcamp"))

        result = await run_ingestion(session, registry=registry, crawler=crawler)

        assert result.sources == []
        assert result.errors == ["Adapter 'bandcamp' not found for 'shop'"]

    @pytest.mark.asyncio
    async def test_bad_record_rejected(
        self, session: Session, registry: SourceRegistry, crawler: Crawler, monkeypatch
    ) -> None:
        """Test that one failing posting is counted and the rest still land."""
        original = RedditAdapter.map_posting

        def flaky(self, raw: dict[str, Any]) -> ReleaseCandidate | None:
            if raw.get("id") == "b":
                raise ValueError("bad posting")
            return original(self, raw)

        monkeypatch.setattr(RedditAdapter, "map_posting", flaky)
        result = await run_ingestion(session, ["vinyl-releases"], registry=registry, crawler=crawler)

        source = result.sources[0]
        assert source.rejected == 1
        assert source.inserted == 1
        assert source.updated == 1
        assert "b: bad posting" in source.errors

    @pytest.mark.asyncio
    async def test_malformed_listing_entries(
        self, session: Session, registry: SourceRegistry
    ) -> None:
        """Test that null posting data in a filtered listing does not stop the run."""
        registry.add_source(
            SourceConfig(
                name="quarantined",
                adapter="reddit",
                rate_limit=FAST_RATE_LIMIT,
                custom_config={"subreddit": "Quarantined", "allowed_flairs": ["New Release"]},
            )
        )

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/r/Quarantined/new.json":
                return httpx.Response(200, json={"data": {"children": [{"data": None}]}})
            return reddit_handler(request)

        crawler = Crawler(max_retries=1, backoff_base=0, transport=httpx.MockTransport(handler))
        result = await run_ingestion(
            session, ["quarantined", "vinyl-releases"], registry=registry, crawler=crawler
        )

        quarantined, releases = result.sources
        assert quarantined.failed is False
        assert quarantined.fetched == 0
        assert releases.inserted == 2

    @pytest.mark.asyncio
    async def test_flair_check_error_rejected(
        self, session: Session, registry: SourceRegistry, crawler: Crawler, monkeypatch
    ) -> None:
        """Test that an error while filtering a posting only rejects that posting."""
        original = RedditAdapter.accept_posting

        def flaky(self, raw: dict[str, Any]) -> bool:
            if raw.get("id") == "v1":
                raise AttributeError("flair lookup failed")
            return original(self, raw)

        monkeypatch.setattr(RedditAdapter, "accept_posting", flaky)
        result = await run_ingestion(
            session, ["vgm-vinyl", "vinyl-releases"], registry=registry, crawler=crawler
        )

        vgm, releases = result.sources
        assert vgm.rejected == 1
        assert vgm.skipped == 1
        assert "v1: flair lookup failed" in vgm.errors
        assert releases.inserted == 2

    @pytest.mark.asyncio
    async def test_malformed_discogs_search_fails_source(
        self, session: Session, registry: SourceRegistry
    ) -> None:
        """Test that bad Discogs search entries fail only the Discogs source."""
        registry.get_source("discogs-new").enabled = True

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/database/search":
                return httpx.Response(200, json={"results": ["oops"]})
            return reddit_handler(request)

        crawler = Crawler(max_retries=1, backoff_base=0, transport=httpx.MockTransport(handler))
        result = await run_ingestion(
            session, ["discogs-new", "vinyl-releases"], registry=registry, crawler=crawler
        )

        discogs, releases = result.sources
        assert discogs.failed is True
        assert releases.failed is False
        assert releases.inserted == 2

    @pytest.mark.asyncio
    async def test_unexpected_source_error_isolated(
        self, session: Session, registry: SourceRegistry, crawler: Crawler, monkeypatch
    ) -> None:
        """Test that an unexpected error while fetching fails only that source."""
        original = RedditAdapter.fetch_postings

        async def flaky(self, source, crawler, limit):
            if source.name == "vgm-vinyl":
                raise RuntimeError("listing exploded")
            return await original(self, source, crawler, limit)

        monkeypatch.setattr(RedditAdapter, "fetch_postings", flaky)
        result = await run_ingestion(
            session, ["vgm-vinyl", "vinyl-releases"], registry=registry, crawler=crawler
        )

        vgm, releases = result.sources
        assert vgm.failed is True
        assert vgm.errors == ["listing exploded"]
        assert releases.inserted == 2
        assert ReleaseRepository(session).count() == 2

    @pytest.mark.asyncio
    async def test_store_unavailable_aborts(
        self, session: Session, registry: SourceRegistry, crawler: Crawler, monkeypatch
    ) -> None:
        """Test that losing the database aborts the whole run."""

        def unreachable(self, candidate):
            raise StoreUnavailableError("Release store unavailable")

        monkeypatch.setattr(MergeEngine, "upsert", unreachable)

        with pytest.raises(StoreUnavailableError):
            await run_ingestion(session, registry=registry, crawler=crawler)


class TestEnrichReleases:
    """Tests for the Discogs enrichment pass."""

    @pytest.fixture
    def seeded(self, session: Session) -> None:
        """Seed Reddit rows in need of enrichment and one complete row."""
        merge = MergeEngine(session)
        merge.upsert(
            ReleaseCandidate(
                artist="Tame Impala",
                album="Currents",
                source=ReleaseSource.REDDIT,
                source_id="a",
                reddit_score=50,
                purchase_url="https://tameimpala.bandcamp.com/album/currents",
            )
        )
        merge.upsert(
            ReleaseCandidate(
                artist="Nobody",
                album="Nothing",
                source=ReleaseSource.REDDIT,
                source_id="b",
                reddit_score=10,
            )
        )
        merge.upsert(
            ReleaseCandidate(
                artist="Radiohead",
                album="Kid A",
                source=ReleaseSource.REDDIT,
                source_id="c",
                cover_url="https://preview.redd.it/kida.jpg",
                price=Decimal("30"),
                label="Parlophone",
            )
        )
        session.commit()

    @pytest.fixture
    def discogs_crawler(self) -> Crawler:
        """Create a crawler serving canned Discogs responses."""
        return Crawler(
            max_retries=1, backoff_base=0, transport=httpx.MockTransport(discogs_handler)
        )

    @pytest.fixture(autouse=True)
    def no_credentials(self, monkeypatch) -> None:
        """Keep real credentials out of requests."""
        monkeypatch.delenv("DISCOGS_CONSUMER_KEY", raising=False)
        monkeypatch.delenv("DISCOGS_CONSUMER_SECRET", raising=False)

    @pytest.mark.asyncio
    async def test_enrich(
        self, seeded, session: Session, registry: SourceRegistry, discogs_crawler: Crawler
    ) -> None:
        """Test that matched releases are filled and misses are counted."""
        result = await enrich_releases(
            session,
            registry=registry,
            crawler=discogs_crawler,
            adapter=DiscogsAdapter({"request_delay": 0}),
        )

        assert result.status == JobStatus.COMPLETED
        assert result.examined == 2
        assert result.enriched == 1
        assert result.failed == 1

        release = ReleaseRepository(session).find_by_identity("Tame Impala", "Currents", "reddit")
        assert release.label == "Modular Recordings"
        assert release.cover_url == "https://i.discogs.com/primary.jpg"
        assert release.price == Decimal("28.5")
        assert release.genres == ["Rock"]
        assert release.purchase_url == "https://tameimpala.bandcamp.com/album/currents"
        assert release.reddit_score == 50

    @pytest.mark.asyncio
    async def test_lookup_failure_counted(
        self, session: Session, registry: SourceRegistry, discogs_crawler: Crawler
    ) -> None:
        """Test that a failing Discogs search is recorded, not raised."""
        MergeEngine(session).upsert(
            ReleaseCandidate(artist="Broken", album="Search", source="reddit", source_id="x")
        )
        session.commit()

        result = await enrich_releases(
            session,
            registry=registry,
            crawler=discogs_crawler,
            adapter=DiscogsAdapter({"request_delay": 0}),
        )

        assert result.examined == 1
        assert result.failed == 1
        assert result.errors and result.errors[0].startswith("Broken - Search")

    @pytest.mark.asyncio
    async def test_deleted_row_counted_failed(
        self,
        seeded,
        session: Session,
        registry: SourceRegistry,
        discogs_crawler: Crawler,
        monkeypatch,
    ) -> None:
        """Test that a row removed mid-pass is counted and the pass completes."""
        original = DiscogsAdapter.lookup

        async def lookup_then_delete(self, artist, album, source, crawler):
            match = await original(self, artist, album, source, crawler)
            session.execute(delete(ReleaseDB).where(ReleaseDB.artist == artist))
            session.commit()
            return match

        monkeypatch.setattr(DiscogsAdapter, "lookup", lookup_then_delete)
        result = await enrich_releases(
            session,
            registry=registry,
            crawler=discogs_crawler,
            adapter=DiscogsAdapter({"request_delay": 0}),
        )

        assert result.status == JobStatus.COMPLETED
        assert result.examined == 2
        assert result.enriched == 0
        assert result.failed == 2
        assert "Tame Impala - Currents: write rejected" in result.errors

    @pytest.mark.asyncio
    async def test_zero_marketplace_price_not_written(
        self, session: Session, registry: SourceRegistry
    ) -> None:
        """Test that a zero Discogs price never replaces a known price."""
        MergeEngine(session).upsert(
            ReleaseCandidate(
                artist="Tame Impala",
                album="Currents",
                source=ReleaseSource.REDDIT,
                source_id="a",
                price=Decimal("34.99"),
            )
        )
        session.commit()

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/releases/249504":
                return httpx.Response(200, json={**DISCOGS_DETAIL, "lowest_price": 0})
            return discogs_handler(request)

        crawler = Crawler(max_retries=1, backoff_base=0, transport=httpx.MockTransport(handler))
        result = await enrich_releases(
            session,
            registry=registry,
            crawler=crawler,
            adapter=DiscogsAdapter({"request_delay": 0}),
        )

        assert result.enriched == 1
        release = ReleaseRepository(session).find_by_identity("Tame Impala", "Currents", "reddit")
        assert release.price == Decimal("34.99")
        assert release.label == "Modular Recordings"

    def test_enrichment_source_default(self) -> None:
        """Test the fallback Discogs source settings."""
        source = get_enrichment_source(SourceRegistry())

        assert source.adapter == "discogs"
        assert source.rate_limit.requests_per_second == 1.0

    def test_enrichment_source_configured(self, registry: SourceRegistry) -> None:
        """Test that a configured (even disabled) Discogs source is used."""
        assert get_enrichment_source(registry).name == "discogs-new"


class TestWorkerTasks:
    """Tests for the arq task wrappers."""

    @pytest.mark.asyncio
    async def test_ingest_task_store_failure(self, monkeypatch) -> None:
        """Test that a lost database marks the job failed."""

        @contextmanager
        def fake_session():
            yield None

        async def down(*args, **kwargs):
            raise StoreUnavailableError("Release store unavailable: db down")

        monkeypatch.setattr(jobs, "get_session", fake_session)
        monkeypatch.setattr(jobs, "run_ingestion", down)

        data = await jobs.ingest_sources({"job_id": "job-1"}, ["vinyl-releases"])

        assert data["job_id"] == "job-1"
        assert data["status"] == "failed"
        assert data["errors"] == ["Release store unavailable: db down"]

    def test_redis_settings_from_env(self, monkeypatch) -> None:
        """Test Redis settings come from the environment."""
        monkeypatch.setenv("REDIS_HOST", "redis.internal")
        monkeypatch.setenv("REDIS_PORT", "6380")

        settings = jobs.get_redis_settings()
        assert settings.host == "redis.internal"
        assert settings.port == 6380

    def test_worker_functions(self) -> None:
        """Test the worker registers both tasks."""
        assert jobs.WorkerSettings.functions == [jobs.ingest_sources, jobs.enrich_from_discogs]
