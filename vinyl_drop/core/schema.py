"""Canonical Pydantic v2 models for vinyl release records."""

from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

from vinyl_drop.core.enums import ReleaseSource

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"
DEFAULT_FORMAT = "Vinyl"


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def identity_key(artist: str, album: str) -> tuple[str, str]:
    """Lower/trim-normalized (artist, album) pair used for deduplication."""
    return artist.strip().lower(), album.strip().lower()


class ReleaseCandidate(BaseModel):
    """
    Structured release produced by one fetch+parse of one posting.

    Ephemeral: it has not been reconciled with storage yet. Artist and
    album are never empty and formats always holds at least one entry.
    """

    artist: str = UNKNOWN_ARTIST
    album: str = UNKNOWN_ALBUM
    label: str | None = None
    release_date: date | None = None
    preorder_date: date | None = None
    genres: list[str] = Field(default_factory=list)
    formats: list[str] = Field(default_factory=lambda: [DEFAULT_FORMAT])
    price: Decimal | None = None
    cover_url: str | None = None
    purchase_url: str | None = None
    description: str | None = None

    source: ReleaseSource
    source_id: str
    source_url: str | None = None

    # Reddit-only extras
    subreddit: str | None = None
    author: str | None = None
    flair: str | None = None
    reddit_score: int | None = None
    num_comments: int | None = None
    posted_at: datetime | None = None

    @field_validator("artist")
    @classmethod
    def artist_not_empty(cls, v: str) -> str:
        v = v.strip()
        return v or UNKNOWN_ARTIST

    @field_validator("album")
    @classmethod
    def album_not_empty(cls, v: str) -> str:
        v = v.strip()
        return v or UNKNOWN_ALBUM

    @field_validator("genres")
    @classmethod
    def dedupe_genres(cls, v: list[str]) -> list[str]:
        # Genre tags have set semantics; keep first-seen order for display.
        seen: list[str] = []
        for genre in v:
            genre = genre.strip()
            if genre and genre not in seen:
                seen.append(genre)
        return seen

    @field_validator("formats")
    @classmethod
    def formats_default(cls, v: list[str]) -> list[str]:
        cleaned = [f.strip() for f in v if f and f.strip()]
        return cleaned or [DEFAULT_FORMAT]

    @property
    def identity(self) -> tuple[str, str, str]:
        """Dedup identity: (lower(artist), lower(album), source)."""
        artist_key, album_key = identity_key(self.artist, self.album)
        return artist_key, album_key, self.source.value


class Release(ReleaseCandidate):
    """
    Release record as persisted in the store.

    Adds the store-assigned id, timestamps, the version of the parsing
    tables that produced it and the number of ingestion writes so far.
    """

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    parser_version: str | None = None
    ingest_count: int = 1


class ReleasePage(BaseModel):
    """One page of a filtered, sorted release query."""

    releases: list[Release] = Field(default_factory=list)
    total: int = 0
    limit: int = 50
    offset: int = 0


class ReleaseStats(BaseModel):
    """Aggregate statistics over the release table."""

    total_releases: int = 0
    total_artists: int = 0
    with_price: int = 0
    with_cover: int = 0
    avg_reddit_score: float | None = None
    top_genres: list[tuple[str, int]] = Field(default_factory=list)
