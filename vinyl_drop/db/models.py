"""SQLAlchemy ORM models for the VinylDrop database."""

from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import (
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class ReleaseDB(Base):
    """
    Database model for vinyl releases.

    One row per (artist, album, source) identity. The lower-cased
    identity columns back the unique constraint that makes ingestion
    idempotent; the display-cased artist/album are kept alongside.
    """

    __tablename__ = "releases"
    __table_args__ = (
        UniqueConstraint("artist_key", "album_key", "source", name="uq_releases_identity"),
        Index("ix_releases_posted_at", "posted_at"),
        Index("ix_releases_reddit_score", "reddit_score"),
    )

    # Primary key
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )

    # Identity
    artist: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    album: Mapped[str] = mapped_column(String(500), nullable=False)
    artist_key: Mapped[str] = mapped_column(String(500), nullable=False)
    album_key: Mapped[str] = mapped_column(String(500), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # reddit/discogs
    source_id: Mapped[str] = mapped_column(String(100), nullable=False)
    source_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Enrichable fields (fill-only on update)
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    release_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    preorder_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    genres_json: Mapped[str] = mapped_column(Text, default="[]")  # JSON array
    formats_json: Mapped[str] = mapped_column(Text, default='["Vinyl"]')  # JSON array
    price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    cover_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    purchase_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Reddit extras
    subreddit: Mapped[str | None] = mapped_column(String(100), nullable=True)
    author: Mapped[str | None] = mapped_column(String(100), nullable=True)
    flair: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reddit_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    num_comments: Mapped[int | None] = mapped_column(Integer, nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Provenance
    parser_version: Mapped[str | None] = mapped_column(String(20), nullable=True)
    ingest_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    def __repr__(self) -> str:
        return f"<ReleaseDB(id={self.id}, artist='{self.artist}', album='{self.album}', source={self.source})>"
