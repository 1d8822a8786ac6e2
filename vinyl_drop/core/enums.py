"""Enums for release records and ingestion outcomes."""

from enum import Enum


class ReleaseSource(str, Enum):
    """Origin system a release was derived from."""

    REDDIT = "reddit"
    DISCOGS = "discogs"


class UpsertAction(str, Enum):
    """Outcome of writing one candidate to the store."""

    INSERTED = "inserted"
    UPDATED = "updated"
    REJECTED = "rejected"


class SortOrder(str, Enum):
    """Sort orders supported by the release query."""

    DATE = "date"
    ARTIST = "artist"
    PRICE = "price"
    REDDIT = "reddit"
