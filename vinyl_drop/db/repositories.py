"""Repository classes for release persistence and queries."""

import json
import logging
from collections import Counter
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import case, delete, distinct, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vinyl_drop.core.enums import ReleaseSource, SortOrder
from vinyl_drop.core.schema import (
    DEFAULT_FORMAT,
    Release,
    ReleaseCandidate,
    ReleasePage,
    ReleaseStats,
    identity_key,
)
from vinyl_drop.db.models import ReleaseDB

logger = logging.getLogger(__name__)

# Candidate fields a later write may fill in but never erase
ENRICHABLE_FIELDS: tuple[str, ...] = (
    "cover_url",
    "price",
    "label",
    "release_date",
    "preorder_date",
    "genres",
    "formats",
    "purchase_url",
    "subreddit",
)

# Popularity fields, always replaced by the latest observation
OVERWRITE_FIELDS: tuple[str, ...] = ("reddit_score", "num_comments")

# List-valued fields are stored as JSON text
_JSON_COLUMNS = {"genres": "genres_json", "formats": "formats_json"}


def _dump_list(values: list[str]) -> str:
    return json.dumps(values, ensure_ascii=False)


# Serialized list values that carry no information for a merge
_EMPTY_JSON = {
    "genres_json": ("[]",),
    "formats_json": ("[]", _dump_list([DEFAULT_FORMAT])),
}

# Text columns where a blank string counts as missing
_TEXT_COLUMNS = {"cover_url", "label", "purchase_url", "subreddit"}

# Dialects with a native INSERT ... ON CONFLICT DO UPDATE ... RETURNING
_UPSERT_DIALECTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def is_empty_value(field: str, value: Any) -> bool:
    """
    Check if an incoming value carries nothing worth merging.

    None, blank strings and empty lists are empty. A formats list that
    only holds the "Vinyl" default is empty too: it is the fallback for
    "no format detected", not an observation.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, list):
        return not value or (field == "formats" and value == [DEFAULT_FORMAT])
    return False


class ReleaseRepository:
    """Repository for release writes, lookups and queries."""

    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # Store interface used by the merge engine
    # ------------------------------------------------------------------

    def find_by_identity(
        self, artist: str, album: str, source: ReleaseSource | str
    ) -> Release | None:
        """
        Find a release by its dedup identity.

        Args:
            artist: Artist name (compared lower/trim-normalized).
            album: Album title (compared lower/trim-normalized).
            source: Source the release was ingested from.

        Returns:
            The Release if found, None otherwise.
        """
        db_item = self._get_by_identity(artist, album, source)
        return self._to_domain(db_item) if db_item else None

    def insert(self, candidate: ReleaseCandidate, parser_version: str | None = None) -> Release:
        """
        Insert a candidate as a new release row.

        Raises:
            IntegrityError: If a row with the same identity already exists.
        """
        now = _utc_now()
        db_item = ReleaseDB(
            id=str(uuid4()),
            created_at=now,
            updated_at=now,
            ingest_count=1,
            **self._row_values(candidate, parser_version),
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def update_fill_only(self, release_id: UUID | str, fields: dict[str, Any]) -> Release:
        """
        Merge incoming field values into an existing release.

        Enrichable fields are only written when the incoming value is
        non-empty; popularity fields are always written. Other keys in
        ``fields`` are ignored. ``updated_at`` is refreshed on every call.

        Args:
            release_id: ID of the release to update.
            fields: Candidate-style field values (e.g. ``candidate.model_dump()``).

        Returns:
            The updated Release.
        """
        db_item = self.session.get(ReleaseDB, str(release_id))
        if db_item is None:
            raise ValueError(f"Release with id {release_id} not found")

        for field in ENRICHABLE_FIELDS:
            if field in fields and not is_empty_value(field, fields[field]):
                self._set_field(db_item, field, fields[field])
        for field in OVERWRITE_FIELDS:
            if field in fields:
                setattr(db_item, field, fields[field])

        db_item.updated_at = _utc_now()
        self.session.flush()
        return self._to_domain(db_item)

    def upsert(
        self, candidate: ReleaseCandidate, parser_version: str | None = None
    ) -> tuple[Release, bool]:
        """
        Insert a candidate or fill-only merge it into the existing row.

        Runs as a single INSERT ... ON CONFLICT DO UPDATE statement so two
        concurrent ingestion runs touching the same title cannot lose an
        update. Dialects without that construct use upsert_portable.

        Returns:
            Tuple of (release, inserted) where inserted is False when an
            existing row was updated.
        """
        dialect = self.session.get_bind().dialect.name
        insert_fn = _UPSERT_DIALECTS.get(dialect)
        if insert_fn is None:
            return self.upsert_portable(candidate, parser_version)

        now = _utc_now()
        stmt = insert_fn(ReleaseDB).values(
            id=str(uuid4()),
            created_at=now,
            updated_at=now,
            ingest_count=1,
            **self._row_values(candidate, parser_version),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["artist_key", "album_key", "source"],
            set_=self._conflict_set(stmt.excluded),
        ).returning(ReleaseDB.id, ReleaseDB.ingest_count)

        release_id, ingest_count = self.session.execute(stmt).one()
        release = self._load(release_id)
        return release, ingest_count == 1

    def upsert_portable(
        self, candidate: ReleaseCandidate, parser_version: str | None = None
    ) -> tuple[Release, bool]:
        """
        Upsert using only a SAVEPOINT insert and the fill-only update.

        A concurrent writer that wins the insert race shows up as an
        IntegrityError, after which this writer takes the update path.
        """
        artist, album, source = candidate.artist, candidate.album, candidate.source

        if self._get_by_identity(artist, album, source) is None:
            try:
                with self.session.begin_nested():
                    return self.insert(candidate, parser_version), True
            except IntegrityError:
                # Lost the insert race; merge into the winning row instead
                logger.debug(f"Identity conflict on insert for {artist} - {album}, updating")

        existing = self._get_by_identity(artist, album, source)
        if existing is None:
            raise ValueError(f"Release {artist} - {album} ({source.value}) vanished during upsert")

        existing.ingest_count = (existing.ingest_count or 0) + 1
        return self.update_fill_only(existing.id, candidate.model_dump()), False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, release_id: UUID | str) -> Release | None:
        """Get a release by ID."""
        db_item = self.session.get(ReleaseDB, str(release_id))
        return self._to_domain(db_item) if db_item else None

    def count(self) -> int:
        """Count all releases."""
        stmt = select(func.count()).select_from(ReleaseDB)
        return self.session.execute(stmt).scalar() or 0

    def search(
        self,
        genre: str | None = None,
        format: str | None = None,
        search: str | None = None,
        sort: SortOrder | str = SortOrder.DATE,
        limit: int = 50,
        offset: int = 0,
    ) -> ReleasePage:
        """
        Filter, sort and paginate releases.

        Args:
            genre: Exact genre tag the release must carry.
            format: Case-insensitive substring of any format entry.
            search: Free text matched against artist, album and label.
            sort: One of date, artist, price, reddit.
            limit: Page size.
            offset: Rows to skip.

        Returns:
            ReleasePage with the page rows and the filtered total.
        """
        conditions = []
        if genre:
            tag = json.dumps(genre, ensure_ascii=False)
            conditions.append(ReleaseDB.genres_json.contains(tag, autoescape=True))
        if format:
            # Match the JSON-encoded form so quotes and backslashes line up
            fragment = json.dumps(format, ensure_ascii=False)[1:-1]
            conditions.append(ReleaseDB.formats_json.icontains(fragment, autoescape=True))
        if search:
            conditions.append(
                or_(
                    ReleaseDB.artist.icontains(search, autoescape=True),
                    ReleaseDB.album.icontains(search, autoescape=True),
                    ReleaseDB.label.icontains(search, autoescape=True),
                )
            )

        count_stmt = select(func.count()).select_from(ReleaseDB).where(*conditions)
        total = self.session.execute(count_stmt).scalar() or 0

        stmt = (
            select(ReleaseDB)
            .where(*conditions)
            .order_by(*self._sort_columns(SortOrder(sort)))
            .limit(limit)
            .offset(offset)
        )
        rows = self.session.execute(stmt).scalars().all()
        return ReleasePage(
            releases=[self._to_domain(row) for row in rows],
            total=total,
            limit=limit,
            offset=offset,
        )

    def stats(self, top_genres: int = 10) -> ReleaseStats:
        """Aggregate statistics over all releases."""
        stmt = select(
            func.count(ReleaseDB.id),
            func.count(distinct(ReleaseDB.artist_key)),
            func.count(ReleaseDB.price),
            func.count(ReleaseDB.cover_url),
            func.avg(ReleaseDB.reddit_score),
        )
        total, artists, with_price, with_cover, avg_score = self.session.execute(stmt).one()

        genre_counts: Counter[str] = Counter()
        for genres_json in self.session.execute(select(ReleaseDB.genres_json)).scalars():
            genre_counts.update(json.loads(genres_json or "[]"))

        return ReleaseStats(
            total_releases=total or 0,
            total_artists=artists or 0,
            with_price=with_price or 0,
            with_cover=with_cover or 0,
            avg_reddit_score=round(float(avg_score), 2) if avg_score is not None else None,
            top_genres=genre_counts.most_common(top_genres),
        )

    def list_enrichment_candidates(self, limit: int = 50) -> list[Release]:
        """
        List Reddit releases worth enriching from Discogs.

        A release qualifies when it has no cover (or only a thumbnail),
        no price or no label. Most popular first.
        """
        stmt = (
            select(ReleaseDB)
            .where(ReleaseDB.source == ReleaseSource.REDDIT.value)
            .where(
                or_(
                    ReleaseDB.cover_url.is_(None),
                    ReleaseDB.cover_url.contains("thumb"),
                    ReleaseDB.price.is_(None),
                    ReleaseDB.label.is_(None),
                )
            )
            .order_by(ReleaseDB.reddit_score.desc().nulls_last(), ReleaseDB.created_at.desc())
            .limit(limit)
        )
        return [self._to_domain(row) for row in self.session.execute(stmt).scalars().all()]

    def list_store_name_artists(self, store_names: Iterable[str]) -> list[Release]:
        """List releases whose artist starts with a known store name."""
        stmt = (
            select(ReleaseDB)
            .where(self._store_name_condition(store_names))
            .order_by(ReleaseDB.artist)
        )
        return [self._to_domain(row) for row in self.session.execute(stmt).scalars().all()]

    def delete_store_name_artists(self, store_names: Iterable[str]) -> list[Release]:
        """
        Delete releases whose artist starts with a known store name.

        Such rows come from titles like "Amazon - Album Name" where the
        retailer was parsed as the artist.

        Returns:
            The deleted releases.
        """
        store_names = list(store_names)
        doomed = self.list_store_name_artists(store_names)
        if doomed:
            stmt = delete(ReleaseDB).where(ReleaseDB.id.in_([str(r.id) for r in doomed]))
            self.session.execute(stmt)
            self.session.flush()
        return doomed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_by_identity(
        self, artist: str, album: str, source: ReleaseSource | str
    ) -> ReleaseDB | None:
        artist_key, album_key = identity_key(artist, album)
        stmt = select(ReleaseDB).where(
            ReleaseDB.artist_key == artist_key,
            ReleaseDB.album_key == album_key,
            ReleaseDB.source == ReleaseSource(source).value,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def _load(self, release_id: str) -> Release:
        """Reload a row, bypassing any stale copy in the identity map."""
        stmt = (
            select(ReleaseDB)
            .where(ReleaseDB.id == release_id)
            .execution_options(populate_existing=True)
        )
        return self._to_domain(self.session.execute(stmt).scalar_one())

    def _row_values(
        self, candidate: ReleaseCandidate, parser_version: str | None
    ) -> dict[str, Any]:
        artist_key, album_key, source = candidate.identity
        return {
            "artist": candidate.artist,
            "album": candidate.album,
            "artist_key": artist_key,
            "album_key": album_key,
            "source": source,
            "source_id": candidate.source_id,
            "source_url": candidate.source_url,
            "label": candidate.label,
            "release_date": candidate.release_date,
            "preorder_date": candidate.preorder_date,
            "genres_json": _dump_list(candidate.genres),
            "formats_json": _dump_list(candidate.formats),
            "price": candidate.price,
            "cover_url": candidate.cover_url,
            "purchase_url": candidate.purchase_url,
            "description": candidate.description,
            "subreddit": candidate.subreddit,
            "author": candidate.author,
            "flair": candidate.flair,
            "reddit_score": candidate.reddit_score,
            "num_comments": candidate.num_comments,
            "posted_at": candidate.posted_at,
            "parser_version": parser_version,
        }

    def _conflict_set(self, excluded: Any) -> dict[str, Any]:
        """SET clause for the ON CONFLICT branch of upsert."""
        table = ReleaseDB.__table__
        set_: dict[str, Any] = {}

        for field in ENRICHABLE_FIELDS:
            column = _JSON_COLUMNS.get(field, field)
            incoming = excluded[column]
            if column in _EMPTY_JSON:
                set_[column] = case(
                    (incoming.in_(_EMPTY_JSON[column]), table.c[column]),
                    else_=incoming,
                )
            elif column in _TEXT_COLUMNS:
                set_[column] = func.coalesce(func.nullif(incoming, ""), table.c[column])
            else:
                set_[column] = func.coalesce(incoming, table.c[column])

        for field in OVERWRITE_FIELDS:
            set_[field] = excluded[field]

        set_["updated_at"] = excluded.updated_at
        set_["ingest_count"] = table.c.ingest_count + 1
        return set_

    def _set_field(self, db_item: ReleaseDB, field: str, value: Any) -> None:
        if field in _JSON_COLUMNS:
            setattr(db_item, _JSON_COLUMNS[field], _dump_list(value))
        else:
            setattr(db_item, field, value)

    def _sort_columns(self, sort: SortOrder) -> list[Any]:
        if sort == SortOrder.ARTIST:
            return [ReleaseDB.artist.asc(), ReleaseDB.album.asc()]
        if sort == SortOrder.PRICE:
            return [ReleaseDB.price.asc().nulls_last(), ReleaseDB.artist.asc()]
        if sort == SortOrder.REDDIT:
            return [ReleaseDB.reddit_score.desc().nulls_last(), ReleaseDB.created_at.desc()]
        return [ReleaseDB.posted_at.desc().nulls_last(), ReleaseDB.created_at.desc()]

    def _store_name_condition(self, store_names: Iterable[str]) -> Any:
        return or_(*(ReleaseDB.artist_key.startswith(name.lower()) for name in store_names))

    def _to_domain(self, db_item: ReleaseDB) -> Release:
        """Convert DB model to domain model."""
        return Release(
            id=UUID(db_item.id),
            created_at=db_item.created_at,
            updated_at=db_item.updated_at,
            artist=db_item.artist,
            album=db_item.album,
            label=db_item.label,
            release_date=db_item.release_date,
            preorder_date=db_item.preorder_date,
            genres=json.loads(db_item.genres_json or "[]"),
            formats=json.loads(db_item.formats_json or "[]"),
            price=db_item.price,
            cover_url=db_item.cover_url,
            purchase_url=db_item.purchase_url,
            description=db_item.description,
            source=ReleaseSource(db_item.source),
            source_id=db_item.source_id,
            source_url=db_item.source_url,
            subreddit=db_item.subreddit,
            author=db_item.author,
            flair=db_item.flair,
            reddit_score=db_item.reddit_score,
            num_comments=db_item.num_comments,
            posted_at=db_item.posted_at,
            parser_version=db_item.parser_version,
            ingest_count=db_item.ingest_count,
        )
