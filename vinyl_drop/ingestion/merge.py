"""
Merge Engine Module
===================

Reconciles release candidates with the store. Each candidate is written
with one atomic insert-or-update keyed on (artist, album, source):

- New identity: the full candidate is inserted.
- Known identity: a fill-only merge. Enrichable fields are written only
  when the incoming value is non-empty; popularity fields always take
  the latest value.

Every write runs in its own SAVEPOINT, so a rejected record never rolls
back records written before it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from vinyl_drop.core.enums import UpsertAction
from vinyl_drop.core.schema import Release, ReleaseCandidate
from vinyl_drop.db.repositories import ReleaseRepository
from vinyl_drop.ingestion.normalizer import TitleNormalizer

logger = logging.getLogger(__name__)

# Catalogue fields another source may contribute to an existing row
CROSS_SOURCE_FIELDS: tuple[str, ...] = (
    "cover_url",
    "price",
    "label",
    "release_date",
    "genres",
    "formats",
)


class StoreUnavailableError(Exception):
    """Raised when the release store cannot be reached; fatal to a run."""


@dataclass
class UpsertOutcome:
    """Result of writing one candidate."""

    action: UpsertAction
    release_id: UUID | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def written(self) -> bool:
        return self.action != UpsertAction.REJECTED


class MergeEngine:
    """
    Insert-or-merge writer for release candidates.

    Args:
        session: Open SQLAlchemy session; the caller owns commit/close
        parser_version: Keyword-table version recorded on inserted rows
        atomic: Use the single-statement ON CONFLICT upsert where the
            database supports it (False forces the portable path)
    """

    def __init__(
        self,
        session: Session,
        parser_version: str = TitleNormalizer.TABLES_VERSION,
        atomic: bool = True,
    ) -> None:
        self.session = session
        self.repository = ReleaseRepository(session)
        self.parser_version = parser_version
        self.atomic = atomic

    def upsert(self, candidate: ReleaseCandidate) -> UpsertOutcome:
        """
        Write one candidate.

        Returns:
            UpsertOutcome with action inserted, updated or rejected

        Raises:
            StoreUnavailableError: If the database cannot be reached
        """
        try:
            with self.session.begin_nested():
                if self.atomic:
                    release, inserted = self.repository.upsert(candidate, self.parser_version)
                else:
                    release, inserted = self.repository.upsert_portable(
                        candidate, self.parser_version
                    )
        except OperationalError as e:
            raise StoreUnavailableError(f"Release store unavailable: {e}") from e
        except SQLAlchemyError as e:
            logger.warning(
                f"Rejected {candidate.source.value}:{candidate.source_id} "
                f"({candidate.artist} - {candidate.album}): {e}"
            )
            return UpsertOutcome(action=UpsertAction.REJECTED, errors=[str(e)])

        action = UpsertAction.INSERTED if inserted else UpsertAction.UPDATED
        logger.debug(f"{action.value}: {release.artist} - {release.album} ({release.source.value})")
        return UpsertOutcome(action=action, release_id=release.id)

    def enrich(self, release_id: UUID | str, candidate: ReleaseCandidate) -> Release | None:
        """
        Fill-only merge a candidate from another source into an existing row.

        Used by the Discogs enrichment run: the row keeps its own identity,
        source, links and popularity; only the catalogue fields in
        CROSS_SOURCE_FIELDS are merged.

        Returns:
            The updated release, or None if the row is gone or the write
            was rejected (its SAVEPOINT is rolled back)

        Raises:
            StoreUnavailableError: If the database cannot be reached
        """
        fields = candidate.model_dump(include=set(CROSS_SOURCE_FIELDS))
        try:
            with self.session.begin_nested():
                return self.repository.update_fill_only(release_id, fields)
        except OperationalError as e:
            raise StoreUnavailableError(f"Release store unavailable: {e}") from e
        except (ValueError, SQLAlchemyError) as e:
            logger.warning(f"Enrichment of release {release_id} rejected: {e}")
            return None
