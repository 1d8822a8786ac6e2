"""Initial schema for VinylDrop.

Revision ID: 0001
Revises:
Create Date: 2025-10-18

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "releases",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        # Identity
        sa.Column("artist", sa.String(500), nullable=False),
        sa.Column("album", sa.String(500), nullable=False),
        sa.Column("artist_key", sa.String(500), nullable=False),
        sa.Column("album_key", sa.String(500), nullable=False),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("source_id", sa.String(100), nullable=False),
        sa.Column("source_url", sa.Text(), nullable=True),
        # Enrichable fields
        sa.Column("label", sa.String(255), nullable=True),
        sa.Column("release_date", sa.Date(), nullable=True),
        sa.Column("preorder_date", sa.Date(), nullable=True),
        sa.Column("genres_json", sa.Text(), default="[]"),
        sa.Column("formats_json", sa.Text(), default='["Vinyl"]'),
        sa.Column("price", sa.Numeric(10, 2), nullable=True),
        sa.Column("cover_url", sa.Text(), nullable=True),
        sa.Column("purchase_url", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        # Reddit extras
        sa.Column("subreddit", sa.String(100), nullable=True),
        sa.Column("author", sa.String(100), nullable=True),
        sa.Column("flair", sa.String(100), nullable=True),
        sa.Column("reddit_score", sa.Integer(), nullable=True),
        sa.Column("num_comments", sa.Integer(), nullable=True),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        # Provenance
        sa.Column("parser_version", sa.String(20), nullable=True),
        sa.Column("ingest_count", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("artist_key", "album_key", "source", name="uq_releases_identity"),
    )
    op.create_index("ix_releases_artist", "releases", ["artist"])
    op.create_index("ix_releases_source", "releases", ["source"])
    op.create_index("ix_releases_posted_at", "releases", ["posted_at"])
    op.create_index("ix_releases_reddit_score", "releases", ["reddit_score"])


def downgrade() -> None:
    op.drop_index("ix_releases_reddit_score", table_name="releases")
    op.drop_index("ix_releases_posted_at", table_name="releases")
    op.drop_index("ix_releases_source", table_name="releases")
    op.drop_index("ix_releases_artist", table_name="releases")
    op.drop_table("releases")
