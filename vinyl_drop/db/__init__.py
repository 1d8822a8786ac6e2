"""Database initialization and persistence layer."""

from vinyl_drop.db.engine import (
    create_db_engine,
    get_database_url,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
    reset_engine,
    run_migrations,
)
from vinyl_drop.db.models import Base, ReleaseDB
from vinyl_drop.db.repositories import (
    ENRICHABLE_FIELDS,
    OVERWRITE_FIELDS,
    ReleaseRepository,
)

__all__ = [
    # Engine
    "create_db_engine",
    "get_database_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_db",
    "reset_engine",
    "run_migrations",
    # Models
    "Base",
    "ReleaseDB",
    # Repositories
    "ReleaseRepository",
    "ENRICHABLE_FIELDS",
    "OVERWRITE_FIELDS",
]
