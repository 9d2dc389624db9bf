"""Connection settings for the intake database.

Sessions, answers, uploads and consent records live in one PostgreSQL
database, usually the Postgres instance of the Supabase project that also
hosts the upload buckets.  The URL comes from the first of:

1. ``DATABASE_URL``
2. ``SUPABASE_DB_URL`` (the project's direct connection string)
3. ``INTAKE_DB_HOST``, ``INTAKE_DB_PORT``, ``INTAKE_DB_USER``,
   ``INTAKE_DB_PASSWORD`` and ``INTAKE_DB_NAME`` (docker-compose)

Whatever driver the URL names, the runtime engine is given
``postgresql+asyncpg`` and Alembic ``postgresql+psycopg2``.
"""

import os
from dataclasses import dataclass

from sqlalchemy.engine import URL, make_url

ASYNC_DRIVER = "postgresql+asyncpg"
SYNC_DRIVER = "postgresql+psycopg2"


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class DatabaseSettings:
    """Immutable database configuration read from environment at startup."""

    url: URL
    pool_size: int = 5
    max_overflow: int = 10
    # Applied per connection; an answer batch is a single INSERT
    statement_timeout_ms: int = 10_000
    application_name: str = "survey-intake"
    # Supabase's transaction pooler cannot hold prepared statements
    pgbouncer: bool = False
    echo: bool = False

    @property
    def async_url(self) -> URL:
        """URL for the asyncpg engine.

        asyncpg has no ``sslmode`` argument; the libpq value is passed on as
        ``ssl``, which accepts the same mode names.
        """
        query = dict(self.url.query)
        sslmode = query.pop("sslmode", None)
        if sslmode is not None:
            query["ssl"] = sslmode
        return self.url.set(drivername=ASYNC_DRIVER, query=query)

    @property
    def sync_url(self) -> URL:
        """URL for Alembic, whose migration runner is synchronous."""
        return self.url.set(drivername=SYNC_DRIVER)


def _url_from_parts() -> URL:
    port = os.getenv("INTAKE_DB_PORT", "5432")
    return URL.create(
        drivername="postgresql",
        username=os.getenv("INTAKE_DB_USER", "intake"),
        password=os.getenv("INTAKE_DB_PASSWORD", "intake"),
        host=os.getenv("INTAKE_DB_HOST", "localhost"),
        port=int(port),
        database=os.getenv("INTAKE_DB_NAME", "intake"),
    )


def resolve_url() -> URL:
    """Pick the connection URL from the environment (see module docstring)."""
    raw = os.getenv("DATABASE_URL") or os.getenv("SUPABASE_DB_URL")
    if raw:
        return make_url(raw)
    return _url_from_parts()


def load_database_settings() -> DatabaseSettings:
    """Build :class:`DatabaseSettings` from ``INTAKE_DB_*`` variables."""
    return DatabaseSettings(
        url=resolve_url(),
        pool_size=int(os.getenv("INTAKE_DB_POOL_SIZE", "5")),
        max_overflow=int(os.getenv("INTAKE_DB_MAX_OVERFLOW", "10")),
        statement_timeout_ms=int(os.getenv("INTAKE_DB_STATEMENT_TIMEOUT_MS", "10000")),
        application_name=os.getenv("INTAKE_DB_APPLICATION_NAME", "survey-intake"),
        pgbouncer=_flag("INTAKE_DB_PGBOUNCER"),
        echo=_flag("INTAKE_DB_ECHO"),
    )
