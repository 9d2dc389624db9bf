"""Alembic environment for the intake schema.

The URL comes from :func:`survey_db.config.load_database_settings` (the same
environment variables as the server) unless one is passed explicitly with
``alembic -x dburl=postgresql://...``.  Autogenerate runs that detect no
schema change do not write an empty revision file.
"""

import logging
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from survey_db.config import load_database_settings
from survey_db.models.base import Base

# Registers every intake table on Base.metadata.
import survey_db.models  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")


def _database_url() -> str:
    override = context.get_x_argument(as_dictionary=True).get("dburl")
    if override:
        return override
    return load_database_settings().sync_url.render_as_string(hide_password=False)


# ConfigParser treats "%" as interpolation; URL-encoded passwords contain it.
config.set_main_option("sqlalchemy.url", _database_url().replace("%", "%%"))

target_metadata = Base.metadata


def _skip_empty_revision(context_, revision, directives) -> None:
    if getattr(config.cmd_opts, "autogenerate", False):
        script = directives[0]
        if script.upgrade_ops.is_empty():
            directives[:] = []
            logger.info("No changes to the intake schema detected")


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        process_revision_directives=_skip_empty_revision,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting."""
    _configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
