"""Alembic environment for the deals schema.

Migrations run over a synchronous psycopg2 connection derived from
DATABASE_URL (the +asyncpg driver suffix is stripped).
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

import src.crm.deals.models  # noqa: F401
from src.crm.config import get_settings
from src.crm.core.database import Base

# Alembic Config object
config = context.config

# Interpret the config file for Python logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Lookup tables are owned by other subsystems and never migrated here
_EXTERNAL_TABLES = {"contacts", "companies", "users"}


def include_object(object, name, type_, reflected, compare_to):
    if type_ == "table" and name in _EXTERNAL_TABLES:
        return False
    return True


def _sync_url() -> str:
    return get_settings().DATABASE_URL.replace("+asyncpg", "")


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=_sync_url(),
        target_metadata=target_metadata,
        include_object=include_object,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = create_engine(_sync_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_object=include_object,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
