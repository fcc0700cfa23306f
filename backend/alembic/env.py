"""
Alembic migration environment for the number_limits and tickets schema.

Migrations run with the admin credentials when DATABASE_ADMIN_URL is set,
since they create the sold-count functions. The async driver in the URL is
swapped for the sync one Alembic drives.
"""

from logging.config import fileConfig
from sqlalchemy import engine_from_config, pool
from alembic import context

from raffle.db.base import Base
from raffle.models import NumberLimitRecord, TicketRecord  # noqa: F401 - registers tables for autogenerate
from raffle.core.config import get_settings

config = context.config
settings = get_settings()


def _migration_url() -> str:
    if settings.DATABASE_ADMIN_URL:
        return settings.DATABASE_ADMIN_URL.replace("+asyncpg", "").replace("+aiosqlite", "")
    return settings.DATABASE_URL_SYNC


config.set_main_option("sqlalchemy.url", _migration_url())

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit the migration as SQL without a connection."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
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
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
