"""
Alembic Migration Environment
=============================

What:  Runs migrations for the transaction_history audit table.
How:   Uses the async engine URL from nutriscan settings (DATABASE_URL),
       not the one in alembic.ini, and bridges it to Alembic with
       connection.run_sync().

The database is shared with other services (BMI records, carts, recipes).
Autogenerate only ever looks at the tables registered on our Base, so it
never proposes dropping theirs.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from nutriscan.config import settings
from nutriscan.database import Base

# Registers transaction_history on Base.metadata
from nutriscan.models.transaction import Transaction  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata
OWNED_TABLES = frozenset(target_metadata.tables)

config.set_main_option("sqlalchemy.url", settings.database_url)


def include_object(obj, name, type_, reflected, compare_to):
    """Skip reflected tables (and their indexes) that belong to other services."""
    table_name = name if type_ == "table" else getattr(getattr(obj, "table", None), "name", None)
    if reflected and table_name is not None and table_name not in OWNED_TABLES:
        return False
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        include_object=include_object,
        compare_type=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """`alembic upgrade head --sql`: print the SQL instead of running it."""
    _configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_with_connection(connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_with_connection)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
