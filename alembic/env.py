"""Alembic environment for Mission Control.

Migrations run through the same engine factory the service uses, so the
database URL comes from MissionControlConfig (mission-control.toml or
MISSION_CONTROL_DATABASE__URL). A one-off URL can be given on the command
line instead::

    alembic -x database_url=sqlite+aiosqlite:///mission_control.db upgrade head

SQLite connections use batch mode so ALTER-style migrations can run there.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection

from mission_control.config import DatabaseConfig, load_config
from mission_control.database.connection import get_engine
from mission_control.database.models import Base

alembic_config = context.config

if alembic_config.config_file_name is not None:
    fileConfig(alembic_config.config_file_name)

target_metadata = Base.metadata


def database_config() -> DatabaseConfig:
    """Resolve the database settings, honouring ``-x database_url=...``."""
    override = context.get_x_argument(as_dictionary=True).get("database_url")
    configured = load_config().database
    if override:
        return configured.model_copy(update={"url": override})
    return configured


def configure_connection(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


async def migrate(db_config: DatabaseConfig) -> None:
    """Apply pending migrations over a single unpooled connection."""
    engine = get_engine(db_config, pooled=False)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(configure_connection)
    finally:
        await engine.dispose()


def emit_sql(db_config: DatabaseConfig) -> None:
    """Write the migration SQL instead of executing it (``--sql``)."""
    context.configure(
        url=db_config.url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=db_config.url.startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    emit_sql(database_config())
else:
    asyncio.run(migrate(database_config()))
