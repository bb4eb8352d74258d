"""Migration runner for the token metrics schema.

The URL comes from the environment (or ``.env``) rather than alembic.ini,
and online migrations go through the same async driver the service uses.
"""

from __future__ import annotations

import asyncio
import os
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from token_metrics_tracker.storage.database import to_async_url
from token_metrics_tracker.storage.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

load_dotenv(override=False)

env_url = os.environ.get("SQLALCHEMY_DATABASE_URL") or os.environ.get("DATABASE_URL")
if env_url:
    config.set_main_option("sqlalchemy.url", to_async_url(os.path.expandvars(env_url)))


def _apply(connection=None) -> None:
    if connection is None:
        context.configure(
            url=config.get_main_option("sqlalchemy.url"),
            target_metadata=Base.metadata,
            literal_binds=True,
            dialect_opts={"paramstyle": "named"},
        )
    else:
        context.configure(connection=connection, target_metadata=Base.metadata)
    with context.begin_transaction():
        context.run_migrations()


async def _migrate_online() -> None:
    section = config.get_section(config.config_ini_section, {})
    engine = async_engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_apply)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    _apply()
else:
    asyncio.run(_migrate_online())
