# migrations/env.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Alembic environment for the calorie API schema.

The target URL is taken, in order, from ``-x url=...``, the ``DATABASE_URL``
environment variable (after loading ``.env`` files) and ``sqlalchemy.url``
in alembic.ini. Online runs go through the async driver of that URL.

Usage:
    alembic upgrade head                  # apply
    alembic upgrade head --sql            # emit SQL only
    alembic -x show_url=1 upgrade head    # also log the masked URL
"""

from __future__ import annotations

import asyncio
import logging
import logging.config
import os
from pathlib import Path
from typing import Any

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import pool
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.ext.asyncio import create_async_engine

from calorie_api.infrastructure.database.models import idempotency as _idempotency  # noqa: F401
from calorie_api.infrastructure.database.models.base import DEFAULT_DB_SCHEMA, metadata

config = context.config
if config.config_file_name is not None:
    logging.config.fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

target_metadata = metadata

_ROOT = Path(__file__).resolve().parents[1]
for _env_file in (_ROOT / ".env", _ROOT / f".env.{os.getenv('ENVIRONMENT', '').lower()}"):
    if _env_file.is_file():
        # Exported variables win over files.
        load_dotenv(_env_file, override=False)


def _database_url() -> str:
    x_args = context.get_x_argument(as_dictionary=True)
    url = x_args.get("url") or os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url")
    if not url:
        raise RuntimeError("No database URL: pass -x url=..., set DATABASE_URL or sqlalchemy.url")
    if x_args.get("show_url") == "1":
        logger.info("Migrating %s", make_url(url).render_as_string(hide_password=True))
    return url


def _configure_kwargs() -> dict[str, Any]:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "include_schemas": DEFAULT_DB_SCHEMA is not None,
        "version_table_schema": DEFAULT_DB_SCHEMA,
    }


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(),
    )
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection) -> None:
    context.configure(connection=connection, **_configure_kwargs())
    with context.begin_transaction():
        context.run_migrations()


async def _run_online() -> None:
    engine = create_async_engine(_database_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(_run_online())
