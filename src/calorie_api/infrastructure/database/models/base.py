# src/calorie_api/infrastructure/database/models/base.py
# Copyright (c) Calorie Tracker.
# SPDX-License-Identifier: MIT
"""Declarative Base and persistence helpers for the Calorie API.

This module defines:
    - A project-wide SQLAlchemy Declarative Base with deterministic naming
      conventions (for stable Alembic diffs).
    - A portable JSON column type (JSONB on PostgreSQL, JSON elsewhere).
    - Lightweight utilities for safe repr and naive-UTC timestamps.
"""

from __future__ import annotations

import os
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, MetaData
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, declared_attr

__all__ = [
    "metadata",
    "Base",
    "DEFAULT_DB_SCHEMA",
    "JSONBType",
    "ReprMixin",
    "utcnow_naive",
]

#: Optional database schema for all tables (``DB_SCHEMA``). Unset means the
#: connection's default schema, which keeps SQLite-backed tests working.
DEFAULT_DB_SCHEMA: str | None = os.getenv("DB_SCHEMA") or None

#: Deterministic naming conventions for Alembic-friendly diffs.
#: Ref: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTIONS: dict[str, str] = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTIONS)

#: JSONB on PostgreSQL, generic JSON on other dialects.
JSONBType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative Base for all ORM models."""

    metadata = metadata

    @declared_attr.directive
    def __table_args__(cls) -> tuple[dict[str, Any]] | tuple[()]:
        """Attach default schema when configured."""
        if DEFAULT_DB_SCHEMA:
            return ({"schema": DEFAULT_DB_SCHEMA},)
        return ()


class ReprMixin:
    """Mixin providing a concise, field-based ``__repr__`` implementation."""

    def __repr__(self) -> str:
        """Return a short debug representation of the model."""
        cls = type(self)
        attrs = []
        for column in cls.__table__.columns:  # type: ignore[attr-defined]
            value = getattr(self, column.key, None)
            if isinstance(value, (str, int, float, bool, uuid.UUID)):
                attrs.append(f"{column.key}={value!r}")
        return f"{cls.__name__}({', '.join(attrs)})"


def utcnow_naive() -> datetime:
    """Return a naive datetime representing current UTC time.

    Timestamp columns are TIMESTAMP WITHOUT TIME ZONE, so every comparison
    against them must use naive UTC values.
    """
    return datetime.now(UTC).replace(tzinfo=None)
