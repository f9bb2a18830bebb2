# migrations/versions/20261019_0001_idempotency_records.py
"""Add idempotency_records table for at-most-once request execution."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

from calorie_api.infrastructure.database.models.base import DEFAULT_DB_SCHEMA

# Revision identifiers, used by Alembic.
revision = "20261019_0001_idempotency_records"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    schema = DEFAULT_DB_SCHEMA

    op.create_table(
        "idempotency_records",
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("fingerprint", sa.String(length=64), nullable=False),
        sa.Column("method", sa.String(length=16), nullable=False),
        sa.Column("path", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("lease_id", sa.String(length=64), nullable=False),
        sa.Column("response_status", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.LargeBinary(), nullable=True),
        sa.Column(
            "response_headers",
            sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=False), nullable=False),
        sa.PrimaryKeyConstraint("key", name="pk_idempotency_records"),
        schema=schema,
    )

    op.create_index(
        "ix_idempotency_records_expires_at",
        "idempotency_records",
        ["expires_at"],
        schema=schema,
    )


def downgrade() -> None:
    schema = DEFAULT_DB_SCHEMA
    op.drop_index(
        "ix_idempotency_records_expires_at", table_name="idempotency_records", schema=schema
    )
    op.drop_table("idempotency_records", schema=schema)
