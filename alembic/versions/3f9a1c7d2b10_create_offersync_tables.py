"""Create wallet, ledger, template, preference and integration tables.

Revision ID: 3f9a1c7d2b10
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "3f9a1c7d2b10"
down_revision = None
branch_labels = None
depends_on = None

ledger_status = postgresql.ENUM("pending", "completed", "failed", name="ledger_status", create_type=False)


def upgrade() -> None:
  """Upgrade schema."""
  ledger_status.create(op.get_bind(), checkfirst=True)

  op.create_table(
    "wallets",
    sa.Column("user_id", sa.String(length=128), nullable=False),
    sa.Column("balance", sa.Numeric(12, 2), server_default="0", nullable=False),
    sa.Column("offers_created", sa.Integer(), server_default="0", nullable=False),
    sa.Column("bulk_edits_count", sa.Integer(), server_default="0", nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
    sa.PrimaryKeyConstraint("user_id"),
  )

  op.create_table(
    "wallet_ledger_entries",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("user_id", sa.String(length=128), nullable=False),
    sa.Column("type", sa.String(length=64), nullable=False),
    sa.Column("amount", sa.Numeric(12, 2), nullable=False),
    sa.Column("status", ledger_status, nullable=False),
    sa.Column("product_id", sa.String(length=64), nullable=True),
    sa.Column("external_id", sa.String(length=128), nullable=True),
    sa.Column("job_id", sa.String(length=64), nullable=True),
    sa.Column("description", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_wallet_ledger_entries_user_id"), "wallet_ledger_entries", ["user_id"], unique=False)
  op.create_index("ix_ledger_user_product_type", "wallet_ledger_entries", ["user_id", "product_id", "type"], unique=False)
  op.create_index("ix_ledger_user_external_type_job", "wallet_ledger_entries", ["user_id", "external_id", "type", "job_id"], unique=False)

  op.create_table(
    "ai_templates",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("user_id", sa.String(length=128), nullable=True),
    sa.Column("name", sa.String(length=255), nullable=False),
    sa.Column("content", sa.Text(), nullable=False),
    sa.Column("is_global", sa.Boolean(), server_default="false", nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_ai_templates_user_id"), "ai_templates", ["user_id"], unique=False)

  op.create_table(
    "generation_preferences",
    sa.Column("user_id", sa.String(length=128), nullable=False),
    sa.Column("ai_provider", sa.String(length=32), nullable=True),
    sa.Column("description_style", sa.String(length=64), nullable=True),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
    sa.PrimaryKeyConstraint("user_id"),
  )

  op.create_table(
    "marketplace_integrations",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("user_id", sa.String(length=128), nullable=False),
    sa.Column("marketplace", sa.String(length=32), nullable=False),
    sa.Column("access_token", sa.Text(), nullable=False),
    sa.Column("refresh_token", sa.Text(), nullable=True),
    sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("user_id", "marketplace", name="ux_marketplace_integrations_user_marketplace"),
  )
  op.create_index(op.f("ix_marketplace_integrations_user_id"), "marketplace_integrations", ["user_id"], unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index(op.f("ix_marketplace_integrations_user_id"), table_name="marketplace_integrations")
  op.drop_table("marketplace_integrations")
  op.drop_table("generation_preferences")
  op.drop_index(op.f("ix_ai_templates_user_id"), table_name="ai_templates")
  op.drop_table("ai_templates")
  op.drop_index("ix_ledger_user_external_type_job", table_name="wallet_ledger_entries")
  op.drop_index("ix_ledger_user_product_type", table_name="wallet_ledger_entries")
  op.drop_index(op.f("ix_wallet_ledger_entries_user_id"), table_name="wallet_ledger_entries")
  op.drop_table("wallet_ledger_entries")
  op.drop_table("wallets")
  ledger_status.drop(op.get_bind(), checkfirst=True)
