"""SQLAlchemy models for per-user wallets and the append-only billing ledger."""

from __future__ import annotations

import datetime
import enum
import uuid
from decimal import Decimal

from sqlalchemy import DateTime, Index, Integer, Numeric, String, func
from sqlalchemy.dialects.postgresql import ENUM, UUID
from sqlalchemy.orm import Mapped, mapped_column

from offersync.core.database import Base


class LedgerStatus(str, enum.Enum):
  """Lifecycle states for ledger entries."""

  PENDING = "pending"
  COMPLETED = "completed"
  FAILED = "failed"


class Wallet(Base):
  __tablename__ = "wallets"

  user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
  balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"), server_default="0")
  offers_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  bulk_edits_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
  updated_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class LedgerEntry(Base):
  __tablename__ = "wallet_ledger_entries"
  __table_args__ = (
    Index("ix_ledger_user_product_type", "user_id", "product_id", "type"),
    Index("ix_ledger_user_external_type_job", "user_id", "external_id", "type", "job_id"),
  )

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  user_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
  type: Mapped[str] = mapped_column(String(64), nullable=False)
  amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
  status: Mapped[LedgerStatus] = mapped_column(ENUM(LedgerStatus, name="ledger_status", values_callable=lambda enum_cls: [item.value for item in enum_cls]), nullable=False, default=LedgerStatus.COMPLETED)
  product_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
  external_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
  job_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
  description: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
