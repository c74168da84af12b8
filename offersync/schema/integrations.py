"""SQLAlchemy model for connected marketplace accounts."""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import DateTime, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from offersync.core.database import Base


class MarketplaceIntegration(Base):
  __tablename__ = "marketplace_integrations"
  __table_args__ = (UniqueConstraint("user_id", "marketplace", name="ux_marketplace_integrations_user_marketplace"),)

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  user_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
  marketplace: Mapped[str] = mapped_column(String(32), nullable=False)
  access_token: Mapped[str] = mapped_column(Text, nullable=False)
  refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
  expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  updated_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
