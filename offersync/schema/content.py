"""SQLAlchemy models for description templates and per-user generation preferences."""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Boolean, DateTime, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from offersync.core.database import Base


class AiTemplate(Base):
  __tablename__ = "ai_templates"

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  user_id: Mapped[str | None] = mapped_column(String(128), index=True, nullable=True)
  name: Mapped[str] = mapped_column(String(255), nullable=False)
  # Either a JSON array of sections or a free-form legacy prompt.
  content: Mapped[str] = mapped_column(Text, nullable=False)
  is_global: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class GenerationPreference(Base):
  __tablename__ = "generation_preferences"

  user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
  ai_provider: Mapped[str | None] = mapped_column(String(32), nullable=True)
  description_style: Mapped[str | None] = mapped_column(String(64), nullable=True)
  updated_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
