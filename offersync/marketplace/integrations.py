"""Stored marketplace connections and token persistence."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from offersync.marketplace.base import MarketplaceAdapter, MarketplaceCredentials
from offersync.schema.integrations import MarketplaceIntegration

logger = logging.getLogger(__name__)


class IntegrationNotFoundError(LookupError):
  """Raised when the user has not connected the requested marketplace."""


async def get_integration(session: AsyncSession, user_id: str, marketplace: str) -> MarketplaceCredentials:
  stmt = select(MarketplaceIntegration).where(MarketplaceIntegration.user_id == user_id, MarketplaceIntegration.marketplace == marketplace)
  integration = (await session.execute(stmt)).scalar_one_or_none()
  if integration is None or not integration.access_token:
    raise IntegrationNotFoundError(f"{marketplace.capitalize()} integration not found. Connect your account first.")
  return MarketplaceCredentials(access_token=integration.access_token, refresh_token=integration.refresh_token, expires_at=integration.expires_at)


class IntegrationTokenRefresher:
  """Refreshes credentials through the adapter and stores the new tokens."""

  def __init__(self, adapter: MarketplaceAdapter, session_factory: async_sessionmaker[AsyncSession], *, user_id: str, marketplace: str) -> None:
    self._adapter = adapter
    self._session_factory = session_factory
    self._user_id = user_id
    self._marketplace = marketplace

  async def __call__(self, credentials: MarketplaceCredentials) -> MarketplaceCredentials:
    fresh = await self._adapter.refresh_credentials(credentials)
    async with self._session_factory() as session:
      stmt = select(MarketplaceIntegration).where(MarketplaceIntegration.user_id == self._user_id, MarketplaceIntegration.marketplace == self._marketplace)
      integration = (await session.execute(stmt)).scalar_one_or_none()
      if integration is None:
        # Tokens still work for this job even if the row was removed meanwhile.
        logger.warning("Integration %s for user %s disappeared during refresh", self._marketplace, self._user_id)
        return fresh
      integration.access_token = fresh.access_token
      integration.refresh_token = fresh.refresh_token
      integration.expires_at = fresh.expires_at
      await session.commit()
    logger.info("Stored refreshed %s tokens for user %s", self._marketplace, self._user_id)
    return fresh


class IntegrationStore:
  """Loads a user's marketplace credentials and builds the matching token refresher."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def credentials(self, user_id: str, marketplace: str) -> MarketplaceCredentials:
    async with self._session_factory() as session:
      return await get_integration(session, user_id, marketplace)

  def refresher(self, adapter: MarketplaceAdapter, *, user_id: str, marketplace: str) -> IntegrationTokenRefresher:
    return IntegrationTokenRefresher(adapter, self._session_factory, user_id=user_id, marketplace=marketplace)
