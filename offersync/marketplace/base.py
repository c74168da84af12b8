"""Marketplace adapter contract and the refresh-once session wrapper."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Protocol, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

OfferStatus = Literal["ACTIVE", "INACTIVE", "ENDED"]


class AuthExpiredError(RuntimeError):
  """Raised when the marketplace rejects the access token (HTTP 401)."""


class MarketplaceError(RuntimeError):
  """Raised for marketplace responses that are neither success nor auth failure."""

  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code


@dataclass(frozen=True)
class MarketplaceCredentials:
  access_token: str
  refresh_token: str | None = None
  expires_at: datetime | None = None


@dataclass(frozen=True)
class SectionItem:
  type: Literal["TEXT", "IMAGE"]
  content: str | None = None
  url: str | None = None

  @classmethod
  def text(cls, content: str) -> SectionItem:
    return cls(type="TEXT", content=content)

  @classmethod
  def image(cls, url: str) -> SectionItem:
    return cls(type="IMAGE", url=url)


@dataclass(frozen=True)
class DescriptionSection:
  items: tuple[SectionItem, ...]


@dataclass(frozen=True)
class OfferParameter:
  name: str
  values: tuple[str, ...] = ()
  id: str | None = None


@dataclass(frozen=True)
class Offer:
  """Marketplace offer fields the engine reads."""

  id: str
  name: str = ""
  images: tuple[str, ...] = ()
  description: tuple[DescriptionSection, ...] = ()
  parameters: tuple[OfferParameter, ...] = ()
  ean: str | None = None
  raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class PriceUpdate:
  amount: Decimal
  currency: str = "PLN"


@dataclass(frozen=True)
class OfferPatch:
  """Partial offer update; unset fields are left untouched on the marketplace."""

  description: tuple[DescriptionSection, ...] | None = None
  images: tuple[str, ...] | None = None
  price: PriceUpdate | None = None
  stock: int | None = None
  status: OfferStatus | None = None

  @property
  def is_empty(self) -> bool:
    return self.description is None and self.images is None and self.price is None and self.stock is None and self.status is None


@dataclass(frozen=True)
class UpdateResult:
  success: bool
  data: dict[str, Any] | None = None
  message: str | None = None


@dataclass(frozen=True)
class PriceCommandResult:
  success: bool
  command_id: str | None = None
  message: str | None = None


@dataclass(frozen=True)
class PriceCommandStatus:
  success: bool
  total: int = 0
  succeeded: int = 0
  failed: int = 0

  @property
  def finished(self) -> bool:
    return self.success and self.total > 0 and self.succeeded + self.failed == self.total


class MarketplaceAdapter(ABC):
  """Operations the batch processor needs from a marketplace."""

  name: str

  @abstractmethod
  async def get_offer(self, credentials: MarketplaceCredentials, offer_id: str) -> Offer | None:
    """Return the offer, or None when it is missing or unreadable."""

  @abstractmethod
  async def update_offer(self, credentials: MarketplaceCredentials, offer_id: str, patch: OfferPatch) -> UpdateResult:
    """Apply a partial update."""

  @abstractmethod
  async def change_price(self, credentials: MarketplaceCredentials, offer_id: str, amount: Decimal, currency: str = "PLN") -> PriceCommandResult:
    """Submit an asynchronous price change command."""

  @abstractmethod
  async def check_price_change_command(self, credentials: MarketplaceCredentials, command_id: str) -> PriceCommandStatus:
    """Read task counters of a price change command."""

  @abstractmethod
  async def upload_image(self, credentials: MarketplaceCredentials, source: str) -> str | None:
    """Upload a local file or remote URL, returning the marketplace-hosted URL."""

  @abstractmethod
  async def refresh_credentials(self, credentials: MarketplaceCredentials) -> MarketplaceCredentials:
    """Exchange the refresh token for a new access token."""

  @abstractmethod
  async def test_connection(self, credentials: MarketplaceCredentials) -> bool:
    """Return True when the credentials are accepted."""

  async def aclose(self) -> None:
    return None


class TokenRefresher(Protocol):
  async def __call__(self, credentials: MarketplaceCredentials) -> MarketplaceCredentials: ...


class MarketplaceSession:
  """Binds an adapter to one user's credentials and refreshes them at most once."""

  def __init__(self, adapter: MarketplaceAdapter, credentials: MarketplaceCredentials, refresher: TokenRefresher | None = None) -> None:
    self._adapter = adapter
    self._credentials = credentials
    self._refresher = refresher
    self._lock = asyncio.Lock()
    self._refreshed = False

  @property
  def credentials(self) -> MarketplaceCredentials:
    return self._credentials

  async def _refresh(self, stale: MarketplaceCredentials) -> MarketplaceCredentials:
    async with self._lock:
      # Another item already refreshed while this one waited on the lock.
      if self._credentials is not stale:
        return self._credentials
      if self._refreshed or self._refresher is None:
        raise AuthExpiredError("Marketplace authorization expired; reconnect the integration")
      logger.info("Refreshing %s credentials after 401", self._adapter.name)
      self._refreshed = True
      self._credentials = await self._refresher(stale)
      return self._credentials

  async def _call(self, operation: Callable[[MarketplaceCredentials], Awaitable[T]]) -> T:
    credentials = self._credentials
    try:
      return await operation(credentials)
    except AuthExpiredError:
      fresh = await self._refresh(credentials)
    return await operation(fresh)

  async def get_offer(self, offer_id: str) -> Offer | None:
    return await self._call(lambda creds: self._adapter.get_offer(creds, offer_id))

  async def update_offer(self, offer_id: str, patch: OfferPatch) -> UpdateResult:
    return await self._call(lambda creds: self._adapter.update_offer(creds, offer_id, patch))

  async def change_price(self, offer_id: str, amount: Decimal, currency: str = "PLN") -> PriceCommandResult:
    return await self._call(lambda creds: self._adapter.change_price(creds, offer_id, amount, currency))

  async def check_price_change_command(self, command_id: str) -> PriceCommandStatus:
    return await self._call(lambda creds: self._adapter.check_price_change_command(creds, command_id))

  async def upload_image(self, source: str) -> str | None:
    return await self._call(lambda creds: self._adapter.upload_image(creds, source))


def with_tokens(credentials: MarketplaceCredentials, *, access_token: str, refresh_token: str | None, expires_at: datetime | None) -> MarketplaceCredentials:
  return replace(credentials, access_token=access_token, refresh_token=refresh_token or credentials.refresh_token, expires_at=expires_at)
