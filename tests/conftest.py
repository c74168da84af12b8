"""Shared in-memory doubles for marketplace, billing and AI collaborators."""

from __future__ import annotations

from decimal import Decimal

import pytest

from offersync.billing.ledger import ChargeReceipt
from offersync.marketplace.base import AuthExpiredError, MarketplaceAdapter, MarketplaceCredentials, Offer, OfferPatch, PriceCommandResult, PriceCommandStatus, UpdateResult, with_tokens


class FakeMarketplace(MarketplaceAdapter):
  """Marketplace adapter that records calls and serves offers from a dict."""

  name = "fake"

  def __init__(self) -> None:
    self.offers: dict[str, Offer] = {}
    self.updates: list[tuple[str, OfferPatch]] = []
    self.update_result = UpdateResult(success=True)
    self.price_calls: list[tuple[str, Decimal, str]] = []
    self.price_status = PriceCommandStatus(success=True, total=1, succeeded=1, failed=0)
    self.price_result: PriceCommandResult | None = None
    self.offer_errors: dict[str, Exception] = {}
    self.uploads: list[str] = []
    self.expired_tokens: set[str] = set()
    self.refreshes = 0

  def _check(self, credentials: MarketplaceCredentials) -> None:
    if credentials.access_token in self.expired_tokens:
      raise AuthExpiredError("token expired")

  async def get_offer(self, credentials, offer_id):
    self._check(credentials)
    if offer_id in self.offer_errors:
      raise self.offer_errors[offer_id]
    return self.offers.get(offer_id)

  async def update_offer(self, credentials, offer_id, patch):
    self._check(credentials)
    self.updates.append((offer_id, patch))
    return self.update_result

  async def change_price(self, credentials, offer_id, amount, currency="PLN"):
    self._check(credentials)
    self.price_calls.append((offer_id, amount, currency))
    if self.price_result is not None:
      return self.price_result
    return PriceCommandResult(success=True, command_id=f"cmd-{offer_id}")

  async def check_price_change_command(self, credentials, command_id):
    self._check(credentials)
    return self.price_status

  async def upload_image(self, credentials, source):
    self._check(credentials)
    self.uploads.append(source)
    return f"https://images.example/{len(self.uploads)}.png"

  async def refresh_credentials(self, credentials):
    self.refreshes += 1
    return with_tokens(credentials, access_token=f"fresh-{self.refreshes}", refresh_token=None, expires_at=None)

  async def test_connection(self, credentials):
    return credentials.access_token not in self.expired_tokens


class FakeBilling:
  """BillingGateway that records charges instead of touching a wallet."""

  def __init__(self) -> None:
    self.charges: list[dict[str, str]] = []
    self.bulk_edits: list[tuple[str, int]] = []
    self.error: Exception | None = None

  async def charge_offer_update(self, *, user_id: str, offer_id: str, job_id: str, description: str) -> ChargeReceipt:
    if self.error is not None:
      raise self.error
    self.charges.append({"user_id": user_id, "offer_id": offer_id, "job_id": job_id, "description": description})
    return ChargeReceipt(charged=True, amount=Decimal("1.09"), balance=Decimal("10.00"), offers_created=len(self.charges))

  async def record_bulk_edits(self, *, user_id: str, count: int) -> None:
    self.bulk_edits.append((user_id, count))


@pytest.fixture
def fake_marketplace() -> FakeMarketplace:
  return FakeMarketplace()


@pytest.fixture
def fake_billing() -> FakeBilling:
  return FakeBilling()
