"""Credential refresh happens at most once per session, even under concurrency."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from offersync.marketplace.base import AuthExpiredError, MarketplaceCredentials, MarketplaceSession, Offer, OfferPatch


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.mark.anyio
async def test_expired_token_is_refreshed_and_call_retried(fake_marketplace) -> None:
  fake_marketplace.offers["A"] = Offer(id="A", name="Lamp")
  fake_marketplace.expired_tokens.add("stale")
  session = MarketplaceSession(fake_marketplace, MarketplaceCredentials(access_token="stale", refresh_token="r"), fake_marketplace.refresh_credentials)

  offer = await session.get_offer("A")

  assert offer.name == "Lamp"
  assert fake_marketplace.refreshes == 1
  assert session.credentials.access_token == "fresh-1"
  assert session.credentials.refresh_token == "r"


@pytest.mark.anyio
async def test_second_expiry_is_not_refreshed_again(fake_marketplace) -> None:
  fake_marketplace.expired_tokens.update({"stale", "fresh-1"})
  session = MarketplaceSession(fake_marketplace, MarketplaceCredentials(access_token="stale"), fake_marketplace.refresh_credentials)

  with pytest.raises(AuthExpiredError):
    await session.update_offer("A", OfferPatch(stock=1))
  with pytest.raises(AuthExpiredError):
    await session.change_price("A", Decimal("10.00"))

  assert fake_marketplace.refreshes == 1


@pytest.mark.anyio
async def test_concurrent_expiries_share_one_refresh(fake_marketplace) -> None:
  fake_marketplace.offers.update({"A": Offer(id="A"), "B": Offer(id="B"), "C": Offer(id="C")})
  fake_marketplace.expired_tokens.add("stale")
  refreshes = 0

  async def slow_refresh(credentials: MarketplaceCredentials) -> MarketplaceCredentials:
    nonlocal refreshes
    refreshes += 1
    await asyncio.sleep(0.01)
    return MarketplaceCredentials(access_token="fresh")

  session = MarketplaceSession(fake_marketplace, MarketplaceCredentials(access_token="stale"), slow_refresh)
  offers = await asyncio.gather(session.get_offer("A"), session.get_offer("B"), session.get_offer("C"))

  assert [offer.id for offer in offers] == ["A", "B", "C"]
  assert refreshes == 1


@pytest.mark.anyio
async def test_without_refresher_expiry_propagates(fake_marketplace) -> None:
  fake_marketplace.expired_tokens.add("stale")
  session = MarketplaceSession(fake_marketplace, MarketplaceCredentials(access_token="stale"))

  with pytest.raises(AuthExpiredError):
    await session.upload_image("https://img/1.jpg")
