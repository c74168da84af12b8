"""Single-offer description previews.

A preview generates the description for one offer and returns it without
touching the offer on the marketplace. Each preview is billed as one
`ai_description_update` unit, so the wallet is checked before the provider
is called and charged after the description exists.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal

from offersync.billing.ledger import InsufficientFundsError
from offersync.billing.service import BillingGateway
from offersync.content.formatting import parse_description_sections
from offersync.content.generator import DescriptionGenerator, build_product_context
from offersync.jobs.modifications import AiOptions, normalize_template_id
from offersync.jobs.service import BalancePreflight, BulkEditValidationError, CredentialSource
from offersync.marketplace.base import DescriptionSection, MarketplaceAdapter, MarketplaceSession
from offersync.utils.ids import generate_preview_id

logger = logging.getLogger(__name__)


class OfferNotFoundError(LookupError):
  """Raised when the marketplace returns no readable offer for the id."""


@dataclass(frozen=True)
class DescriptionPreview:
  offer_id: str
  description: str
  sections: tuple[DescriptionSection, ...]
  provider: str
  charged: Decimal


class DescriptionPreviewService:
  """Generates and bills one offer's description on request."""

  def __init__(self, *, generator: DescriptionGenerator, preflight: BalancePreflight, billing: BillingGateway, integrations: CredentialSource, adapter_lookup: Callable[[str], MarketplaceAdapter]) -> None:
    self._generator = generator
    self._preflight = preflight
    self._billing = billing
    self._integrations = integrations
    self._adapter_lookup = adapter_lookup

  async def generate(self, *, user_id: str, offer_id: str, template_id: str | None = None, options: AiOptions | None = None, marketplace: str = "allegro") -> DescriptionPreview:
    offer_id = offer_id.strip()
    if not offer_id:
      raise BulkEditValidationError("offerId must not be empty")
    try:
      adapter = self._adapter_lookup(marketplace)
    except ValueError as exc:
      raise BulkEditValidationError(str(exc)) from exc

    quote = await self._preflight.quote(user_id=user_id, units=1)
    if not quote.ok:
      raise InsufficientFundsError(required=quote.required, balance=quote.balance)

    credentials = await self._integrations.credentials(user_id, marketplace)
    session = MarketplaceSession(adapter, credentials, self._integrations.refresher(adapter, user_id=user_id, marketplace=marketplace))
    offer = await session.get_offer(offer_id)
    if offer is None:
      raise OfferNotFoundError(f"Offer {offer_id} not found")

    result = await self._generator.generate_description(user_id, build_product_context(offer), template_id=normalize_template_id(template_id), options=options)
    sections = parse_description_sections(result.html, offer.images)

    # A fresh preview id per request: regenerating the same offer is billed again.
    receipt = await self._billing.charge_offer_update(user_id=user_id, offer_id=offer_id, job_id=generate_preview_id(), description=f"AI description: {offer.name or offer_id}")
    logger.info("Preview for offer %s by user %s generated with %s, charged %s", offer_id, user_id, result.provider, receipt.amount)
    return DescriptionPreview(offer_id=offer_id, description=result.html, sections=tuple(sections), provider=result.provider, charged=receipt.amount)
