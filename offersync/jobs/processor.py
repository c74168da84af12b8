"""Chunked execution of bulk edit jobs.

Chunks run one after another; offers inside a chunk are handled concurrently.
Complex chunks (AI descriptions or image regeneration) bill each changed offer
after the chunk joins, one charge at a time, and only then report results to
the registry. Per-offer problems become `ItemFailure`s; only an unexpected
error outside the chunk loop fails the job.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, replace
from typing import TypeVar

import httpx

from offersync.billing.ledger import ChargeError, InsufficientFundsError
from offersync.billing.service import BillingGateway
from offersync.content.formatting import parse_description_sections
from offersync.content.generator import BulkGenerationResult, DescriptionGenerator, build_product_context
from offersync.images.processor import ImageProcessor, ImageSourceError
from offersync.images.ssrf import UnsafeUrlError
from offersync.jobs.models import EditArtifact, FailureKind, ItemFailure, ItemOutcome, ItemSuccess
from offersync.jobs.modifications import ImageProcessing, ModificationRequest, PriceChange
from offersync.jobs.registry import JobRegistry
from offersync.marketplace.base import AuthExpiredError, MarketplaceError, MarketplaceSession, Offer, OfferPatch, PriceUpdate

T = TypeVar("T")
logger = logging.getLogger(__name__)

OFFER_NOT_FOUND_MESSAGE = "Offer not found or access denied"
PRICE_REJECTED_MESSAGE = "Price change rejected by marketplace"
PRICE_UNTRACKED_NOTE = "Price change submitted; no command id to confirm it"


@dataclass(frozen=True)
class BatchSettings:
  simple_chunk_size: int = 2
  complex_chunk_size: int = 3
  price_poll_interval_seconds: float = 2.0
  price_poll_attempts: int = 15


@dataclass(frozen=True)
class JobRequest:
  """Everything one job run needs; built by the HTTP layer at submission."""

  job_id: str
  user_id: str
  offer_ids: tuple[str, ...]
  modifications: ModificationRequest
  marketplace: MarketplaceSession


def _chunks(items: Sequence[str], size: int) -> list[Sequence[str]]:
  return [items[start : start + size] for start in range(0, len(items), size)]


def _base_patch(modifications: ModificationRequest) -> OfferPatch:
  price = PriceUpdate(amount=modifications.price.amount, currency=modifications.price.currency) if modifications.price else None
  return OfferPatch(price=price, stock=modifications.stock, status=modifications.status)


def billing_label(artifact: EditArtifact) -> str:
  if artifact.has_description and artifact.has_images:
    return "Bulk edit (AI + images)"
  if artifact.has_description:
    return "Bulk edit (AI)"
  return "Bulk edit (images)"


class BatchProcessor:
  """Runs a job's chunks and keeps the registry and wallet in step."""

  def __init__(self, registry: JobRegistry, billing: BillingGateway, *, generator: DescriptionGenerator | None = None, image_processor: ImageProcessor | None = None, settings: BatchSettings | None = None, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
    self._registry = registry
    self._billing = billing
    self._generator = generator
    self._images = image_processor
    self._settings = settings or BatchSettings()
    self._sleep = sleep

  async def run(self, request: JobRequest) -> None:
    job_id = request.job_id
    self._registry.mark_processing(job_id)
    size = self._settings.complex_chunk_size if request.modifications.complex else self._settings.simple_chunk_size
    chunks = _chunks(request.offer_ids, size)
    logger.info("Job %s: %d offers in %d chunks (%s mode)", job_id, len(request.offer_ids), len(chunks), "complex" if request.modifications.complex else "simple")

    try:
      succeeded = 0
      for index, chunk in enumerate(chunks, start=1):
        outcomes = await self._run_chunk(request, chunk)
        self._registry.record_batch_result(job_id, outcomes)
        succeeded += sum(1 for outcome in outcomes if isinstance(outcome, ItemSuccess))
        logger.debug("Job %s chunk %d/%d done", job_id, index, len(chunks))

      # The lifetime counter only moves once, after every chunk has reported.
      await self._record_bulk_edits(request.user_id, succeeded)
      self._registry.finalize(job_id, "completed")
    except Exception as exc:  # noqa: BLE001
      logger.error("Job %s failed", job_id, exc_info=True)
      self._registry.finalize(job_id, "failed", error=str(exc) or type(exc).__name__)

  async def _run_chunk(self, request: JobRequest, chunk: Sequence[str]) -> list[ItemOutcome]:
    try:
      if request.modifications.complex:
        outcomes = await self._complex_chunk(request, chunk)
      else:
        outcomes = await self._simple_chunk(request, chunk)
    except Exception as exc:  # noqa: BLE001
      logger.error("Critical error in job %s chunk %s", request.job_id, list(chunk), exc_info=True)
      return [ItemFailure(offer_id, FailureKind.CRITICAL_BATCH, f"Critical batch error: {exc}") for offer_id in chunk]

    if request.modifications.complex:
      outcomes = await self._bill(request, outcomes)
    return outcomes

  async def _guard(self, offer_id: str, work: Awaitable[T]) -> T | ItemFailure:
    """Turn per-offer exceptions into failures so one offer never sinks its chunk."""
    try:
      return await work
    except AuthExpiredError as exc:
      logger.warning("Offer %s: marketplace authorization expired", offer_id)
      return ItemFailure(offer_id, FailureKind.AUTH_EXPIRED, str(exc))
    except MarketplaceError as exc:
      logger.warning("Offer %s: marketplace error %s", offer_id, exc)
      return ItemFailure(offer_id, FailureKind.MARKETPLACE, str(exc))
    except Exception as exc:  # noqa: BLE001
      logger.error("Offer %s: unexpected error", offer_id, exc_info=True)
      return ItemFailure(offer_id, FailureKind.MARKETPLACE, str(exc) or type(exc).__name__)

  async def _fetch(self, session: MarketplaceSession, offer_id: str) -> Offer | ItemFailure:
    try:
      offer = await session.get_offer(offer_id)
    except AuthExpiredError as exc:
      return ItemFailure(offer_id, FailureKind.AUTH_EXPIRED, str(exc))
    if offer is None:
      logger.warning("Offer %s not found", offer_id)
      return ItemFailure(offer_id, FailureKind.NOT_FOUND, OFFER_NOT_FOUND_MESSAGE)
    return offer

  # Simple mode

  async def _simple_chunk(self, request: JobRequest, chunk: Sequence[str]) -> list[ItemOutcome]:
    return list(await asyncio.gather(*(self._guard(offer_id, self._simple_item(request, offer_id)) for offer_id in chunk)))

  async def _simple_item(self, request: JobRequest, offer_id: str) -> ItemOutcome:
    modifications = request.modifications
    if modifications.price_only and modifications.price is not None:
      return await self._change_price(request, offer_id, modifications.price)

    fetched = await self._fetch(request.marketplace, offer_id)
    if isinstance(fetched, ItemFailure):
      return fetched

    patch = _base_patch(modifications)
    if patch.is_empty:
      return ItemSuccess(offer_id, EditArtifact(note="No changes applied"))

    result = await request.marketplace.update_offer(offer_id, patch)
    if not result.success:
      return ItemFailure(offer_id, FailureKind.MARKETPLACE, result.message or "Marketplace rejected the update")
    return ItemSuccess(offer_id, EditArtifact(product_name=fetched.name or None))

  async def _change_price(self, request: JobRequest, offer_id: str, price: PriceChange) -> ItemOutcome:
    submitted = await request.marketplace.change_price(offer_id, price.amount, price.currency)
    if not submitted.success:
      return ItemFailure(offer_id, FailureKind.MARKETPLACE, submitted.message or "Price change command rejected")
    if not submitted.command_id:
      # Accepted, but there is no command to poll for confirmation.
      logger.warning("Price change for offer %s accepted without a command id", offer_id)
      return ItemSuccess(offer_id, EditArtifact(note=PRICE_UNTRACKED_NOTE))

    for _ in range(self._settings.price_poll_attempts):
      await self._sleep(self._settings.price_poll_interval_seconds)
      status = await request.marketplace.check_price_change_command(submitted.command_id)
      if status.finished:
        if status.failed > 0:
          return ItemFailure(offer_id, FailureKind.MARKETPLACE, PRICE_REJECTED_MESSAGE)
        return ItemSuccess(offer_id)

    # The command was accepted; the marketplace is just slow to confirm it.
    logger.warning("Price change command %s for offer %s unconfirmed after %d checks", submitted.command_id, offer_id, self._settings.price_poll_attempts)
    return ItemSuccess(offer_id, EditArtifact(note="Price change submitted; confirmation timed out"))

  # Complex mode

  async def _complex_chunk(self, request: JobRequest, chunk: Sequence[str]) -> list[ItemOutcome]:
    fetched = await asyncio.gather(*(self._guard(offer_id, self._fetch(request.marketplace, offer_id)) for offer_id in chunk))
    offers = [item for item in fetched if isinstance(item, Offer)]

    # One generation pass per chunk; failed fetches never reach the model.
    generation = BulkGenerationResult()
    if request.modifications.ai_mode and offers:
      generation = await self._generate(request, offers)

    async def _item(entry: Offer | ItemFailure) -> ItemOutcome:
      if isinstance(entry, ItemFailure):
        return entry
      return await self._guard(entry.id, self._complex_item(request, entry, generation))

    return list(await asyncio.gather(*(_item(entry) for entry in fetched)))

  async def _generate(self, request: JobRequest, offers: Sequence[Offer]) -> BulkGenerationResult:
    if self._generator is None:
      return BulkGenerationResult(errors={offer.id: "AI description generator is not configured" for offer in offers})
    contexts = [build_product_context(offer) for offer in offers]
    result = await self._generator.generate_bulk(request.user_id, contexts, template_id=request.modifications.explicit_template_id, options=request.modifications.options)
    logger.info("Job %s: generated %d descriptions, %d failed (provider %s)", request.job_id, len(result.descriptions), len(result.errors), result.provider)
    return result

  async def _complex_item(self, request: JobRequest, offer: Offer, generation: BulkGenerationResult) -> ItemOutcome:
    modifications = request.modifications
    generation_error = generation.errors.get(offer.id)

    description = None
    html = generation.descriptions.get(offer.id)
    if html:
      sections = parse_description_sections(html, offer.images)
      if sections:
        description = tuple(sections)
      else:
        logger.warning("Offer %s: generated description produced no sections", offer.id)

    images = None
    processing = modifications.image_processing
    if processing is not None and processing.enabled and offer.images:
      images = await self._regenerate_images(request, offer, processing)

    patch = replace(_base_patch(modifications), description=description, images=images)
    if patch.is_empty:
      if modifications.ai_mode and generation_error:
        return ItemFailure(offer.id, FailureKind.GENERATION, f"AI description generation failed: {generation_error}")
      return ItemFailure(offer.id, FailureKind.NO_CHANGES, "No changes to apply")

    result = await request.marketplace.update_offer(offer.id, patch)
    if not result.success:
      logger.warning("Offer %s update rejected: %s", offer.id, result.message)
      return ItemFailure(offer.id, FailureKind.MARKETPLACE, result.message or "Marketplace rejected the update")

    note = f"Description not updated: {generation_error}" if modifications.ai_mode and generation_error else None
    return ItemSuccess(offer.id, EditArtifact(has_description=description is not None, has_images=images is not None, product_name=offer.name or None, note=note))

  async def _regenerate_images(self, request: JobRequest, offer: Offer, processing: ImageProcessing) -> tuple[str, ...] | None:
    """Return the new image list, or None when no image could be replaced."""
    if self._images is None:
      logger.warning("Offer %s: image processing requested but no image processor configured", offer.id)
      return None

    urls: list[str] = []
    changed = False
    for position, url in enumerate(offer.images):
      try:
        processed = await self._images.process(url, processing.type, processing.background_image_url)
      except (ImageSourceError, UnsafeUrlError, httpx.HTTPError, OSError) as exc:
        logger.warning("Offer %s image %d kept original: %s", offer.id, position, exc)
        urls.append(url)
        continue

      try:
        uploaded = await request.marketplace.upload_image(str(processed.local_path))
      finally:
        processed.local_path.unlink(missing_ok=True)

      if uploaded:
        urls.append(uploaded)
        changed = True
      else:
        logger.warning("Offer %s image %d upload failed; keeping original", offer.id, position)
        urls.append(url)

    return tuple(urls) if changed else None

  # Billing

  async def _bill(self, request: JobRequest, outcomes: list[ItemOutcome]) -> list[ItemOutcome]:
    billed: list[ItemOutcome] = []
    # Charges run one at a time; each is priced off the counter the previous one advanced.
    for outcome in outcomes:
      if not isinstance(outcome, ItemSuccess) or not outcome.artifact.billable:
        billed.append(outcome)
        continue

      artifact = outcome.artifact
      description = f"{billing_label(artifact)}: {artifact.product_name or outcome.offer_id}"
      warning = None
      try:
        receipt = await self._billing.charge_offer_update(user_id=request.user_id, offer_id=outcome.offer_id, job_id=request.job_id, description=description)
      except InsufficientFundsError as exc:
        logger.error("Job %s: insufficient funds to bill offer %s (required %s, balance %s)", request.job_id, outcome.offer_id, exc.required, exc.balance)
        warning = "Offer updated but the charge failed: insufficient funds"
      except ChargeError as exc:
        logger.error("Job %s: charge for offer %s failed: %s", request.job_id, outcome.offer_id, exc)
        warning = f"Offer updated but the charge failed: {exc}"
      except Exception:  # noqa: BLE001
        logger.error("Job %s: unexpected billing error for offer %s", request.job_id, outcome.offer_id, exc_info=True)
        warning = "Offer updated but the charge failed"
      else:
        if receipt.skipped:
          logger.info("Job %s: offer %s already billed; skipping", request.job_id, outcome.offer_id)
        else:
          logger.info("Job %s: charged %s for offer %s", request.job_id, receipt.amount, outcome.offer_id)

      # The offer already changed on the marketplace, so a failed charge stays a success.
      if warning:
        note = f"{artifact.note}; {warning}" if artifact.note else warning
        outcome = replace(outcome, artifact=replace(artifact, note=note))
      billed.append(outcome)
    return billed

  async def _record_bulk_edits(self, user_id: str, count: int) -> None:
    if count <= 0:
      return
    try:
      await self._billing.record_bulk_edits(user_id=user_id, count=count)
    except Exception:  # noqa: BLE001
      logger.error("Could not update bulk edit counter for user %s", user_id, exc_info=True)
