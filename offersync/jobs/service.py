"""Bulk edit job submission: validation, conflict check, pre-flight, scheduling."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Protocol

from offersync.billing.ledger import InsufficientFundsError
from offersync.billing.service import PreflightQuote
from offersync.jobs.models import Job
from offersync.jobs.modifications import ModificationRequest
from offersync.jobs.processor import BatchProcessor, JobRequest
from offersync.jobs.registry import ConflictError, JobRegistry
from offersync.jobs.runner import JobRunner
from offersync.marketplace.base import MarketplaceAdapter, MarketplaceCredentials, MarketplaceSession, TokenRefresher

logger = logging.getLogger(__name__)


class BulkEditValidationError(ValueError):
  """Raised for requests that cannot start a job."""


class BalancePreflight(Protocol):
  async def quote(self, *, user_id: str, units: int) -> PreflightQuote: ...


class CredentialSource(Protocol):
  async def credentials(self, user_id: str, marketplace: str) -> MarketplaceCredentials: ...

  def refresher(self, adapter: MarketplaceAdapter, *, user_id: str, marketplace: str) -> TokenRefresher: ...


class BulkEditService:
  """Creates jobs and hands them to the runner; never waits for them to finish."""

  def __init__(self, *, registry: JobRegistry, runner: JobRunner, processor: BatchProcessor, preflight: BalancePreflight, integrations: CredentialSource, adapter_lookup: Callable[[str], MarketplaceAdapter]) -> None:
    self._registry = registry
    self._runner = runner
    self._processor = processor
    self._preflight = preflight
    self._integrations = integrations
    self._adapter_lookup = adapter_lookup

  async def submit(self, *, user_id: str, offer_ids: Sequence[str], modifications: ModificationRequest, marketplace: str = "allegro") -> Job:
    ids = [str(offer_id).strip() for offer_id in offer_ids if str(offer_id).strip()]
    if not ids:
      raise BulkEditValidationError("offerIds must contain at least one offer id")
    if not modifications.has_changes:
      raise BulkEditValidationError("No modifications requested")
    try:
      adapter = self._adapter_lookup(marketplace)
    except ValueError as exc:
      raise BulkEditValidationError(str(exc)) from exc

    conflicts = self._registry.find_conflicts(user_id, ids)
    if conflicts:
      raise ConflictError(conflicts)

    credentials = await self._integrations.credentials(user_id, marketplace)

    unique_count = len(dict.fromkeys(ids))
    if modifications.complex:
      quote = await self._preflight.quote(user_id=user_id, units=unique_count)
      if not quote.ok:
        logger.info("Rejecting job for user %s: needs %s, balance %s", user_id, quote.required, quote.balance)
        raise InsufficientFundsError(required=quote.required, balance=quote.balance)

    job = self._registry.create(user_id, ids)
    session = MarketplaceSession(adapter, credentials, self._integrations.refresher(adapter, user_id=user_id, marketplace=marketplace))
    request = JobRequest(job_id=job.id, user_id=user_id, offer_ids=job.offer_ids, modifications=modifications, marketplace=session)
    self._runner.submit(job.id, lambda: self._processor.run(request))
    logger.info("Queued job %s for user %s with %d offers", job.id, user_id, job.total)
    return job
