"""End-to-end job runs through the batch processor with in-memory collaborators."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from offersync.billing.ledger import InsufficientFundsError
from offersync.content.generator import BulkGenerationResult
from offersync.images.processor import ProcessedImage
from offersync.jobs.modifications import ModificationRequest
from offersync.jobs.processor import BatchProcessor, BatchSettings, JobRequest
from offersync.jobs.registry import JobRegistry
from offersync.marketplace.base import MarketplaceCredentials, MarketplaceError, MarketplaceSession, Offer, PriceCommandResult, PriceCommandStatus, UpdateResult


@pytest.fixture
def anyio_backend():
  return "asyncio"


class FakeGenerator:
  def __init__(self, result: BulkGenerationResult | None = None, *, error: Exception | None = None) -> None:
    self.result = result or BulkGenerationResult()
    self.error = error
    self.calls: list[dict] = []

  async def generate_bulk(self, user_id, contexts, *, template_id=None, options=None):
    self.calls.append({"user_id": user_id, "offer_ids": [context.offer_id for context in contexts], "template_id": template_id})
    if self.error is not None:
      raise self.error
    return self.result


class FakeImages:
  def __init__(self, directory: Path) -> None:
    self.directory = directory
    self.outputs: list[Path] = []

  async def process(self, image_url, edit_type="enhance", background_image_url=None):
    path = self.directory / f"processed-{len(self.outputs)}.png"
    path.write_bytes(b"png")
    self.outputs.append(path)
    return ProcessedImage(processed_url=f"/uploads/processed/{path.name}", local_path=path)


SETTINGS = BatchSettings(simple_chunk_size=2, complex_chunk_size=3, price_poll_interval_seconds=0, price_poll_attempts=3)


def _run_setup(registry: JobRegistry, marketplace, offer_ids: list[str], modifications: dict, *, token: str = "token") -> JobRequest:
  job = registry.create("user-1", offer_ids)
  session = MarketplaceSession(marketplace, MarketplaceCredentials(access_token=token), marketplace.refresh_credentials)
  return JobRequest(job_id=job.id, user_id="user-1", offer_ids=job.offer_ids, modifications=ModificationRequest.model_validate(modifications), marketplace=session)


@pytest.mark.anyio
async def test_price_only_job_uses_price_commands_and_is_free(fake_marketplace, fake_billing) -> None:
  registry = JobRegistry()
  request = _run_setup(registry, fake_marketplace, ["A", "B", "C"], {"price": {"amount": "19.99"}})
  sleep = AsyncMock()

  await BatchProcessor(registry, fake_billing, settings=SETTINGS, sleep=sleep).run(request)

  job = registry.get(request.job_id, "user-1")
  assert job.status == "completed"
  assert (job.total, job.processed, job.success, job.failed) == (3, 3, 3, 0)
  assert [call[0] for call in fake_marketplace.price_calls] == ["A", "B", "C"]
  assert fake_marketplace.price_calls[0][1] == Decimal("19.99")
  assert fake_marketplace.updates == []
  assert fake_billing.charges == []
  assert fake_billing.bulk_edits == [("user-1", 3)]


@pytest.mark.anyio
async def test_rejected_price_command_fails_the_offer(fake_marketplace, fake_billing) -> None:
  fake_marketplace.price_status = PriceCommandStatus(success=True, total=1, succeeded=0, failed=1)
  registry = JobRegistry()
  request = _run_setup(registry, fake_marketplace, ["A"], {"price": {"amount": "5.00"}})

  await BatchProcessor(registry, fake_billing, settings=SETTINGS, sleep=AsyncMock()).run(request)

  job = registry.get(request.job_id, "user-1")
  assert job.failed == 1
  assert job.details[0].error == "Price change rejected by marketplace"
  assert job.details[0].kind == "marketplace"
  assert fake_billing.bulk_edits == []


@pytest.mark.anyio
async def test_unconfirmed_price_command_counts_as_success_with_note(fake_marketplace, fake_billing) -> None:
  fake_marketplace.price_status = PriceCommandStatus(success=True, total=0)
  registry = JobRegistry()
  request = _run_setup(registry, fake_marketplace, ["A"], {"price": {"amount": "5.00"}})
  sleep = AsyncMock()

  await BatchProcessor(registry, fake_billing, settings=SETTINGS, sleep=sleep).run(request)

  job = registry.get(request.job_id, "user-1")
  assert job.success == 1
  assert "timed out" in job.details[0].note
  assert sleep.await_count == SETTINGS.price_poll_attempts


@pytest.mark.anyio
async def test_accepted_price_command_without_id_counts_as_success(fake_marketplace, fake_billing) -> None:
  fake_marketplace.price_result = PriceCommandResult(success=True, command_id=None)
  registry = JobRegistry()
  request = _run_setup(registry, fake_marketplace, ["A"], {"price": {"amount": "5.00"}})
  sleep = AsyncMock()

  await BatchProcessor(registry, fake_billing, settings=SETTINGS, sleep=sleep).run(request)

  job = registry.get(request.job_id, "user-1")
  assert (job.success, job.failed) == (1, 0)
  assert job.details[0].note == "Price change submitted; no command id to confirm it"
  sleep.assert_not_awaited()
  assert fake_billing.bulk_edits == [("user-1", 1)]


@pytest.mark.anyio
async def test_rejected_price_command_submission_fails_the_offer(fake_marketplace, fake_billing) -> None:
  fake_marketplace.price_result = PriceCommandResult(success=False, message="Offer is not active")
  registry = JobRegistry()
  request = _run_setup(registry, fake_marketplace, ["A"], {"price": {"amount": "5.00"}})

  await BatchProcessor(registry, fake_billing, settings=SETTINGS, sleep=AsyncMock()).run(request)

  job = registry.get(request.job_id, "user-1")
  assert job.failed == 1
  assert (job.details[0].kind, job.details[0].error) == ("marketplace", "Offer is not active")

@pytest.mark.anyio
async def test_simple_edit_patches_stock_and_status(fake_marketplace, fake_billing) -> None:
  fake_marketplace.offers["A"] = Offer(id="A", name="Lamp")
  registry = JobRegistry()
  request = _run_setup(registry, fake_marketplace, ["A", "missing"], {"stock": 7, "status": "INACTIVE", "price": {"amount": "9.99"}})

  await BatchProcessor(registry, fake_billing, settings=SETTINGS, sleep=AsyncMock()).run(request)

  job = registry.get(request.job_id, "user-1")
  assert (job.success, job.failed) == (1, 1)
  offer_id, patch = fake_marketplace.updates[0]
  assert offer_id == "A"
  assert (patch.stock, patch.status, patch.price.amount) == (7, "INACTIVE", Decimal("9.99"))
  assert patch.description is None
  missing = next(detail for detail in job.details if detail.offer_id == "missing")
  assert missing.error == "Offer not found or access denied"
  assert fake_marketplace.price_calls == []


@pytest.mark.anyio
async def test_marketplace_rejection_is_reported_per_offer(fake_marketplace, fake_billing) -> None:
  fake_marketplace.offers["A"] = Offer(id="A")
  fake_marketplace.update_result = UpdateResult(success=False, message="Invalid value (stock.available)")
  registry = JobRegistry()
  request = _run_setup(registry, fake_marketplace, ["A"], {"stock": 1})

  await BatchProcessor(registry, fake_billing, settings=SETTINGS).run(request)

  detail = registry.get(request.job_id, "user-1").details[0]
  assert detail.success is False
  assert detail.error == "Invalid value (stock.available)"


@pytest.mark.anyio
async def test_expired_token_is_refreshed_once_for_the_job(fake_marketplace, fake_billing) -> None:
  fake_marketplace.offers.update({"A": Offer(id="A"), "B": Offer(id="B")})
  fake_marketplace.expired_tokens.add("stale")
  registry = JobRegistry()
  request = _run_setup(registry, fake_marketplace, ["A", "B"], {"stock": 2}, token="stale")

  await BatchProcessor(registry, fake_billing, settings=SETTINGS).run(request)

  assert registry.get(request.job_id, "user-1").success == 2
  assert fake_marketplace.refreshes == 1


@pytest.mark.anyio
async def test_auth_failure_after_refresh_marks_offers(fake_marketplace, fake_billing) -> None:
  fake_marketplace.offers["A"] = Offer(id="A")
  fake_marketplace.expired_tokens.update({"stale", "fresh-1"})
  registry = JobRegistry()
  request = _run_setup(registry, fake_marketplace, ["A"], {"stock": 2}, token="stale")

  await BatchProcessor(registry, fake_billing, settings=SETTINGS).run(request)

  job = registry.get(request.job_id, "user-1")
  assert job.status == "completed"
  assert job.details[0].kind == "auth_expired"


@pytest.mark.anyio
async def test_ai_job_bills_only_changed_offers(fake_marketplace, fake_billing) -> None:
  fake_marketplace.offers.update({"A": Offer(id="A", name="Desk Lamp", images=("https://img/a1.jpg",)), "B": Offer(id="B", name="Chair")})
  generator = FakeGenerator(BulkGenerationResult(descriptions={"A": "<h1>Lamp</h1>\n[IMAGE]\n<p>Bright</p>"}, errors={"B": "Generated description is empty after assembling sections"}, provider="gemini"))
  registry = JobRegistry()
  request = _run_setup(registry, fake_marketplace, ["A", "B"], {"aiTemplateId": "default"})

  await BatchProcessor(registry, fake_billing, generator=generator, settings=SETTINGS).run(request)

  job = registry.get(request.job_id, "user-1")
  assert (job.success, job.failed) == (1, 1)
  failed = next(detail for detail in job.details if detail.offer_id == "B")
  assert failed.kind == "generation"
  assert failed.error.startswith("AI description generation failed:")
  assert generator.calls[0]["template_id"] is None

  offer_id, patch = fake_marketplace.updates[0]
  assert offer_id == "A"
  assert patch.description[0].items[1].url == "https://img/a1.jpg"
  assert len(fake_billing.charges) == 1
  assert fake_billing.charges[0]["offer_id"] == "A"
  assert fake_billing.charges[0]["description"] == "Bulk edit (AI): Desk Lamp"
  assert fake_billing.bulk_edits == [("user-1", 1)]


@pytest.mark.anyio
@pytest.mark.parametrize("error", [MarketplaceError("HTTP 500 from marketplace", status_code=500), ValueError("Malformed offer payload")])
async def test_fetch_error_fails_only_that_offer_in_complex_chunk(fake_marketplace, fake_billing, error: Exception) -> None:
  fake_marketplace.offers.update({"A": Offer(id="A", name="Lamp"), "C": Offer(id="C", name="Vase")})
  fake_marketplace.offer_errors["B"] = error
  generator = FakeGenerator(BulkGenerationResult(descriptions={"A": "<p>Lamp</p>", "C": "<p>Vase</p>"}, provider="gemini"))
  registry = JobRegistry()
  request = _run_setup(registry, fake_marketplace, ["A", "B", "C"], {"aiTemplateId": "default"})

  await BatchProcessor(registry, fake_billing, generator=generator, settings=SETTINGS).run(request)

  job = registry.get(request.job_id, "user-1")
  assert job.status == "completed"
  assert (job.success, job.failed) == (2, 1)
  failed = next(detail for detail in job.details if detail.offer_id == "B")
  assert (failed.kind, failed.error) == ("marketplace", str(error))
  assert generator.calls[0]["offer_ids"] == ["A", "C"]
  assert sorted(offer_id for offer_id, _ in fake_marketplace.updates) == ["A", "C"]
  assert [charge["offer_id"] for charge in fake_billing.charges] == ["A", "C"]

@pytest.mark.anyio
async def test_generation_failure_with_other_changes_still_updates_unbilled(fake_marketplace, fake_billing) -> None:
  fake_marketplace.offers["A"] = Offer(id="A")
  generator = FakeGenerator(BulkGenerationResult(errors={"A": "Insufficient AI provider funds"}))
  registry = JobRegistry()
  request = _run_setup(registry, fake_marketplace, ["A"], {"aiTemplateId": "default", "stock": 4})

  await BatchProcessor(registry, fake_billing, generator=generator, settings=SETTINGS).run(request)

  detail = registry.get(request.job_id, "user-1").details[0]
  assert detail.success is True
  assert detail.note == "Description not updated: Insufficient AI provider funds"
  assert fake_marketplace.updates[0][1].stock == 4
  assert fake_billing.charges == []


@pytest.mark.anyio
async def test_image_job_uploads_processed_files_and_removes_them(fake_marketplace, fake_billing, tmp_path: Path) -> None:
  fake_marketplace.offers["A"] = Offer(id="A", name="Vase", images=("https://img/a1.jpg", "https://img/a2.jpg"))
  images = FakeImages(tmp_path)
  registry = JobRegistry()
  request = _run_setup(registry, fake_marketplace, ["A"], {"imageProcessing": {"enabled": True, "type": "remove_bg"}})

  await BatchProcessor(registry, fake_billing, image_processor=images, settings=SETTINGS).run(request)

  assert registry.get(request.job_id, "user-1").success == 1
  patch = fake_marketplace.updates[0][1]
  assert patch.images == ("https://images.example/1.png", "https://images.example/2.png")
  assert patch.description is None
  assert fake_marketplace.uploads == [str(path) for path in images.outputs]
  assert not any(path.exists() for path in images.outputs)
  assert fake_billing.charges[0]["description"] == "Bulk edit (images): Vase"


@pytest.mark.anyio
async def test_failed_charge_keeps_the_offer_successful(fake_marketplace, fake_billing) -> None:
  fake_marketplace.offers["A"] = Offer(id="A", name="Lamp")
  fake_billing.error = InsufficientFundsError(required=Decimal("1.09"), balance=Decimal("0.00"))
  generator = FakeGenerator(BulkGenerationResult(descriptions={"A": "<p>New</p>"}))
  registry = JobRegistry()
  request = _run_setup(registry, fake_marketplace, ["A"], {"aiTemplateId": "default"})

  await BatchProcessor(registry, fake_billing, generator=generator, settings=SETTINGS).run(request)

  detail = registry.get(request.job_id, "user-1").details[0]
  assert detail.success is True
  assert "charge failed" in detail.note


@pytest.mark.anyio
async def test_chunk_crash_fails_only_that_chunk(fake_marketplace, fake_billing) -> None:
  fake_marketplace.offers.update({offer_id: Offer(id=offer_id) for offer_id in "ABCD"})
  generator = FakeGenerator(error=RuntimeError("template store unavailable"))
  registry = JobRegistry()
  request = _run_setup(registry, fake_marketplace, list("ABCD"), {"aiTemplateId": "default"})

  await BatchProcessor(registry, fake_billing, generator=generator, settings=SETTINGS).run(request)

  job = registry.get(request.job_id, "user-1")
  assert job.status == "completed"
  assert (job.processed, job.failed) == (4, 4)
  assert len(generator.calls) == 2
  assert {detail.kind for detail in job.details} == {"critical_batch"}
  assert job.details[0].error == "Critical batch error: template store unavailable"


@pytest.mark.anyio
async def test_unexpected_failure_outside_chunks_fails_the_job(fake_marketplace, fake_billing) -> None:
  registry = JobRegistry()
  request = _run_setup(registry, fake_marketplace, ["A"], {"stock": 1})
  fake_marketplace.offers["A"] = Offer(id="A")
  processor = BatchProcessor(registry, fake_billing, settings=SETTINGS)

  def broken_record(job_id, outcomes):
    raise RuntimeError("registry unavailable")

  registry.record_batch_result = broken_record

  await processor.run(request)

  job = registry.get(request.job_id, "user-1")
  assert job.status == "failed"
  assert job.error == "registry unavailable"
