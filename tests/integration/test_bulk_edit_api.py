from __future__ import annotations

from collections.abc import Iterator
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from offersync.ai.errors import GenerationError
from offersync.api.deps import get_bulk_edit_service, get_description_preview_service, get_job_registry
from offersync.billing.service import PreflightQuote
from offersync.content.generator import DescriptionResult
from offersync.content.preview import DescriptionPreviewService
from offersync.core.security import get_current_user_id
from offersync.jobs.registry import JobRegistry
from offersync.jobs.service import BulkEditService
from offersync.main import app
from offersync.marketplace.base import MarketplaceCredentials, Offer
from offersync.marketplace.integrations import IntegrationNotFoundError


@pytest.fixture
def anyio_backend():
  return "asyncio"


class InMemoryIntegrations:
  """Integration store stand-in that hands out static credentials."""

  def __init__(self) -> None:
    self.connected = True

  async def credentials(self, user_id: str, marketplace: str) -> MarketplaceCredentials:
    if not self.connected:
      raise IntegrationNotFoundError("Allegro integration not found. Connect your account first.")
    return MarketplaceCredentials(access_token="token", refresh_token="refresh")

  def refresher(self, adapter, *, user_id: str, marketplace: str):
    return AsyncMock(return_value=MarketplaceCredentials(access_token="fresh"))


def _lookup(name: str):
  if name != "allegro":
    raise ValueError(f"Unsupported marketplace '{name}'.")
  return MagicMock(name="allegro-adapter")


class Harness:
  def __init__(self) -> None:
    self.registry = JobRegistry()
    self.runner = MagicMock()
    self.preflight = MagicMock()
    self.preflight.quote = AsyncMock(return_value=PreflightQuote(ok=True, required=Decimal("1.09"), balance=Decimal("50.00")))
    self.integrations = InMemoryIntegrations()
    self.user_id = "user-1"
    self.service = BulkEditService(registry=self.registry, runner=self.runner, processor=MagicMock(), preflight=self.preflight, integrations=self.integrations, adapter_lookup=_lookup)


@pytest.fixture
def harness() -> Iterator[Harness]:
  harness = Harness()
  app.dependency_overrides[get_current_user_id] = lambda: harness.user_id
  app.dependency_overrides[get_job_registry] = lambda: harness.registry
  app.dependency_overrides[get_bulk_edit_service] = lambda: harness.service
  try:
    yield harness
  finally:
    app.dependency_overrides.clear()


def _client() -> AsyncClient:
  return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.anyio
async def test_create_job_returns_accepted_with_job_id(harness: Harness) -> None:
  async with _client() as client:
    response = await client.post("/v1/bulk-edit/jobs", json={"offerIds": ["101", "102"], "modifications": {"stock": 5, "status": "ACTIVE"}})

  assert response.status_code == 202
  job_id = response.json()["jobId"]
  harness.runner.submit.assert_called_once()
  assert harness.runner.submit.call_args.args[0] == job_id


@pytest.mark.anyio
@pytest.mark.parametrize(
  "body",
  [
    {"offerIds": [], "modifications": {"stock": 1}},
    {"offerIds": ["101"], "modifications": {}},
    {"offerIds": ["101"], "modifications": {"stock": 1}, "marketplace": "ebay"},
  ],
)
async def test_create_job_rejects_invalid_requests(harness: Harness, body: dict) -> None:
  async with _client() as client:
    response = await client.post("/v1/bulk-edit/jobs", json=body)

  assert response.status_code == 400
  assert "requestId" in response.json()
  assert len(harness.registry) == 0


@pytest.mark.anyio
async def test_create_job_rejects_unknown_fields(harness: Harness) -> None:
  async with _client() as client:
    response = await client.post("/v1/bulk-edit/jobs", json={"offerIds": ["101"], "modifications": {"stock": 1, "colour": "red"}})

  assert response.status_code == 422
  assert all("input" not in error for error in response.json()["detail"])


@pytest.mark.anyio
async def test_create_job_reports_conflicting_offers(harness: Harness) -> None:
  harness.registry.create(harness.user_id, ["101"])

  async with _client() as client:
    response = await client.post("/v1/bulk-edit/jobs", json={"offerIds": ["101", "102"], "modifications": {"stock": 1}})

  assert response.status_code == 409
  body = response.json()
  assert body["detail"] == "Some offers are already being edited by another job"
  assert body["conflictingIds"] == ["101"]


@pytest.mark.anyio
async def test_create_job_requires_marketplace_integration(harness: Harness) -> None:
  harness.integrations.connected = False

  async with _client() as client:
    response = await client.post("/v1/bulk-edit/jobs", json={"offerIds": ["101"], "modifications": {"stock": 1}})

  assert response.status_code == 404
  assert response.json()["detail"] == "Allegro integration not found. Connect your account first."


@pytest.mark.anyio
async def test_create_job_requires_wallet_balance_for_ai_edits(harness: Harness) -> None:
  harness.preflight.quote.return_value = PreflightQuote(ok=False, required=Decimal("2.18"), balance=Decimal("1.00"))

  async with _client() as client:
    response = await client.post("/v1/bulk-edit/jobs", json={"offerIds": ["101", "102"], "modifications": {"aiTemplateId": "default"}})

  assert response.status_code == 402
  body = response.json()
  assert body["balanceRequired"] == 2.18
  assert body["balance"] == 1
  assert len(harness.registry) == 0


@pytest.mark.anyio
async def test_get_job_returns_progress(harness: Harness) -> None:
  job = harness.registry.create(harness.user_id, ["101", "102"])

  async with _client() as client:
    response = await client.get(f"/v1/bulk-edit/jobs/{job.id}")

  assert response.status_code == 200
  body = response.json()
  assert body["id"] == job.id
  assert body["status"] == "pending"
  assert body["total"] == 2
  assert body["processed"] == 0
  assert body["details"] == []


@pytest.mark.anyio
async def test_get_job_hides_other_users_jobs(harness: Harness) -> None:
  job = harness.registry.create("someone-else", ["101"])

  async with _client() as client:
    response = await client.get(f"/v1/bulk-edit/jobs/{job.id}")

  assert response.status_code == 403


@pytest.mark.anyio
async def test_get_unknown_job_returns_not_found(harness: Harness) -> None:
  async with _client() as client:
    response = await client.get("/v1/bulk-edit/jobs/missing")

  assert response.status_code == 404
  assert response.json()["detail"] == "Job not found"


@pytest.mark.anyio
async def test_health_echoes_request_id() -> None:
  async with _client() as client:
    response = await client.get("/health", headers={"X-Request-ID": "trace-123"})

  assert response.status_code == 200
  assert response.json() == {"status": "ok"}
  assert response.headers["x-request-id"] == "trace-123"


def _serving(marketplace):
  def lookup(name: str):
    _lookup(name)
    return marketplace

  return lookup


class StaticDescriptionGenerator:
  def __init__(self) -> None:
    self.error: Exception | None = None

  async def generate_description(self, user_id, context, *, template_id=None, options=None):
    if self.error is not None:
      raise self.error
    return DescriptionResult(html=f"<h2>{context.product_name}</h2>", provider="gemini")


class PreviewHarness:
  def __init__(self, marketplace, billing) -> None:
    self.marketplace = marketplace
    self.billing = billing
    self.generator = StaticDescriptionGenerator()
    self.preflight = MagicMock()
    self.preflight.quote = AsyncMock(return_value=PreflightQuote(ok=True, required=Decimal("1.09"), balance=Decimal("5.00")))
    self.integrations = InMemoryIntegrations()
    self.service = DescriptionPreviewService(generator=self.generator, preflight=self.preflight, billing=billing, integrations=self.integrations, adapter_lookup=_serving(marketplace))


@pytest.fixture
def preview(fake_marketplace, fake_billing) -> Iterator[PreviewHarness]:
  harness = PreviewHarness(fake_marketplace, fake_billing)
  fake_marketplace.offers["555"] = Offer(id="555", name="Desk Lamp")
  app.dependency_overrides[get_current_user_id] = lambda: "user-1"
  app.dependency_overrides[get_description_preview_service] = lambda: harness.service
  try:
    yield harness
  finally:
    app.dependency_overrides.clear()


@pytest.mark.anyio
async def test_generate_description_returns_preview_and_charges(preview: PreviewHarness) -> None:
  async with _client() as client:
    response = await client.post("/v1/bulk-edit/offers/555/generate-description", json={"templateId": "default"})

  assert response.status_code == 200
  body = response.json()
  assert body["offerId"] == "555"
  assert body["description"] == "<h2>Desk Lamp</h2>"
  assert body["provider"] == "gemini"
  assert body["charged"] == 1.09
  assert body["parsedDescription"][0]["items"][0]["type"] == "TEXT"
  assert [charge["offer_id"] for charge in preview.billing.charges] == ["555"]
  assert preview.marketplace.updates == []


@pytest.mark.anyio
async def test_generate_description_accepts_empty_body(preview: PreviewHarness) -> None:
  async with _client() as client:
    response = await client.post("/v1/bulk-edit/offers/555/generate-description")

  assert response.status_code == 200


@pytest.mark.anyio
async def test_generate_description_requires_balance(preview: PreviewHarness) -> None:
  preview.preflight.quote.return_value = PreflightQuote(ok=False, required=Decimal("1.09"), balance=Decimal("0.50"))

  async with _client() as client:
    response = await client.post("/v1/bulk-edit/offers/555/generate-description", json={})

  assert response.status_code == 402
  body = response.json()
  assert (body["balanceRequired"], body["balance"]) == (1.09, 0.5)
  assert preview.billing.charges == []


@pytest.mark.anyio
async def test_generate_description_for_unknown_offer_returns_not_found(preview: PreviewHarness) -> None:
  async with _client() as client:
    response = await client.post("/v1/bulk-edit/offers/999/generate-description", json={})

  assert response.status_code == 404
  assert response.json()["detail"] == "Offer 999 not found"


@pytest.mark.anyio
async def test_generate_description_requires_integration(preview: PreviewHarness) -> None:
  preview.integrations.connected = False

  async with _client() as client:
    response = await client.post("/v1/bulk-edit/offers/555/generate-description", json={})

  assert response.status_code == 404


@pytest.mark.anyio
async def test_generate_description_reports_provider_funds(preview: PreviewHarness) -> None:
  preview.generator.error = GenerationError("Insufficient AI provider funds", kind="funds")

  async with _client() as client:
    response = await client.post("/v1/bulk-edit/offers/555/generate-description", json={})

  assert response.status_code == 422
  body = response.json()
  assert (body["detail"], body["reason"], body["kind"]) == ("Failed to generate description", "Insufficient AI provider funds", "funds")
  assert preview.billing.charges == []
