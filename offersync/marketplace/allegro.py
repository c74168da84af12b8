"""Allegro REST adapter over httpx."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Final

import httpx

from offersync.marketplace.base import AuthExpiredError, DescriptionSection, MarketplaceAdapter, MarketplaceCredentials, MarketplaceError, Offer, OfferParameter, OfferPatch, PriceCommandResult, PriceCommandStatus, SectionItem, UpdateResult, with_tokens
from offersync.utils.ids import generate_command_id

logger = logging.getLogger(__name__)

MEDIA_TYPE: Final[str] = "application/vnd.allegro.public.v1+json"
_OFFER_ID_PATTERN = re.compile(r"^[A-Za-z0-9-]{1,64}$")
_EAN_PARAMETER_ID: Final[str] = "225693"
_EAN_NAMES: Final[frozenset[str]] = frozenset({"ean", "ean (gtin)", "gtin", "kod producenta"})
_IMAGE_CONTENT_TYPES: Final[dict[str, str]] = {".png": "image/png", ".gif": "image/gif", ".webp": "image/webp"}


def _safe_offer_id(offer_id: str) -> str:
  trimmed = str(offer_id).strip()
  if not _OFFER_ID_PATTERN.match(trimmed):
    raise ValueError(f"Invalid offer ID format: {offer_id!r}")
  return trimmed


def _error_detail(response: httpx.Response) -> str:
  """Join Allegro error entries as 'message (path)'."""
  try:
    body = response.json()
  except ValueError:
    return response.text or f"HTTP {response.status_code}"
  if isinstance(body, dict):
    errors = body.get("errors")
    if isinstance(errors, list) and errors:
      return ", ".join(f"{error.get('message') or error.get('userMessage')} ({error.get('path')})" for error in errors if isinstance(error, dict))
    for key in ("message", "error_description", "error"):
      if body.get(key):
        return str(body[key])
  return f"HTTP {response.status_code}"


def _values(raw: dict[str, Any]) -> tuple[str, ...]:
  values = raw.get("valuesLabels") or raw.get("values") or raw.get("valuesIds") or []
  return tuple(str(value) for value in values)


def _parse_sections(description: Any) -> tuple[DescriptionSection, ...]:
  if not isinstance(description, dict):
    return ()
  sections: list[DescriptionSection] = []
  for section in description.get("sections") or []:
    items: list[SectionItem] = []
    for item in section.get("items") or []:
      if item.get("type") == "TEXT":
        items.append(SectionItem.text(item.get("content") or ""))
      elif item.get("type") == "IMAGE" and item.get("url"):
        items.append(SectionItem.image(item["url"]))
    if items:
      sections.append(DescriptionSection(items=tuple(items)))
  return tuple(sections)


def parse_offer(data: dict[str, Any]) -> Offer:
  """Map a product-offers payload onto an Offer."""
  images = tuple(image["url"] if isinstance(image, dict) else str(image) for image in data.get("images") or [] if image)

  parameters: list[OfferParameter] = []
  seen: set[str] = set()
  product_sets = data.get("productSet") or []
  product = (product_sets[0].get("product") or {}) if product_sets else {}
  for raw in [*(data.get("parameters") or []), *(product.get("parameters") or [])]:
    name = str(raw.get("name") or raw.get("id") or "")
    if not name or name in seen:
      continue
    seen.add(name)
    parameters.append(OfferParameter(name=name, values=_values(raw), id=str(raw["id"]) if raw.get("id") else None))

  ean = None
  for parameter in parameters:
    if parameter.id == _EAN_PARAMETER_ID or parameter.name.lower() in _EAN_NAMES:
      ean = parameter.values[0] if parameter.values else None
      if ean:
        break

  return Offer(id=str(data.get("id", "")), name=data.get("name") or "", images=images, description=_parse_sections(data.get("description")), parameters=tuple(parameters), ean=ean, raw=data)


def serialize_patch(patch: OfferPatch) -> dict[str, Any]:
  payload: dict[str, Any] = {}
  if patch.description is not None:
    payload["description"] = {"sections": [{"items": [{"type": "TEXT", "content": item.content} if item.type == "TEXT" else {"type": "IMAGE", "url": item.url} for item in section.items]} for section in patch.description]}
  if patch.images is not None:
    payload["images"] = [{"url": url} for url in patch.images]
  if patch.price is not None:
    payload["sellingMode"] = {"price": {"amount": str(patch.price.amount), "currency": patch.price.currency}}
  if patch.stock is not None:
    payload["stock"] = {"available": patch.stock, "unit": "UNIT"}
  if patch.status is not None:
    payload["publication"] = {"status": patch.status}
  return payload


class AllegroAdapter(MarketplaceAdapter):
  """Allegro public API client; one instance is shared by all jobs."""

  name = "allegro"

  def __init__(self, *, api_url: str = "https://api.allegro.pl", upload_url: str = "https://upload.allegro.pl", auth_url: str = "https://allegro.pl/auth/oauth/token", client_id: str | None = None, client_secret: str | None = None, upload_root: Path | str = ".", timeout_seconds: float = 30.0, client: httpx.AsyncClient | None = None) -> None:
    self._api_url = api_url.rstrip("/")
    self._upload_url = upload_url.rstrip("/")
    self._auth_url = auth_url
    self._client_id = client_id
    self._client_secret = client_secret
    self._uploads_dir = (Path(upload_root) / "uploads").resolve()
    self._client = client or httpx.AsyncClient(timeout=timeout_seconds, trust_env=False)

  async def aclose(self) -> None:
    await self._client.aclose()

  def _headers(self, credentials: MarketplaceCredentials, *, content_type: str | None = MEDIA_TYPE) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {credentials.access_token}", "Accept": MEDIA_TYPE}
    if content_type:
      headers["Content-Type"] = content_type
    return headers

  @staticmethod
  def _raise_for_auth(response: httpx.Response) -> None:
    if response.status_code == 401:
      raise AuthExpiredError("Allegro rejected the access token")

  async def get_offer(self, credentials: MarketplaceCredentials, offer_id: str) -> Offer | None:
    try:
      url = f"{self._api_url}/sale/product-offers/{_safe_offer_id(offer_id)}"
      response = await self._client.get(url, headers=self._headers(credentials, content_type=None))
    except (ValueError, httpx.RequestError) as exc:
      logger.warning("Allegro get_offer failed for %s: %s", offer_id, exc)
      return None

    self._raise_for_auth(response)
    if response.status_code != 200:
      logger.warning("Allegro get_offer returned %s for %s: %s", response.status_code, offer_id, _error_detail(response))
      return None
    return parse_offer(response.json())

  async def update_offer(self, credentials: MarketplaceCredentials, offer_id: str, patch: OfferPatch) -> UpdateResult:
    try:
      url = f"{self._api_url}/sale/product-offers/{_safe_offer_id(offer_id)}"
      response = await self._client.patch(url, json=serialize_patch(patch), headers=self._headers(credentials))
    except (ValueError, httpx.RequestError) as exc:
      return UpdateResult(success=False, message=str(exc))

    self._raise_for_auth(response)
    if response.is_success:
      return UpdateResult(success=True, data=response.json() if response.content else {})
    return UpdateResult(success=False, message=_error_detail(response))

  async def change_price(self, credentials: MarketplaceCredentials, offer_id: str, amount: Decimal, currency: str = "PLN") -> PriceCommandResult:
    command_id = generate_command_id()
    payload = {"modification": {"type": "FIXED_PRICE", "price": {"amount": str(amount), "currency": currency}}, "offerCriteria": [{"type": "CONTAINS_OFFERS", "offers": [{"id": offer_id}]}]}
    try:
      response = await self._client.put(f"{self._api_url}/sale/offer-price-change-commands/{command_id}", json=payload, headers=self._headers(credentials))
    except httpx.RequestError as exc:
      return PriceCommandResult(success=False, message=str(exc))

    self._raise_for_auth(response)
    if not response.is_success:
      detail = _error_detail(response)
      logger.warning("Allegro change_price rejected for %s: %s", offer_id, detail)
      return PriceCommandResult(success=False, message=detail)
    return PriceCommandResult(success=True, command_id=command_id)

  async def check_price_change_command(self, credentials: MarketplaceCredentials, command_id: str) -> PriceCommandStatus:
    try:
      response = await self._client.get(f"{self._api_url}/sale/offer-price-change-commands/{command_id}", headers=self._headers(credentials, content_type=None))
    except httpx.RequestError as exc:
      logger.warning("Allegro price command %s status check failed: %s", command_id, exc)
      return PriceCommandStatus(success=False)

    self._raise_for_auth(response)
    if not response.is_success:
      return PriceCommandStatus(success=False)
    counts = response.json().get("taskCount") or {}
    return PriceCommandStatus(success=True, total=int(counts.get("total", 0)), succeeded=int(counts.get("success", 0)), failed=int(counts.get("failed", 0)))

  def _local_image(self, source: str) -> Path | None:
    path = Path(source)
    if not path.is_absolute():
      path = self._uploads_dir.parent / source.lstrip("/")
    resolved = path.resolve()
    if not resolved.is_relative_to(self._uploads_dir):
      logger.warning("Refusing to upload file outside uploads directory: %s", source)
      return None
    if not resolved.is_file():
      logger.warning("Image to upload not found: %s", resolved)
      return None
    return resolved

  async def upload_image(self, credentials: MarketplaceCredentials, source: str) -> str | None:
    if not source:
      return None

    try:
      if source.startswith(("http://", "https://")):
        response = await self._client.post(f"{self._upload_url}/sale/images", json={"url": source}, headers=self._headers(credentials), timeout=60.0)
      else:
        path = self._local_image(source)
        if path is None:
          return None
        content_type = _IMAGE_CONTENT_TYPES.get(path.suffix.lower(), "image/jpeg")
        response = await self._client.post(f"{self._upload_url}/sale/images", content=path.read_bytes(), headers=self._headers(credentials, content_type=content_type), timeout=60.0)
    except (OSError, httpx.RequestError) as exc:
      logger.warning("Allegro image upload failed for %s: %s", source, exc)
      return None

    self._raise_for_auth(response)
    if not response.is_success:
      logger.warning("Allegro image upload returned %s: %s", response.status_code, _error_detail(response))
      return None
    location = response.json().get("location")
    if not location:
      logger.warning("Allegro image upload returned no location")
      return None
    return location

  async def refresh_credentials(self, credentials: MarketplaceCredentials) -> MarketplaceCredentials:
    if not self._client_id or not self._client_secret:
      raise MarketplaceError("Allegro client id and secret must be configured to refresh tokens")
    if not credentials.refresh_token:
      raise AuthExpiredError("No refresh token stored; reconnect the Allegro integration")

    data = {"grant_type": "refresh_token", "refresh_token": credentials.refresh_token}
    response = await self._client.post(self._auth_url, data=data, auth=(self._client_id, self._client_secret))
    if response.status_code in (400, 401):
      raise AuthExpiredError(f"Allegro token refresh rejected: {_error_detail(response)}")
    if not response.is_success:
      raise MarketplaceError(f"Allegro token refresh failed: {_error_detail(response)}", status_code=response.status_code)

    body = response.json()
    expires_in = body.get("expires_in")
    expires_at = datetime.now(UTC) + timedelta(seconds=int(expires_in)) if expires_in else None
    return with_tokens(credentials, access_token=body["access_token"], refresh_token=body.get("refresh_token"), expires_at=expires_at)

  async def test_connection(self, credentials: MarketplaceCredentials) -> bool:
    try:
      response = await self._client.get(f"{self._api_url}/me", headers=self._headers(credentials, content_type=None))
    except httpx.RequestError as exc:
      logger.warning("Allegro connection test failed: %s", exc)
      return False
    self._raise_for_auth(response)
    return response.is_success
