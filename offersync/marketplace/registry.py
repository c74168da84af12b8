"""Marketplace name to adapter lookup."""

from __future__ import annotations

import logging
from collections.abc import Callable

from offersync.config import Settings, get_settings
from offersync.marketplace.allegro import AllegroAdapter
from offersync.marketplace.base import MarketplaceAdapter

logger = logging.getLogger(__name__)


def _build_allegro(settings: Settings) -> MarketplaceAdapter:
  return AllegroAdapter(api_url=settings.allegro_api_url, upload_url=settings.allegro_upload_url, auth_url=settings.allegro_auth_url, client_id=settings.allegro_client_id, client_secret=settings.allegro_client_secret, upload_root=settings.upload_root, timeout_seconds=settings.marketplace_http_timeout_seconds)


_ADAPTER_FACTORIES: dict[str, Callable[[Settings], MarketplaceAdapter]] = {"allegro": _build_allegro}
_adapters: dict[str, MarketplaceAdapter] = {}


def supported_marketplaces() -> tuple[str, ...]:
  return tuple(_ADAPTER_FACTORIES)


def get_adapter(name: str) -> MarketplaceAdapter:
  """Return the shared adapter for a marketplace name."""
  key = name.lower()
  adapter = _adapters.get(key)
  if adapter is not None:
    return adapter
  factory = _ADAPTER_FACTORIES.get(key)
  if factory is None:
    raise ValueError(f"Unsupported marketplace '{name}'.")
  adapter = _adapters[key] = factory(get_settings())
  return adapter


async def close_adapters() -> None:
  """Release HTTP clients held by adapters created so far."""
  while _adapters:
    name, adapter = _adapters.popitem()
    await adapter.aclose()
    logger.debug("Closed %s adapter", name)
