"""Build policy-wrapped provider clients from settings."""

from __future__ import annotations

import logging

from offersync.ai.errors import GenerationError
from offersync.ai.policy import FallbackTextGenerator, PolicyTextModel, ProviderPolicy
from offersync.ai.providers.base import ImageModel
from offersync.ai.providers.gemini import GeminiProvider
from offersync.ai.providers.openai_chat import OpenAIProvider
from offersync.config import Settings

logger = logging.getLogger(__name__)


def build_policy(settings: Settings) -> ProviderPolicy:
  return ProviderPolicy(max_attempts=settings.provider_max_attempts, retry_delay_seconds=settings.provider_retry_delay_seconds, broad_fallback=settings.provider_broad_fallback)


class TextGeneratorFactory:
  """Pick primary and secondary text providers for a user's preference."""

  def __init__(self, models: dict[str, PolicyTextModel], *, default_provider: str = "gemini") -> None:
    self._models = dict(models)
    self._default_provider = default_provider

  @property
  def available(self) -> tuple[str, ...]:
    return tuple(self._models)

  def for_provider(self, preferred: str | None = None) -> FallbackTextGenerator:
    if not self._models:
      raise GenerationError("No AI text provider is configured")

    primary_name = preferred if preferred in self._models else self._default_provider
    if primary_name not in self._models:
      primary_name = next(iter(self._models))
    secondary_name = next((name for name in self._models if name != primary_name), None)
    secondary = self._models[secondary_name] if secondary_name else None
    return FallbackTextGenerator(self._models[primary_name], secondary)


def build_text_generator_factory(settings: Settings) -> TextGeneratorFactory:
  policy = build_policy(settings)
  models: dict[str, PolicyTextModel] = {}
  if settings.gemini_api_key:
    models["gemini"] = PolicyTextModel(GeminiProvider(settings.gemini_api_key).get_text_model(settings.text_model), policy)
  if settings.openai_api_key:
    models["openai"] = PolicyTextModel(OpenAIProvider(settings.openai_api_key, settings.openai_base_url).get_text_model(settings.fallback_text_model), policy)
  if not models:
    logger.warning("No AI text provider keys configured; AI description jobs will fail per item.")
  return TextGeneratorFactory(models, default_provider=settings.default_ai_provider)


def build_image_model(settings: Settings) -> ImageModel | None:
  """Return the image model, or None so the processor falls back to re-encoding."""
  if not settings.gemini_api_key:
    logger.warning("GEMINI_API_KEY not set; image edits will fall back to re-encoding.")
    return None
  return GeminiProvider(settings.gemini_api_key).get_image_model(settings.image_model)
