"""Retry and fallback policy for AI provider calls.

One `ProviderPolicy` decides, per provider, how many attempts a call gets,
how long to wait between them, which errors are worth retrying, and which
errors hand the work to the secondary provider.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from offersync.ai.errors import GenerationError, is_quota_error, is_retryable
from offersync.ai.providers.base import ModelResponse, TextModel

T = TypeVar("T")
logger = logging.getLogger(__name__)

INSUFFICIENT_FUNDS_MESSAGE = "Insufficient AI provider funds"
PROVIDER_ERROR_MESSAGE = "Could not generate description (provider error)"


@dataclass(frozen=True)
class ProviderPolicy:
  """Retry/timeout/fallback configuration for one provider."""

  max_attempts: int = 3
  retry_delay_seconds: float = 5.0
  timeout_seconds: float | None = 120.0
  # Fall back on any primary failure, not only on quota errors.
  broad_fallback: bool = True

  def should_retry(self, exc: BaseException) -> bool:
    return is_retryable(exc)

  def should_fall_back(self, exc: BaseException) -> bool:
    return self.broad_fallback or is_quota_error(exc)


async def call_with_retry(func: Callable[[], Awaitable[T]], policy: ProviderPolicy, *, label: str, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> T:
  """Run `func`, retrying overloaded or rate-limited failures with a fixed delay."""
  for attempt in range(1, policy.max_attempts + 1):
    try:
      if policy.timeout_seconds is None:
        return await func()
      return await asyncio.wait_for(func(), timeout=policy.timeout_seconds)
    except Exception as exc:
      if attempt >= policy.max_attempts or not policy.should_retry(exc):
        raise
      logger.warning("%s attempt %d/%d failed (%s); retrying in %.1fs", label, attempt, policy.max_attempts, exc, policy.retry_delay_seconds)
      await sleep(policy.retry_delay_seconds)

  raise AssertionError("max_attempts must be positive")


class PolicyTextModel(TextModel):
  """Wraps a TextModel so every call goes through the provider's retry policy."""

  def __init__(self, model: TextModel, policy: ProviderPolicy, *, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
    self._model = model
    self._policy = policy
    self._sleep = sleep
    self.name = getattr(model, "name", "unknown")
    self.provider = getattr(model, "provider", "unknown")

  @property
  def policy(self) -> ProviderPolicy:
    return self._policy

  async def generate(self, prompt: str) -> ModelResponse:
    response = await call_with_retry(lambda: self._model.generate(prompt), self._policy, label=f"{self.provider}:{self.name}", sleep=self._sleep)
    if not response.content or not response.content.strip():
      raise ValueError(f"{self.provider} returned empty response")
    return response


@dataclass(frozen=True)
class GenerationResult:
  content: str
  provider: str
  fallback_used: bool = False


class FallbackTextGenerator:
  """Primary provider with retries, then the secondary provider when the primary gives up."""

  def __init__(self, primary: PolicyTextModel, secondary: PolicyTextModel | None = None) -> None:
    self._primary = primary
    self._secondary = secondary

  @property
  def primary_provider(self) -> str:
    return self._primary.provider

  async def generate(self, prompt: str) -> GenerationResult:
    try:
      response = await self._primary.generate(prompt)
      return GenerationResult(content=response.content.strip(), provider=self._primary.provider)
    except Exception as primary_error:
      if not self._primary.policy.should_fall_back(primary_error):
        logger.error("%s failed without fallback: %s", self._primary.provider, primary_error)
        raise GenerationError(PROVIDER_ERROR_MESSAGE) from primary_error
      return await self._fall_back(prompt, primary_error)

  async def _fall_back(self, prompt: str, primary_error: Exception) -> GenerationResult:
    primary_quota = is_quota_error(primary_error)
    if self._secondary is None:
      logger.error("%s failed and no fallback provider is configured: %s", self._primary.provider, primary_error)
      if primary_quota:
        raise GenerationError(INSUFFICIENT_FUNDS_MESSAGE, kind="funds") from primary_error
      raise GenerationError(PROVIDER_ERROR_MESSAGE) from primary_error

    logger.warning("%s failed (%s); trying fallback provider %s", self._primary.provider, primary_error, self._secondary.provider)
    try:
      response = await self._secondary.generate(prompt)
    except Exception as fallback_error:
      logger.error("Fallback provider %s failed: %s", self._secondary.provider, fallback_error)
      if primary_quota and is_quota_error(fallback_error):
        raise GenerationError(INSUFFICIENT_FUNDS_MESSAGE, kind="funds") from fallback_error
      raise GenerationError(PROVIDER_ERROR_MESSAGE) from fallback_error
    return GenerationResult(content=response.content.strip(), provider=self._secondary.provider, fallback_used=True)
