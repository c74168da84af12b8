"""OpenAI-compatible chat provider using the openai SDK."""

from __future__ import annotations

import logging
from typing import Final

from openai import AsyncOpenAI

from offersync.ai.providers.base import ModelResponse, TextModel

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT: Final[str] = "You are an e-commerce copywriting expert. You write HTML offer descriptions for online marketplaces."


class OpenAIChatModel(TextModel):
  """Chat completions client; works against OpenAI or any compatible base URL."""

  def __init__(self, name: str, client: AsyncOpenAI, *, max_tokens: int = 4000, temperature: float = 0.7) -> None:
    self.name: str = name
    self.provider: str = "openai"
    self._client = client
    self._max_tokens = max_tokens
    self._temperature = temperature

  async def generate(self, prompt: str) -> ModelResponse:
    response = await self._client.chat.completions.create(model=self.name, messages=[{"role": "system", "content": _SYSTEM_PROMPT}, {"role": "user", "content": prompt}], max_tokens=self._max_tokens, temperature=self._temperature)

    content = (response.choices[0].message.content or "").strip() if response.choices else ""
    if not content:
      raise ValueError("OpenAI returned empty response")
    usage = None
    if response.usage:
      usage = {"prompt_tokens": response.usage.prompt_tokens, "completion_tokens": response.usage.completion_tokens, "total_tokens": response.usage.total_tokens}
    logger.debug("OpenAI response (%d chars)", len(content))
    return ModelResponse(content=content, usage=usage)


class OpenAIProvider:
  """OpenAI provider."""

  _DEFAULT_MODEL: Final[str] = "gpt-4o-mini"

  def __init__(self, api_key: str, base_url: str | None = None) -> None:
    if not api_key:
      raise ValueError("OPENAI_API_KEY is required for the OpenAI provider")
    self.name: str = "openai"
    self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)

  def get_text_model(self, model: str | None = None) -> TextModel:
    return OpenAIChatModel(model or self._DEFAULT_MODEL, self._client)
