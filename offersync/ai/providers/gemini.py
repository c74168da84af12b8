"""Gemini provider implementation using the google-genai SDK."""

from __future__ import annotations

import logging
from typing import Any, Final

from google import genai
from google.genai import types

from offersync.ai.errors import ImageProviderError
from offersync.ai.providers.base import ImageInput, ImageModel, ModelResponse, TextModel

logger = logging.getLogger(__name__)


def _usage(response: Any) -> dict[str, Any] | None:
  metadata = getattr(response, "usage_metadata", None)
  if not metadata:
    return None
  return {"prompt_tokens": metadata.prompt_token_count, "completion_tokens": metadata.candidates_token_count, "total_tokens": metadata.total_token_count}


def extract_final_image(response: Any) -> bytes | None:
  """Return the last inline image that is not an interim thought artifact."""
  candidates = getattr(response, "candidates", None) or []
  if not candidates:
    return None
  content = getattr(candidates[0], "content", None)
  parts = getattr(content, "parts", None) or []
  # Thinking image models emit draft images flagged `thought`; only the final one counts.
  final_parts = [part for part in parts if getattr(part, "inline_data", None) is not None and getattr(part.inline_data, "data", None) and not getattr(part, "thought", False)]
  if not final_parts:
    return None
  return final_parts[-1].inline_data.data


class GeminiTextModel(TextModel):
  """Gemini text generation client."""

  def __init__(self, name: str, client: genai.Client) -> None:
    self.name: str = name
    self.provider: str = "gemini"
    self._client = client

  async def generate(self, prompt: str) -> ModelResponse:
    # Use the async client to avoid blocking the asyncio event loop.
    response = await self._client.aio.models.generate_content(model=self.name, contents=prompt)
    text = (response.text or "").strip()
    if not text:
      raise ValueError("Gemini returned empty response")
    logger.debug("Gemini response (%d chars)", len(text))
    return ModelResponse(content=text, usage=_usage(response))


class GeminiImageModel(ImageModel):
  """Gemini image editing client returning the final generated image."""

  def __init__(self, name: str, client: genai.Client, *, image_size: str = "1K") -> None:
    self.name: str = name
    self._client = client
    self._image_size = image_size

  async def generate_image(self, instructions: str, images: list[ImageInput]) -> bytes:
    contents: list[Any] = [types.Part.from_text(text=instructions)]
    contents.extend(types.Part.from_bytes(data=image.data, mime_type=image.mime_type) for image in images)
    config = types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"], image_config=types.ImageConfig(image_size=self._image_size))
    try:
      response = await self._client.aio.models.generate_content(model=self.name, contents=contents, config=config)
    except Exception as exc:
      raise ImageProviderError(f"Gemini image request failed: {exc}") from exc

    data = extract_final_image(response)
    if data is None:
      raise ImageProviderError("Gemini did not return a final image part")
    return data


class GeminiProvider:
  """Gemini provider."""

  _DEFAULT_TEXT_MODEL: Final[str] = "gemini-2.5-flash"
  _DEFAULT_IMAGE_MODEL: Final[str] = "gemini-3-pro-image-preview"
  _TEXT_MODELS: Final[set[str]] = {"gemini-2.5-pro", "gemini-2.5-flash", "gemini-2.0-flash", "gemini-3-flash-preview", "gemini-3-pro-preview"}
  _IMAGE_MODELS: Final[set[str]] = {"gemini-3-pro-image-preview", "gemini-2.5-flash-image"}

  def __init__(self, api_key: str) -> None:
    if not api_key:
      raise ValueError("GEMINI_API_KEY is required for the Gemini provider")
    self.name: str = "gemini"
    self._client = genai.Client(api_key=api_key)

  def get_text_model(self, model: str | None = None) -> TextModel:
    model_name = model or self._DEFAULT_TEXT_MODEL
    if model_name not in self._TEXT_MODELS:
      raise ValueError(f"Unsupported Gemini text model '{model_name}'.")
    return GeminiTextModel(model_name, self._client)

  def get_image_model(self, model: str | None = None) -> ImageModel:
    model_name = model or self._DEFAULT_IMAGE_MODEL
    if model_name not in self._IMAGE_MODELS:
      raise ValueError(f"Unsupported Gemini image model '{model_name}'.")
    return GeminiImageModel(model_name, self._client)
