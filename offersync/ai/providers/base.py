"""Provider-agnostic interfaces for text and image generation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ModelResponse:
  """Text returned by a model plus optional token usage."""

  content: str
  usage: dict[str, Any] | None = None


@dataclass(frozen=True)
class ImageInput:
  """Raw image bytes handed to an image model."""

  data: bytes
  mime_type: str = "image/png"


class TextModel(ABC):
  """Generates text for a single prompt."""

  name: str
  provider: str

  @abstractmethod
  async def generate(self, prompt: str) -> ModelResponse:
    """Return the model output for `prompt`; raise on empty output or transport failure."""


class ImageModel(ABC):
  """Generates one image from instructions and input images."""

  name: str

  @abstractmethod
  async def generate_image(self, instructions: str, images: list[ImageInput]) -> bytes:
    """Return the final image bytes."""
