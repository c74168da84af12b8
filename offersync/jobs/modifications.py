"""Immutable description of what a bulk edit changes on each offer."""

from __future__ import annotations

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator
from pydantic.alias_generators import to_camel

OfferStatus = Literal["ACTIVE", "INACTIVE", "ENDED"]

IMAGE_EDIT_TYPES: frozenset[str] = frozenset({"remove_bg", "replace_bg", "enhance", "blur_background", "ai_square", "crop_center", "resize_square", "adjust_brightness", "adjust_contrast", "sharpen", "saturate", "grayscale", "vintage"})
DEFAULT_TEMPLATE_ALIASES: frozenset[str] = frozenset({"default", "auto"})


def normalize_template_id(template_id: str | None) -> str | None:
  if not template_id or template_id.strip().lower() in DEFAULT_TEMPLATE_ALIASES:
    return None
  return template_id


class _FrozenModel(BaseModel):
  model_config = ConfigDict(frozen=True, extra="forbid", alias_generator=to_camel, populate_by_name=True)


class PriceChange(_FrozenModel):
  amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
  currency: str = Field(default="PLN", min_length=3, max_length=3)

  @field_validator("currency")
  @classmethod
  def _upper_currency(cls, value: str) -> str:
    return value.upper()


class AiOptions(_FrozenModel):
  include_dimensions: StrictBool = False
  include_weight: StrictBool = False
  custom_instructions: str | None = Field(default=None, max_length=2000)
  custom_inputs: dict[str, str] = Field(default_factory=dict)
  # Keys are section indexes; False switches an optional section off.
  included_sections: dict[int, bool] = Field(default_factory=dict)

  def section_enabled(self, index: int) -> bool:
    return self.included_sections.get(index, True) is not False


class ImageProcessing(_FrozenModel):
  enabled: StrictBool = False
  type: str = "enhance"
  background_image_url: str | None = None

  @field_validator("type")
  @classmethod
  def _known_edit_type(cls, value: str) -> str:
    if value not in IMAGE_EDIT_TYPES:
      raise ValueError(f"Unsupported image edit type '{value}'.")
    return value


class ModificationRequest(_FrozenModel):
  """Validated once at job creation and never mutated afterwards."""

  price: PriceChange | None = None
  stock: int | None = Field(default=None, ge=0)
  status: OfferStatus | None = None
  ai_template_id: str | None = None
  ai_options: AiOptions | None = None
  image_processing: ImageProcessing | None = None

  @property
  def ai_mode(self) -> bool:
    return bool(self.ai_template_id)

  @property
  def image_mode(self) -> bool:
    return self.image_processing is not None and self.image_processing.enabled

  @property
  def complex(self) -> bool:
    return self.ai_mode or self.image_mode

  @property
  def price_only(self) -> bool:
    return self.price is not None and self.stock is None and self.status is None and not self.complex

  @property
  def has_changes(self) -> bool:
    return self.price is not None or self.stock is not None or self.status is not None or self.complex

  @property
  def explicit_template_id(self) -> str | None:
    """Template id to look up, or None when the caller asked for the default template."""
    return normalize_template_id(self.ai_template_id)

  @property
  def options(self) -> AiOptions:
    return self.ai_options or AiOptions()
