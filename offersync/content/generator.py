"""Product description generation from offer data and templates.

Structured templates are rendered with a single provider call that returns a
JSON object keyed by section index; image sections never reach the model and
are put back as `[IMAGE]` markers when the description is assembled. Legacy
templates send one free-form prompt and use the whole answer.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Final

from offersync.ai.errors import GenerationError
from offersync.ai.factory import TextGeneratorFactory
from offersync.ai.json_parser import parse_json_object
from offersync.content.formatting import IMAGE_MARKER
from offersync.content.templates import GenerationPreferences, ResolvedTemplate, TemplateSection, TemplateStore, resolve_template
from offersync.jobs.modifications import AiOptions
from offersync.marketplace.base import Offer, OfferParameter

logger = logging.getLogger(__name__)

CONTEXT_TEXT_LIMIT: Final[int] = 3000
DEFAULT_STYLE: Final[str] = "professional"

STYLE_INSTRUCTIONS: Final[dict[str, str]] = {
  "professional": "Professional, expert style that builds trust.",
  "casual": "Friendly, conversational style addressing the buyer directly.",
  "luxury": "Elegant, premium style emphasising quality and craftsmanship.",
  "technical": "Precise, technical style focused on specifications and facts.",
  "minimal": "Concise, minimal style with short sentences and no filler.",
}

_MANUFACTURER_NAMES: Final[frozenset[str]] = frozenset({"marka", "producent", "brand", "manufacturer"})
_DIMENSION_NAMES: Final[dict[str, tuple[str, ...]]] = {
  "width": ("szerokość", "width"),
  "height": ("wysokość", "height"),
  "depth": ("głębokość", "depth", "length", "długość"),
  "weight": ("waga", "weight"),
}
_TAG_RE = re.compile(r"<[^>]*>")


@dataclass(frozen=True)
class Dimensions:
  width: str | None = None
  height: str | None = None
  depth: str | None = None
  weight: str | None = None


@dataclass(frozen=True)
class ProductContext:
  """Everything the generator may say about one offer."""

  offer_id: str
  product_name: str
  manufacturer: str | None = None
  ean_code: str | None = None
  parameters: tuple[OfferParameter, ...] = ()
  catalog_description: str = ""
  current_description: str = ""
  images: tuple[str, ...] = ()
  dimensions: Dimensions | None = None


@dataclass(frozen=True)
class DescriptionResult:
  html: str
  provider: str
  fallback_used: bool = False


@dataclass
class BulkGenerationResult:
  descriptions: dict[str, str] = field(default_factory=dict)
  errors: dict[str, str] = field(default_factory=dict)
  provider: str | None = None


def _first_value(parameters: Sequence[OfferParameter], names: Sequence[str]) -> str | None:
  for parameter in parameters:
    lowered = parameter.name.lower()
    if any(lowered.startswith(name) for name in names) and parameter.values:
      return parameter.values[0]
  return None


def _catalog_text(offer: Offer) -> str:
  product_sets = offer.raw.get("productSet") or []
  product = (product_sets[0].get("product") or {}) if product_sets else {}
  description = product.get("description") or {}
  chunks = [_TAG_RE.sub(" ", item.get("content") or "") for section in description.get("sections") or [] for item in section.get("items") or [] if item.get("type") == "TEXT"]
  return " ".join(" ".join(chunks).split())


def build_product_context(offer: Offer) -> ProductContext:
  """Collect generator input from a fetched offer."""
  current = "\n".join(" ".join(item.content or "" for item in section.items if item.type == "TEXT") for section in offer.description).strip()
  manufacturer = next((parameter.values[0] for parameter in offer.parameters if parameter.name.lower() in _MANUFACTURER_NAMES and parameter.values), None)
  dims = Dimensions(**{key: _first_value(offer.parameters, names) for key, names in _DIMENSION_NAMES.items()})
  has_dims = any((dims.width, dims.height, dims.depth, dims.weight))
  return ProductContext(offer_id=offer.id, product_name=offer.name, manufacturer=manufacturer, ean_code=offer.ean, parameters=offer.parameters, catalog_description=_catalog_text(offer), current_description=current, images=offer.images, dimensions=dims if has_dims else None)


def format_parameters(context: ProductContext, options: AiOptions) -> str:
  parts = [f"{parameter.name}: {', '.join(parameter.values)}" for parameter in context.parameters]
  dims = context.dimensions
  if dims is not None:
    if options.include_dimensions:
      parts.extend(f"{label}: {value}" for label, value in (("Width", dims.width), ("Height", dims.height), ("Depth", dims.depth)) if value)
    if options.include_weight and dims.weight:
      parts.append(f"Weight: {dims.weight}")
  return ", ".join(parts)


def substitute_placeholders(template: str, context: ProductContext, options: AiOptions, parameters: str) -> str:
  """Fill product placeholders and any custom input keys."""
  rendered = template
  for key, value in options.custom_inputs.items():
    rendered = rendered.replace(f"{{{key}}}", value or "")
  values = {"productName": context.product_name, "manufacturer": context.manufacturer or "", "eanCode": context.ean_code or "", "parameters": parameters, "description": context.catalog_description}
  for key, value in values.items():
    rendered = rendered.replace(f"{{{key}}}", value)
  return rendered


def style_instruction(style: str | None) -> str:
  return STYLE_INSTRUCTIONS.get(style or DEFAULT_STYLE, STYLE_INSTRUCTIONS[DEFAULT_STYLE])


def build_context_block(context: ProductContext, options: AiOptions, parameters: str) -> str:
  lines = [
    "PRODUCT DATA (use ONLY this data):",
    f"Name: {context.product_name}",
    f"Manufacturer: {context.manufacturer or 'No data'}",
    f"EAN: {context.ean_code or 'None'}",
    f"Parameters: {parameters}",
  ]
  if options.custom_inputs:
    lines.append("ADDITIONAL DATA FROM THE SELLER:")
    lines.extend(f"{key}: {value}" for key, value in options.custom_inputs.items())
  if options.custom_instructions:
    lines.append("ADDITIONAL INSTRUCTIONS FROM THE SELLER:")
    lines.append(options.custom_instructions)
  lines.append(f"Catalog description: {context.catalog_description[:CONTEXT_TEXT_LIMIT]}")
  lines.append(f"Current offer description: {context.current_description[:CONTEXT_TEXT_LIMIT] or 'None'}")
  lines.append("")
  lines.append("RULES:")
  lines.append("1. Do not invent anything. Do not add features, parameters or accessories absent from the data above.")
  lines.append("2. If some information is missing, do not write about it.")
  lines.append("3. Rely exclusively on the data provided.")
  return "\n".join(lines)


def requested_text_sections(sections: Sequence[TemplateSection], options: AiOptions) -> list[int]:
  return [index for index, section in enumerate(sections) if section.type == "text" and not (section.optional and not options.section_enabled(index))]


def build_structured_prompt(sections: Sequence[TemplateSection], context: ProductContext, options: AiOptions, *, style: str, language: str) -> tuple[str, list[int]]:
  """Return the prompt and the section indexes it asks for."""
  parameters = format_parameters(context, options)
  indexes = requested_text_sections(sections, options)
  header = [
    "You are a professional copywriter. Write the content of each section of a marketplace product description.",
    "",
    build_context_block(context, options, parameters),
    "",
    f"STYLE: {style}",
    f"LANGUAGE: write the whole description in {language}.",
    "",
    "Return ONLY a valid JSON object without markdown fences, mapping section keys to HTML, for example:",
    '{"section_0": "<h1>...</h1><p>...</p>", "section_2": "..."}',
    "Allowed tags: h1, h2, p, ul, ol, li, b.",
    "",
    "SECTIONS TO WRITE:",
  ]
  body = [f"section_{index}: {substitute_placeholders(sections[index].prompt, context, options, parameters)}" for index in indexes]
  return "\n".join(header + body), indexes


def parse_structured_response(raw: str, indexes: Sequence[int]) -> dict[str, str]:
  """Parse the model's JSON; unparseable text becomes the first requested section."""
  try:
    parsed = parse_json_object(raw)
  except ValueError as exc:
    if not indexes:
      raise GenerationError("Failed to parse AI response and no text section can hold it", kind="output") from exc
    logger.warning("Structured response was not JSON (%s); using raw text for section %d", exc, indexes[0])
    return {f"section_{indexes[0]}": raw}
  return {str(key): value if isinstance(value, str) else json.dumps(value, ensure_ascii=False) for key, value in parsed.items()}


def assemble_sections(sections: Sequence[TemplateSection], generated: Mapping[str, str], options: AiOptions, *, label: str = "") -> str:
  parts: list[str] = []
  for index, section in enumerate(sections):
    if section.optional and not options.section_enabled(index):
      continue
    if section.type == "image":
      parts.append(IMAGE_MARKER)
      continue
    content = generated.get(f"section_{index}") or generated.get(str(index))
    if content and content.strip():
      parts.append(content.strip())
    else:
      logger.warning("Section %d empty or missing for %s", index, label or "product")

  html = "\n".join(parts)
  if not html.replace(IMAGE_MARKER, "").strip():
    raise GenerationError("Generated description is empty after assembling sections", kind="output")
  return html


class DescriptionGenerator:
  """Generates offer descriptions with the user's preferred provider."""

  def __init__(self, store: TemplateStore, text_generators: TextGeneratorFactory, *, language: str = "Polish") -> None:
    self._store = store
    self._text_generators = text_generators
    self._language = language

  async def _render(self, template: ResolvedTemplate, context: ProductContext, options: AiOptions, preferences: GenerationPreferences) -> DescriptionResult:
    generator = self._text_generators.for_provider(preferences.ai_provider)
    style = style_instruction(preferences.description_style)

    if template.sections is not None:
      prompt, indexes = build_structured_prompt(template.sections, context, options, style=style, language=self._language)
      result = await generator.generate(prompt)
      generated = parse_structured_response(result.content, indexes)
      html = assemble_sections(template.sections, generated, options, label=context.offer_id)
      return DescriptionResult(html=html, provider=result.provider, fallback_used=result.fallback_used)

    parameters = format_parameters(context, options)
    prompt = substitute_placeholders(template.legacy_prompt or "", context, options, parameters)
    prompt += f"\n\n{build_context_block(context, options, parameters)}\nStyle: {style}\nLanguage: {self._language}\n\nIMPORTANT: do not invent anything. Use ONLY the data provided."
    result = await generator.generate(prompt)
    if not result.content.strip():
      raise GenerationError("AI returned empty description", kind="output")
    return DescriptionResult(html=result.content, provider=result.provider, fallback_used=result.fallback_used)

  async def generate_description(self, user_id: str, context: ProductContext, *, template_id: str | None = None, options: AiOptions | None = None) -> DescriptionResult:
    preferences = await self._store.get_preferences(user_id)
    template = await resolve_template(self._store, user_id, template_id)
    return await self._render(template, context, options or AiOptions(), preferences)

  async def generate_bulk(self, user_id: str, contexts: Sequence[ProductContext], *, template_id: str | None = None, options: AiOptions | None = None) -> BulkGenerationResult:
    """Generate one description per offer concurrently; failures are reported per offer."""
    options = options or AiOptions()
    preferences = await self._store.get_preferences(user_id)
    template = await resolve_template(self._store, user_id, template_id)

    async def _one(context: ProductContext) -> DescriptionResult:
      return await self._render(template, context, options, preferences)

    results = await asyncio.gather(*(_one(context) for context in contexts), return_exceptions=True)

    bulk = BulkGenerationResult()
    for context, result in zip(contexts, results, strict=True):
      if isinstance(result, DescriptionResult):
        bulk.descriptions[context.offer_id] = result.html
        bulk.provider = bulk.provider or result.provider
      elif isinstance(result, GenerationError):
        logger.warning("Generation failed for offer %s: %s", context.offer_id, result)
        bulk.errors[context.offer_id] = str(result)
      elif isinstance(result, Exception):
        logger.error("Unexpected generation error for offer %s", context.offer_id, exc_info=result)
        bulk.errors[context.offer_id] = str(result) or type(result).__name__
      else:
        raise result
    return bulk
