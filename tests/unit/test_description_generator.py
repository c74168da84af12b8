"""Prompt building, structured response handling and bulk generation."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from offersync.ai.errors import GenerationError
from offersync.ai.factory import TextGeneratorFactory
from offersync.ai.policy import PROVIDER_ERROR_MESSAGE, PolicyTextModel, ProviderPolicy
from offersync.ai.providers.base import ModelResponse, TextModel
from offersync.content.formatting import IMAGE_MARKER
from offersync.content.generator import DescriptionGenerator, ProductContext, assemble_sections, build_product_context, build_structured_prompt, parse_structured_response
from offersync.content.templates import GenerationPreferences, TemplateSection
from offersync.jobs.modifications import AiOptions
from offersync.marketplace.base import DescriptionSection, Offer, OfferParameter, SectionItem


@pytest.fixture
def anyio_backend():
  return "asyncio"


SECTIONS = (
  TemplateSection(type="text", name="Intro", prompt="Heading with {productName} by {manufacturer}"),
  TemplateSection(type="image", name="Photo"),
  TemplateSection(type="text", name="Size", prompt="Dimensions {user_dimensions}", optional=True),
  TemplateSection(type="text", name="Summary", prompt="Why buy it"),
)


def _context(**overrides) -> ProductContext:
  values = {"offer_id": "A", "product_name": "Desk Lamp", "manufacturer": "Acme", "ean_code": "5901234123457"}
  values.update(overrides)
  return ProductContext(**values)


def test_build_product_context_reads_parameters() -> None:
  offer = Offer(
    id="A",
    name="Desk Lamp",
    images=("https://img/1.jpg",),
    description=(DescriptionSection(items=(SectionItem.text("<p>Old copy</p>"), SectionItem.image("https://img/1.jpg"))),),
    parameters=(OfferParameter(name="Marka", values=("Acme",)), OfferParameter(name="Szerokość produktu", values=("20 cm",)), OfferParameter(name="Waga produktu z opakowaniem", values=("1.2 kg",))),
    ean="5901234123457",
    raw={"productSet": [{"product": {"description": {"sections": [{"items": [{"type": "TEXT", "content": "<p>Catalog <b>text</b></p>"}]}]}}}]},
  )

  context = build_product_context(offer)

  assert context.manufacturer == "Acme"
  assert context.ean_code == "5901234123457"
  assert context.dimensions.width == "20 cm"
  assert context.dimensions.weight == "1.2 kg"
  assert context.current_description == "<p>Old copy</p>"
  assert context.catalog_description == "Catalog text"


def test_structured_prompt_skips_images_and_disabled_optional_sections() -> None:
  options = AiOptions(included_sections={2: False}, custom_instructions="Mention the warranty")
  prompt, indexes = build_structured_prompt(SECTIONS, _context(), options, style="Friendly", language="Polish")

  assert indexes == [0, 3]
  assert "section_0: Heading with Desk Lamp by Acme" in prompt
  assert "section_2: Dimensions" not in prompt
  assert "Mention the warranty" in prompt
  assert "write the whole description in Polish" in prompt


def test_custom_inputs_fill_placeholders() -> None:
  options = AiOptions(custom_inputs={"user_dimensions": "10x20x5 cm"})
  prompt, indexes = build_structured_prompt(SECTIONS, _context(), options, style="s", language="English")

  assert indexes == [0, 2, 3]
  assert "section_2: Dimensions 10x20x5 cm" in prompt


def test_parse_structured_response_handles_fences_and_non_strings() -> None:
  raw = '```json\n{"section_0": "<h1>Lamp</h1>", "section_3": ["a", "b"]}\n```'
  assert parse_structured_response(raw, [0, 3]) == {"section_0": "<h1>Lamp</h1>", "section_3": '["a", "b"]'}


def test_unparseable_response_lands_in_first_requested_section() -> None:
  assert parse_structured_response("<p>Just HTML</p>", [2, 3]) == {"section_2": "<p>Just HTML</p>"}


def test_unparseable_response_without_sections_is_an_output_error() -> None:
  with pytest.raises(GenerationError) as exc_info:
    parse_structured_response("garbage", [])
  assert exc_info.value.kind == "output"


def test_assemble_sections_puts_back_image_markers() -> None:
  html = assemble_sections(SECTIONS, {"section_0": "<h1>Lamp</h1>", "section_3": "<p>Buy</p>"}, AiOptions(included_sections={2: False}))
  assert html == f"<h1>Lamp</h1>\n{IMAGE_MARKER}\n<p>Buy</p>"


def test_assemble_sections_rejects_text_free_output() -> None:
  with pytest.raises(GenerationError):
    assemble_sections(SECTIONS, {"section_0": "  "}, AiOptions(included_sections={2: False}))


class PromptModel(TextModel):
  """Answers with a JSON object unless the prompt names a broken product."""

  name = "fake-model"
  provider = "gemini"

  def __init__(self) -> None:
    self.prompts: list[str] = []

  async def generate(self, prompt: str) -> ModelResponse:
    self.prompts.append(prompt)
    if "Broken" in prompt:
      raise RuntimeError("internal error")
    return ModelResponse(content=json.dumps({"section_0": "<h1>Intro</h1>", "section_3": "<p>Summary</p>"}))


class FakeStore:
  def __init__(self, preferences: GenerationPreferences) -> None:
    self.preferences = preferences
    self.get_preferences_calls = 0

  async def get_template_content(self, user_id: str, template_id: str) -> str | None:
    return json.dumps([{"type": section.type, "name": section.name, "content": section.prompt, "is_optional": section.optional} for section in SECTIONS])

  async def find_global_template(self, name_fragment: str) -> str | None:
    return None

  async def get_preferences(self, user_id: str) -> GenerationPreferences:
    self.get_preferences_calls += 1
    return self.preferences


@pytest.mark.anyio
async def test_generate_bulk_reports_failures_per_offer() -> None:
  model = PromptModel()
  factory = TextGeneratorFactory({"gemini": PolicyTextModel(model, ProviderPolicy(max_attempts=1, timeout_seconds=None), sleep=AsyncMock())})
  store = FakeStore(GenerationPreferences(ai_provider="gemini", description_style="casual"))
  generator = DescriptionGenerator(store, factory, language="Polish")

  result = await generator.generate_bulk("user-1", [_context(offer_id="A"), _context(offer_id="B", product_name="Broken Lamp")], template_id="t1", options=AiOptions(included_sections={2: False}))

  assert result.descriptions == {"A": f"<h1>Intro</h1>\n{IMAGE_MARKER}\n<p>Summary</p>"}
  assert result.errors == {"B": PROVIDER_ERROR_MESSAGE}
  assert result.provider == "gemini"
  assert store.get_preferences_calls == 1
  assert "Friendly, conversational style" in model.prompts[0]


@pytest.mark.anyio
async def test_generate_description_uses_legacy_prompt() -> None:
  class LegacyStore(FakeStore):
    async def get_template_content(self, user_id: str, template_id: str) -> str | None:
      return "Write about {productName}"

  class EchoModel(TextModel):
    name = "echo"
    provider = "openai"

    async def generate(self, prompt: str) -> ModelResponse:
      return ModelResponse(content=f"<p>{prompt.splitlines()[0]}</p>")

  factory = TextGeneratorFactory({"openai": PolicyTextModel(EchoModel(), ProviderPolicy(max_attempts=1, timeout_seconds=None))}, default_provider="openai")
  generator = DescriptionGenerator(LegacyStore(GenerationPreferences()), factory)

  result = await generator.generate_description("user-1", _context(), template_id="legacy")

  assert result.html == "<p>Write about Desk Lamp</p>"
  assert result.provider == "openai"
  assert result.fallback_used is False
