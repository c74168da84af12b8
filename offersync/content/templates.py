"""Description templates: section model, built-in fallback, and resolution order."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Final, Literal, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from offersync.schema.content import AiTemplate, GenerationPreference

logger = logging.getLogger(__name__)

SectionType = Literal["text", "image"]

DEFAULT_SECTIONED_NAME: Final[str] = "Default sectioned"
DEFAULT_LEGACY_NAME: Final[str] = "Default"
LEGACY_PROMPT: Final[str] = "Write a marketplace product description in HTML. Split it into 5 sections separated by the [IMAGE] marker."


@dataclass(frozen=True)
class InputField:
  name: str
  label: str = ""


@dataclass(frozen=True)
class TemplateSection:
  type: SectionType
  name: str
  prompt: str = ""
  optional: bool = False
  input_fields: tuple[InputField, ...] = ()


FALLBACK_TEMPLATE: Final[tuple[TemplateSection, ...]] = (
  TemplateSection(type="text", name="Header and introduction", prompt="Write an <h1> heading with the product name: {productName}. Then write a marketing introduction paragraph describing the main use of the product and its benefits. Do not use bullet lists in this section."),
  TemplateSection(type="image", name="Product image 1"),
  TemplateSection(type="text", name="Key features", prompt='Write an <h2> heading "Key features". Then create a bullet list (<ul><li>) of the most important strengths or unique functions of the product. Use <b> for key phrases.'),
  TemplateSection(type="image", name="Product image 2"),
  TemplateSection(type="text", name="Specification and usage", prompt='Write an <h2> heading "Specification and usage". Describe how and where the product is used. Below, list technical data, composition or parameters (based on {parameters} and {eanCode}) in a readable form.'),
  TemplateSection(
    type="text",
    name="Dimensions and weight",
    prompt='Write an <h2> heading "Dimensions and weight". List the dimensions: {user_dimensions} and the weight: {user_weight} as a bullet list.',
    optional=True,
    input_fields=(InputField(name="user_dimensions", label="Dimensions (e.g. 10x20x5 cm)"), InputField(name="user_weight", label="Weight (e.g. 0.5 kg)")),
  ),
  TemplateSection(type="image", name="Product image 3"),
  TemplateSection(type="text", name="Summary", prompt='Write an <h2> heading "Why choose it?". A short summary encouraging purchase. Mention certificates or eco credentials only if the data contains them.'),
)


@dataclass(frozen=True)
class ResolvedTemplate:
  """Either a structured section list or a legacy prompt string."""

  sections: tuple[TemplateSection, ...] | None = None
  legacy_prompt: str | None = None

  @property
  def is_structured(self) -> bool:
    return self.sections is not None


@dataclass(frozen=True)
class GenerationPreferences:
  ai_provider: str | None = None
  description_style: str | None = None


def _parse_section(raw: dict[str, Any]) -> TemplateSection:
  section_type = raw.get("type")
  if section_type not in ("text", "image"):
    raise ValueError(f"Unknown template section type {section_type!r}")
  fields = tuple(InputField(name=str(field["name"]), label=str(field.get("label", ""))) for field in raw.get("input_fields") or raw.get("inputFields") or [] if isinstance(field, dict) and field.get("name"))
  return TemplateSection(type=section_type, name=str(raw.get("name") or ""), prompt=str(raw.get("content") or raw.get("prompt") or ""), optional=bool(raw.get("is_optional", raw.get("optional", False))), input_fields=fields)


def parse_template_content(raw: str | None) -> tuple[TemplateSection, ...] | None:
  """Return sections for a JSON array template, or None for a legacy string."""
  if not raw:
    return None
  try:
    parsed = json.loads(raw)
  except json.JSONDecodeError:
    return None
  if not isinstance(parsed, list) or not parsed:
    return None
  try:
    return tuple(_parse_section(item) for item in parsed if isinstance(item, dict))
  except ValueError as exc:
    logger.warning("Ignoring malformed structured template: %s", exc)
    return None


class TemplateStore(Protocol):
  async def get_template_content(self, user_id: str, template_id: str) -> str | None: ...

  async def find_global_template(self, name_fragment: str) -> str | None: ...

  async def get_preferences(self, user_id: str) -> GenerationPreferences: ...


class SqlTemplateStore:
  """Read-only template and preference lookups backed by PostgreSQL."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def get_template_content(self, user_id: str, template_id: str) -> str | None:
    try:
      template_uuid = uuid.UUID(str(template_id))
    except ValueError:
      logger.warning("Template id %r is not a UUID; ignoring", template_id)
      return None
    async with self._session_factory() as session:
      stmt = select(AiTemplate.content).where(AiTemplate.id == template_uuid, (AiTemplate.user_id == user_id) | AiTemplate.is_global.is_(True))
      return (await session.execute(stmt)).scalar_one_or_none()

  async def find_global_template(self, name_fragment: str) -> str | None:
    async with self._session_factory() as session:
      stmt = select(AiTemplate.content).where(AiTemplate.is_global.is_(True), AiTemplate.name.ilike(f"%{name_fragment}%")).order_by(AiTemplate.created_at).limit(1)
      return (await session.execute(stmt)).scalar_one_or_none()

  async def get_preferences(self, user_id: str) -> GenerationPreferences:
    async with self._session_factory() as session:
      row = await session.get(GenerationPreference, user_id)
    if row is None:
      return GenerationPreferences()
    return GenerationPreferences(ai_provider=row.ai_provider, description_style=row.description_style)


async def resolve_template(store: TemplateStore, user_id: str, template_id: str | None) -> ResolvedTemplate:
  """Explicit template first, then the global defaults, then the built-in sections."""
  raw: str | None = None
  if template_id:
    raw = await store.get_template_content(user_id, template_id)
    if raw is None:
      logger.warning("Template %s not visible to user %s; using defaults", template_id, user_id)
  if raw is None:
    raw = await store.find_global_template(DEFAULT_SECTIONED_NAME)
  if raw is None:
    raw = await store.find_global_template(DEFAULT_LEGACY_NAME)

  sections = parse_template_content(raw)
  if sections is not None:
    return ResolvedTemplate(sections=sections)
  # Structured output is forced unless the user picked a legacy template on purpose.
  if not template_id:
    logger.info("No structured template found; using built-in sections")
    return ResolvedTemplate(sections=FALLBACK_TEMPLATE)
  return ResolvedTemplate(legacy_prompt=raw or LEGACY_PROMPT)
