"""Convert generated descriptions into marketplace description sections.

Generated text may mix light markdown with HTML and carries image markers
where the template placed image sections. Markers are replaced by the
offer's own images in order, and all HTML is reduced to the tag subset the
marketplace accepts.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Final

from offersync.marketplace.base import DescriptionSection, SectionItem

ALLOWED_TAGS: Final[frozenset[str]] = frozenset({"h1", "h2", "p", "ul", "ol", "li", "b"})
IMAGE_MARKER: Final[str] = "[IMAGE]"

_IMAGE_MARKER_SPLIT = re.compile(r"\[ZDJĘCIE(?::.*?)?\]|<zdjecie>|\[IMAGE\]", re.IGNORECASE)
_LEGACY_MARKER = re.compile(r"\[ZDJĘCIE\]", re.IGNORECASE)
_TAG_ATTRIBUTES = re.compile(r"<([a-z0-9]+)\s+[^>]*>", re.IGNORECASE)
_BR_TAG = re.compile(r"<br\s*/?>", re.IGNORECASE)
_ANY_TAG = re.compile(r"</?([a-z0-9]+)[^>]*>", re.IGNORECASE)
_HAS_TAG = re.compile(r"<[a-z][a-z0-9]*(?:\s[^>]*)?(?:\s*/)?>|</[a-z][a-z0-9]*>", re.IGNORECASE)
_BOLD = re.compile(r"\*\*(.*?)\*\*")
_HEADER_PREFIX = re.compile(r"^#+\s*")
_LIST_ITEM = re.compile(r"^[-*]\s")
_LIST_PREFIX = re.compile(r"^[-*]\s*")


def sanitize_description_html(html: str | None) -> str:
  """Strip attributes and drop every tag outside the allowed subset, keeping text."""
  if not html:
    return ""
  content = _LEGACY_MARKER.sub("", html)
  content = _TAG_ATTRIBUTES.sub(r"<\1>", content)
  # <br> is rejected by the marketplace; a space keeps words apart.
  content = _BR_TAG.sub(" ", content)
  return _ANY_TAG.sub(lambda match: match.group(0) if match.group(1).lower() in ALLOWED_TAGS else "", content)


def _bold(text: str) -> str:
  return _BOLD.sub(r"<b>\1</b>", text)


def _render_block(part: str) -> str:
  html = ""
  list_open = False
  for raw_line in part.split("\n"):
    line = sanitize_description_html(raw_line.strip())
    if not line.strip():
      continue

    if _HAS_TAG.search(line):
      if list_open:
        html += "</ul>"
        list_open = False
      html += line
    elif line.startswith("#"):
      if list_open:
        html += "</ul>"
        list_open = False
      level = "h2" if line.startswith("##") else "h1"
      html += f"<{level}>{_bold(_HEADER_PREFIX.sub('', line))}</{level}>"
    elif _LIST_ITEM.match(line):
      if not list_open:
        html += "<ul>"
        list_open = True
      html += f"<li>{_bold(_LIST_PREFIX.sub('', line))}</li>"
    else:
      if list_open:
        html += "</ul>"
        list_open = False
      html += f"<p>{_bold(line)}</p>"

  if list_open:
    html += "</ul>"
  return html


def parse_description_sections(text: str | None, images: Sequence[str] = ()) -> list[DescriptionSection]:
  """Split on image markers and interleave the offer images between text blocks."""
  if not text:
    return []

  normalized = text.replace("\r\n", "\n")
  parts = _IMAGE_MARKER_SPLIT.split(normalized)
  sections: list[DescriptionSection] = []
  image_index = 0

  for index, part in enumerate(parts):
    html = _render_block(part)
    if html:
      sections.append(DescriptionSection(items=(SectionItem.text(html),)))

    is_marker_gap = index < len(parts) - 1
    if is_marker_gap and image_index < len(images):
      image = SectionItem.image(images[image_index])
      image_index += 1
      last = sections[-1] if sections else None
      # A text section takes one image beside it; otherwise the image stands alone.
      if last is not None and len(last.items) == 1 and last.items[0].type == "TEXT":
        sections[-1] = DescriptionSection(items=(*last.items, image))
      else:
        sections.append(DescriptionSection(items=(image,)))

  if not sections and normalized.strip():
    return [DescriptionSection(items=(SectionItem.text(f"<p>{sanitize_description_html(normalized)}</p>"),))]
  return sections
