"""Lenient JSON object parsing for model outputs."""

from __future__ import annotations

import json
import re
from typing import Any

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\s*```$")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def strip_json_fences(raw: str) -> str:
  """Remove a surrounding markdown code fence."""
  return _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", raw.strip())).strip()


def _outer_object(raw: str) -> str | None:
  """Return the span from the first '{' to the last '}'."""
  start = raw.find("{")
  end = raw.rfind("}")
  if start == -1 or end <= start:
    return None
  return raw[start : end + 1]


def parse_json_object(raw: str) -> dict[str, Any]:
  """Parse a JSON object, tolerating fences, surrounding prose and trailing commas.

  Raises json.JSONDecodeError (a ValueError) when no object can be recovered.
  """
  cleaned = strip_json_fences(raw)
  candidate = _outer_object(cleaned)
  if candidate is None:
    raise json.JSONDecodeError("No JSON object in response", cleaned, 0)

  try:
    parsed = json.loads(candidate)
  except json.JSONDecodeError:
    # Trailing commas are the most common defect in model-written JSON.
    parsed = json.loads(_TRAILING_COMMA_RE.sub(r"\1", candidate))

  if not isinstance(parsed, dict):
    raise json.JSONDecodeError("Expected a JSON object", candidate, 0)
  return parsed
