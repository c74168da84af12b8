"""Shared error classification helpers for AI provider handling."""

from __future__ import annotations

from collections.abc import Iterable

_OVERLOADED_HINTS: tuple[str, ...] = (
  "503",
  "overloaded",
  "unavailable",
  "resource_exhausted",
  "resource exhausted",
)

_RATE_LIMIT_HINTS: tuple[str, ...] = (
  "429",
  "too many requests",
  "rate_limit_exceeded",
  "rate limit",
  "quota",
)

_QUOTA_HINTS: tuple[str, ...] = (
  "insufficient_quota",
  "quota",
  "billing",
)


class GenerationError(RuntimeError):
  """Raised when a description cannot be produced after retries and fallback."""

  def __init__(self, message: str, *, kind: str = "provider") -> None:
    super().__init__(message)
    # "funds" when every provider reported exhausted credits, otherwise "provider" or "output".
    self.kind = kind


class ImageProviderError(RuntimeError):
  """Raised by image models; callers degrade to a local re-encode."""


def _error_text(exc: BaseException) -> str:
  parts = [str(exc)]
  # SDK errors often carry the machine-readable code on attributes instead of the message.
  for attr in ("code", "status", "status_code", "type"):
    value = getattr(exc, attr, None)
    if value is not None:
      parts.append(str(value))
  body = getattr(exc, "body", None)
  if isinstance(body, dict):
    error = body.get("error", body)
    if isinstance(error, dict):
      parts.extend(str(error.get(key, "")) for key in ("code", "type", "status"))
  return " ".join(parts).lower()


def _match_hint(message: str, hints: Iterable[str]) -> bool:
  """Return True when any hint appears in the message."""
  return any(hint in message for hint in hints)


def is_overloaded(exc: BaseException) -> bool:
  """Return True for 503-class capacity errors."""
  return _match_hint(_error_text(exc), _OVERLOADED_HINTS)


def is_rate_limited(exc: BaseException) -> bool:
  """Return True for 429-class throttling errors."""
  return _match_hint(_error_text(exc), _RATE_LIMIT_HINTS)


def is_retryable(exc: BaseException) -> bool:
  return is_overloaded(exc) or is_rate_limited(exc)


def is_quota_error(exc: BaseException) -> bool:
  """Return True when the provider reports exhausted credits or billing trouble."""
  return _match_hint(_error_text(exc), _QUOTA_HINTS)
