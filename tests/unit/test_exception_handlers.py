"""Unit tests for API exception sanitization behavior."""

from __future__ import annotations

from decimal import Decimal

from offersync.core.exceptions import _error_payload, _sanitize_validation_errors


def test_sanitize_validation_errors_removes_input_and_serializes_exception_ctx() -> None:
  """Ensure validation errors stay JSON-serializable and redact raw request payloads."""
  errors = [{"type": "value_error", "loc": ("body", "modifications", "imageProcessing", "type"), "msg": "Value error, Unsupported image edit type 'cartoonify'.", "input": "cartoonify", "ctx": {"error": ValueError("Unsupported image edit type 'cartoonify'."), "input": "cartoonify"}}]
  sanitized = _sanitize_validation_errors(errors)
  assert "input" not in sanitized[0]
  assert sanitized[0]["ctx"]["error"] == "ValueError: Unsupported image edit type 'cartoonify'."
  assert "input" not in sanitized[0]["ctx"]
  assert sanitized[0]["loc"] == ["body", "modifications", "imageProcessing", "type"]


def test_error_payload_flattens_structured_details() -> None:
  payload = _error_payload({"detail": "Insufficient wallet balance for this bulk edit", "balanceRequired": Decimal("2.18")}, request_id="req-1")
  assert payload == {"detail": "Insufficient wallet balance for this bulk edit", "balanceRequired": Decimal("2.18"), "requestId": "req-1"}


def test_error_payload_wraps_plain_details() -> None:
  assert _error_payload("Job not found") == {"detail": "Job not found"}
