"""Identifier utilities."""

from __future__ import annotations

import uuid


def generate_job_id() -> str:
  """Return a new bulk edit job identifier."""
  return str(uuid.uuid4())


def generate_command_id() -> str:
  """Return a client-chosen id for a marketplace price change command."""
  return str(uuid.uuid4())


def generate_file_token() -> str:
  """Return a collision-free token for generated file names."""
  return uuid.uuid4().hex


def generate_preview_id() -> str:
  """Return an id that keys the ledger entry of a single-offer description preview."""
  return f"preview-{uuid.uuid4()}"
