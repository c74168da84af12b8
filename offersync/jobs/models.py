"""Domain models for bulk offer edit jobs and their per-offer outcomes."""

from __future__ import annotations

import datetime
import enum
from dataclasses import dataclass, field, replace
from typing import Literal

JobStatus = Literal["pending", "processing", "completed", "failed"]

LIVE_STATUSES: frozenset[str] = frozenset({"pending", "processing"})
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


class FailureKind(str, enum.Enum):
  """Why a single offer could not be edited."""

  NOT_FOUND = "not_found"
  GENERATION = "generation"
  MARKETPLACE = "marketplace"
  AUTH_EXPIRED = "auth_expired"
  CRITICAL_BATCH = "critical_batch"
  NO_CHANGES = "no_changes"


@dataclass(frozen=True)
class EditArtifact:
  """What an offer update actually changed."""

  has_description: bool = False
  has_images: bool = False
  product_name: str | None = None
  note: str | None = None

  @property
  def billable(self) -> bool:
    # Price, stock and status edits are free; generated content is not.
    return self.has_description or self.has_images


@dataclass(frozen=True)
class ItemSuccess:
  offer_id: str
  artifact: EditArtifact = field(default_factory=EditArtifact)


@dataclass(frozen=True)
class ItemFailure:
  offer_id: str
  kind: FailureKind
  message: str


ItemOutcome = ItemSuccess | ItemFailure


@dataclass(frozen=True)
class JobDetail:
  """Per-offer line in the job status report."""

  offer_id: str
  success: bool
  error: str | None = None
  kind: str | None = None
  note: str | None = None

  @classmethod
  def from_outcome(cls, outcome: ItemOutcome) -> JobDetail:
    match outcome:
      case ItemSuccess(offer_id=offer_id, artifact=artifact):
        return cls(offer_id=offer_id, success=True, note=artifact.note)
      case ItemFailure(offer_id=offer_id, kind=kind, message=message):
        return cls(offer_id=offer_id, success=False, error=message, kind=kind.value)
    raise TypeError(f"Unsupported outcome type: {type(outcome).__name__}")


@dataclass
class Job:
  """Represents one bulk edit request spanning a set of offers."""

  id: str
  user_id: str
  offer_ids: tuple[str, ...]
  status: JobStatus
  created_at: datetime.datetime
  updated_at: datetime.datetime
  total: int = 0
  processed: int = 0
  success: int = 0
  failed: int = 0
  details: list[JobDetail] = field(default_factory=list)
  completed_at: datetime.datetime | None = None
  error: str | None = None

  @property
  def is_live(self) -> bool:
    return self.status in LIVE_STATUSES

  def snapshot(self) -> Job:
    """Return a copy that callers can read without racing the processor."""
    return replace(self, details=list(self.details))
