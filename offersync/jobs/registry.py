"""In-process registry that owns bulk edit job state.

Jobs live in memory only: a restart loses in-flight status, and the registry
is not shared between worker processes. Deployments with more than one
process need a persisted job table with a claim constraint on
(user_id, offer_id) instead.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import threading
from collections.abc import Iterable, Sequence

from offersync.jobs.models import TERMINAL_STATUSES, ItemFailure, ItemOutcome, ItemSuccess, Job, JobDetail, JobStatus
from offersync.utils.ids import generate_job_id

logger = logging.getLogger(__name__)


class ConflictError(RuntimeError):
  """Raised when requested offers are already claimed by a live job of the same user."""

  def __init__(self, conflicting_ids: Sequence[str]) -> None:
    super().__init__(f"Offers already being processed: {', '.join(conflicting_ids)}")
    self.conflicting_ids = list(conflicting_ids)


class JobNotFoundError(LookupError):
  """Raised when a job id is unknown or has been swept."""


class JobAccessError(PermissionError):
  """Raised when a caller asks for a job owned by another user."""


def _utc_now() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def _dedupe(offer_ids: Iterable[str]) -> tuple[str, ...]:
  return tuple(dict.fromkeys(str(offer_id) for offer_id in offer_ids))


class JobRegistry:
  """Create, track and garbage-collect jobs; no method performs I/O."""

  def __init__(self, *, retention: datetime.timedelta = datetime.timedelta(hours=24)) -> None:
    self._jobs: dict[str, Job] = {}
    self._lock = threading.Lock()
    self._retention = retention

  def __len__(self) -> int:
    with self._lock:
      return len(self._jobs)

  def _conflicts_locked(self, user_id: str, offer_ids: Sequence[str]) -> list[str]:
    claimed: set[str] = set()
    for job in self._jobs.values():
      if job.user_id == user_id and job.is_live:
        claimed.update(job.offer_ids)
    return [offer_id for offer_id in offer_ids if offer_id in claimed]

  def find_conflicts(self, user_id: str, offer_ids: Iterable[str]) -> list[str]:
    """Return requested offer ids already claimed by the user's live jobs."""
    with self._lock:
      return self._conflicts_locked(user_id, _dedupe(offer_ids))

  def create(self, user_id: str, offer_ids: Iterable[str]) -> Job:
    """Register a pending job, rejecting offers another live job already claims."""
    requested = _dedupe(offer_ids)
    if not requested:
      raise ValueError("offer_ids must not be empty.")

    with self._lock:
      conflicts = self._conflicts_locked(user_id, requested)
      if conflicts:
        raise ConflictError(conflicts)
      now = _utc_now()
      job = Job(id=generate_job_id(), user_id=user_id, offer_ids=requested, status="pending", created_at=now, updated_at=now, total=len(requested))
      self._jobs[job.id] = job

    logger.info("Created job %s for user %s with %d offers", job.id, user_id, job.total)
    return job.snapshot()

  def get(self, job_id: str, user_id: str) -> Job:
    """Return a snapshot of the job after checking ownership."""
    with self._lock:
      job = self._jobs.get(job_id)
      if job is None:
        raise JobNotFoundError(job_id)
      if job.user_id != user_id:
        raise JobAccessError(job_id)
      return job.snapshot()

  def mark_processing(self, job_id: str) -> None:
    with self._lock:
      job = self._jobs.get(job_id)
      if job is None or job.status != "pending":
        logger.warning("Cannot start job %s from status %s", job_id, getattr(job, "status", None))
        return
      job.status = "processing"
      job.updated_at = _utc_now()

  def record_batch_result(self, job_id: str, outcomes: Sequence[ItemOutcome]) -> None:
    """Apply one chunk's outcomes to the counters and details atomically."""
    with self._lock:
      job = self._jobs.get(job_id)
      if job is None or job.status in TERMINAL_STATUSES:
        logger.warning("Ignoring batch result for job %s (missing or finished)", job_id)
        return

      remaining = job.total - job.processed
      if len(outcomes) > remaining:
        logger.warning("Job %s received %d outcomes with only %d offers left; truncating", job_id, len(outcomes), remaining)
        outcomes = outcomes[:remaining]

      success = sum(1 for outcome in outcomes if isinstance(outcome, ItemSuccess))
      failed = sum(1 for outcome in outcomes if isinstance(outcome, ItemFailure))
      job.success += success
      job.failed += failed
      job.processed = job.success + job.failed
      job.details.extend(JobDetail.from_outcome(outcome) for outcome in outcomes)
      job.updated_at = _utc_now()

  def finalize(self, job_id: str, status: JobStatus, *, error: str | None = None) -> None:
    """Move a job into a terminal state; later calls are ignored."""
    if status not in TERMINAL_STATUSES:
      raise ValueError(f"finalize requires a terminal status, got {status!r}")

    with self._lock:
      job = self._jobs.get(job_id)
      if job is None or job.status in TERMINAL_STATUSES:
        logger.warning("Ignoring finalize(%s) for job %s (missing or finished)", status, job_id)
        return
      now = _utc_now()
      job.status = status
      job.error = error
      job.completed_at = now
      job.updated_at = now

    logger.info("Job %s finalized as %s", job_id, status)

  def sweep(self, now: datetime.datetime | None = None) -> int:
    """Delete jobs created before the retention window, whatever their status."""
    cutoff = (now or _utc_now()) - self._retention
    with self._lock:
      expired = [job_id for job_id, job in self._jobs.items() if job.created_at < cutoff]
      for job_id in expired:
        del self._jobs[job_id]

    if expired:
      logger.info("Swept %d expired jobs", len(expired))
    return len(expired)


async def run_sweep_loop(registry: JobRegistry, interval_seconds: float) -> None:
  """Sweep the registry forever at a fixed interval; cancelled on shutdown."""
  while True:
    await asyncio.sleep(interval_seconds)
    try:
      registry.sweep()
    except Exception:  # noqa: BLE001
      logger.error("Job sweep failed", exc_info=True)
