"""Bounded in-process worker pool for bulk edit jobs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[None]]


class JobRunnerClosedError(RuntimeError):
  """Raised when work is submitted after shutdown started."""


class JobRunner:
  """Run submitted jobs as tracked tasks with a cap on concurrent execution.

  Jobs beyond `max_concurrent` wait on the semaphore and stay pending in the
  registry until a slot frees up.
  """

  def __init__(self, *, max_concurrent: int = 4) -> None:
    if max_concurrent <= 0:
      raise ValueError("max_concurrent must be positive.")
    self._semaphore = asyncio.Semaphore(max_concurrent)
    self._tasks: dict[str, asyncio.Task[None]] = {}
    self._closed = False

  @property
  def active_count(self) -> int:
    return sum(1 for task in self._tasks.values() if not task.done())

  def submit(self, job_id: str, factory: JobFactory) -> asyncio.Task[None]:
    """Schedule a job and return immediately."""
    if self._closed:
      raise JobRunnerClosedError("Job runner is shutting down.")
    if job_id in self._tasks and not self._tasks[job_id].done():
      raise ValueError(f"Job {job_id} is already running.")

    task = asyncio.create_task(self._run(job_id, factory), name=f"bulk-edit-{job_id}")
    self._tasks[job_id] = task
    task.add_done_callback(lambda _task, key=job_id: self._tasks.pop(key, None))
    return task

  async def _run(self, job_id: str, factory: JobFactory) -> None:
    async with self._semaphore:
      logger.info("Job %s started", job_id)
      try:
        await factory()
      except asyncio.CancelledError:
        logger.warning("Job %s cancelled during shutdown", job_id)
        raise
      except Exception:  # noqa: BLE001
        # The processor finalizes its own failures; anything reaching here is a bug.
        logger.error("Job %s crashed outside the processor", job_id, exc_info=True)
      else:
        logger.info("Job %s finished", job_id)

  async def wait(self, job_id: str) -> None:
    """Wait for a submitted job to finish; returns at once for unknown ids."""
    task = self._tasks.get(job_id)
    if task is None:
      return
    await asyncio.shield(task)

  async def shutdown(self, *, grace_seconds: float = 30.0) -> None:
    """Stop accepting work, give running jobs a grace period, then cancel the rest."""
    self._closed = True
    pending = [task for task in self._tasks.values() if not task.done()]
    if not pending:
      return

    logger.info("Waiting up to %.0fs for %d running jobs", grace_seconds, len(pending))
    _, still_running = await asyncio.wait(pending, timeout=grace_seconds)
    for task in still_running:
      task.cancel()
    if still_running:
      await asyncio.gather(*still_running, return_exceptions=True)
