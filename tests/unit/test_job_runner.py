from __future__ import annotations

import asyncio

import pytest

from offersync.jobs.runner import JobRunner, JobRunnerClosedError


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.mark.anyio
async def test_submitted_job_runs_in_background() -> None:
  runner = JobRunner(max_concurrent=2)
  ran = asyncio.Event()

  async def job() -> None:
    ran.set()

  runner.submit("job-1", job)
  await runner.wait("job-1")

  assert ran.is_set()
  assert runner.active_count == 0


@pytest.mark.anyio
async def test_concurrency_cap_holds_extra_jobs_back() -> None:
  runner = JobRunner(max_concurrent=1)
  release = asyncio.Event()
  started: list[str] = []

  async def blocking() -> None:
    started.append("first")
    await release.wait()

  async def second() -> None:
    started.append("second")

  runner.submit("job-1", blocking)
  runner.submit("job-2", second)
  await asyncio.sleep(0.01)
  assert started == ["first"]

  release.set()
  await runner.wait("job-1")
  await runner.wait("job-2")
  assert started == ["first", "second"]


@pytest.mark.anyio
async def test_crashing_job_does_not_escape_the_runner() -> None:
  runner = JobRunner()

  async def crash() -> None:
    raise RuntimeError("boom")

  task = runner.submit("job-1", crash)
  await runner.wait("job-1")
  assert task.exception() is None


@pytest.mark.anyio
async def test_duplicate_running_job_id_is_rejected() -> None:
  runner = JobRunner()
  release = asyncio.Event()

  async def blocking() -> None:
    await release.wait()

  runner.submit("job-1", blocking)
  with pytest.raises(ValueError):
    runner.submit("job-1", blocking)
  release.set()
  await runner.wait("job-1")


@pytest.mark.anyio
async def test_shutdown_cancels_jobs_past_the_grace_period() -> None:
  runner = JobRunner()
  cancelled = asyncio.Event()

  async def forever() -> None:
    try:
      await asyncio.Event().wait()
    except asyncio.CancelledError:
      cancelled.set()
      raise

  runner.submit("job-1", forever)
  await asyncio.sleep(0.01)
  await runner.shutdown(grace_seconds=0.01)

  assert cancelled.is_set()
  with pytest.raises(JobRunnerClosedError):
    runner.submit("job-2", forever)


def test_max_concurrent_must_be_positive() -> None:
  with pytest.raises(ValueError):
    JobRunner(max_concurrent=0)
