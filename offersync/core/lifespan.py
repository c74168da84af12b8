import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from offersync.core.database import dispose_engine
from offersync.core.firebase import initialize_firebase
from offersync.core.logging import _initialize_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and auth, run the job sweeper, and drain jobs on shutdown."""
  from offersync.api.deps import get_job_registry, get_job_runner
  from offersync.config import get_settings
  from offersync.jobs.registry import run_sweep_loop
  from offersync.marketplace.registry import close_adapters

  settings = get_settings()
  logger = logging.getLogger("offersync.core.lifespan")

  try:
    _initialize_logging(settings)
    logger.info("Startup complete - logging verified.")
    initialize_firebase()
  except Exception:  # noqa: BLE001
    # Keep serving; auth dependencies report their own failures per request.
    logger.warning("Startup initialization incomplete.", exc_info=True)

  registry = get_job_registry()
  runner = get_job_runner()
  sweeper = asyncio.create_task(run_sweep_loop(registry, settings.job_sweep_interval_seconds), name="job-sweeper")

  yield

  logger.info("Shutting down: %d jobs still running", runner.active_count)
  await runner.shutdown(grace_seconds=settings.job_shutdown_grace_seconds)
  sweeper.cancel()
  with contextlib.suppress(asyncio.CancelledError):
    await sweeper
  await close_adapters()
  await dispose_engine()
