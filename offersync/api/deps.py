"""Process-wide singletons wired into FastAPI dependencies."""

from __future__ import annotations

import datetime
from functools import lru_cache

from fastapi import Depends

from offersync.ai.factory import build_image_model, build_policy, build_text_generator_factory
from offersync.billing.service import WalletBilling, WalletPreflight
from offersync.config import Settings, get_settings
from offersync.content.generator import DescriptionGenerator
from offersync.content.preview import DescriptionPreviewService
from offersync.content.templates import SqlTemplateStore
from offersync.core.database import require_session_factory
from offersync.images.processor import ImageProcessor
from offersync.jobs.processor import BatchProcessor, BatchSettings
from offersync.jobs.registry import JobRegistry
from offersync.jobs.runner import JobRunner
from offersync.jobs.service import BulkEditService
from offersync.marketplace.integrations import IntegrationStore
from offersync.marketplace.registry import get_adapter


@lru_cache(maxsize=1)
def get_job_registry() -> JobRegistry:
  settings = get_settings()
  return JobRegistry(retention=datetime.timedelta(hours=settings.job_retention_hours))


@lru_cache(maxsize=1)
def get_job_runner() -> JobRunner:
  return JobRunner(max_concurrent=get_settings().max_concurrent_jobs)


@lru_cache(maxsize=1)
def get_description_generator() -> DescriptionGenerator:
  settings = get_settings()
  return DescriptionGenerator(SqlTemplateStore(require_session_factory()), build_text_generator_factory(settings), language=settings.description_language)


def build_batch_processor(settings: Settings, registry: JobRegistry) -> BatchProcessor:
  session_factory = require_session_factory()
  generator = get_description_generator()
  images = ImageProcessor(upload_root=settings.upload_root, image_model=build_image_model(settings), policy=build_policy(settings), download_timeout_seconds=settings.image_download_timeout_seconds, max_download_bytes=settings.image_download_max_bytes)
  batch_settings = BatchSettings(simple_chunk_size=settings.simple_chunk_size, complex_chunk_size=settings.complex_chunk_size, price_poll_interval_seconds=settings.price_poll_interval_seconds, price_poll_attempts=settings.price_poll_attempts)
  return BatchProcessor(registry, WalletBilling(session_factory), generator=generator, image_processor=images, settings=batch_settings)


@lru_cache(maxsize=1)
def get_batch_processor() -> BatchProcessor:
  return build_batch_processor(get_settings(), get_job_registry())


def get_bulk_edit_service(registry: JobRegistry = Depends(get_job_registry), runner: JobRunner = Depends(get_job_runner)) -> BulkEditService:  # noqa: B008
  session_factory = require_session_factory()
  return BulkEditService(registry=registry, runner=runner, processor=get_batch_processor(), preflight=WalletPreflight(session_factory), integrations=IntegrationStore(session_factory), adapter_lookup=get_adapter)


def get_description_preview_service() -> DescriptionPreviewService:
  session_factory = require_session_factory()
  return DescriptionPreviewService(generator=get_description_generator(), preflight=WalletPreflight(session_factory), billing=WalletBilling(session_factory), integrations=IntegrationStore(session_factory), adapter_lookup=get_adapter)
