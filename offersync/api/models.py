from __future__ import annotations

import datetime

from pydantic import BaseModel, ConfigDict, Field, StrictStr
from pydantic.alias_generators import to_camel

from offersync.content.preview import DescriptionPreview
from offersync.jobs.models import Job, JobDetail, JobStatus
from offersync.jobs.modifications import AiOptions, ModificationRequest
from offersync.marketplace.base import DescriptionSection

MAX_OFFERS_PER_JOB = 1000


class _CamelModel(BaseModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BulkEditRequest(_CamelModel):
  """Request body for starting a bulk offer edit."""

  # Emptiness is checked by the service so it reports 400 rather than 422.
  offer_ids: list[StrictStr] = Field(default_factory=list, max_length=MAX_OFFERS_PER_JOB, description="Marketplace offer ids to edit.")
  modifications: ModificationRequest = Field(default_factory=ModificationRequest, description="Changes applied to every offer.")
  marketplace: StrictStr = Field(default="allegro", description="Marketplace the offers live on.")
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class BulkEditAccepted(_CamelModel):
  job_id: str


class JobDetailResponse(_CamelModel):
  offer_id: str
  success: bool
  error: str | None = None
  kind: str | None = None
  note: str | None = None

  @classmethod
  def from_detail(cls, detail: JobDetail) -> JobDetailResponse:
    return cls(offer_id=detail.offer_id, success=detail.success, error=detail.error, kind=detail.kind, note=detail.note)


class JobStatusResponse(_CamelModel):
  """Progress report for a bulk edit job."""

  id: str
  status: JobStatus
  total: int
  processed: int
  success: int
  failed: int
  details: list[JobDetailResponse]
  created_at: datetime.datetime
  updated_at: datetime.datetime
  completed_at: datetime.datetime | None = None
  error: str | None = None

  @classmethod
  def from_job(cls, job: Job) -> JobStatusResponse:
    return cls(id=job.id, status=job.status, total=job.total, processed=job.processed, success=job.success, failed=job.failed, details=[JobDetailResponse.from_detail(detail) for detail in job.details], created_at=job.created_at, updated_at=job.updated_at, completed_at=job.completed_at, error=job.error)


class DescriptionPreviewRequest(_CamelModel):
  """Request body for generating one offer's description without saving it."""

  template_id: StrictStr | None = Field(default=None, description="AI template id; 'default' or omitted uses the user's default template.")
  ai_options: AiOptions | None = Field(default=None, description="Optional generation switches and extra inputs.")
  marketplace: StrictStr = Field(default="allegro", description="Marketplace the offer lives on.")
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class SectionItemResponse(_CamelModel):
  type: str
  content: str | None = None
  url: str | None = None


class SectionResponse(_CamelModel):
  items: list[SectionItemResponse]

  @classmethod
  def from_section(cls, section: DescriptionSection) -> SectionResponse:
    return cls(items=[SectionItemResponse(type=item.type, content=item.content, url=item.url) for item in section.items])


class DescriptionPreviewResponse(_CamelModel):
  """Generated description plus the marketplace section layout it would be saved as."""

  offer_id: str
  description: str
  parsed_description: list[SectionResponse]
  provider: str
  # Plain number in JSON, matching the wallet amounts in error bodies.
  charged: float

  @classmethod
  def from_preview(cls, preview: DescriptionPreview) -> DescriptionPreviewResponse:
    return cls(offer_id=preview.offer_id, description=preview.description, parsed_description=[SectionResponse.from_section(section) for section in preview.sections], provider=preview.provider, charged=float(preview.charged))
