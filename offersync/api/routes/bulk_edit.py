import logging

from fastapi import APIRouter, Depends, HTTPException, status

from offersync.ai.errors import GenerationError
from offersync.api.deps import get_bulk_edit_service, get_description_preview_service, get_job_registry
from offersync.api.models import BulkEditAccepted, BulkEditRequest, DescriptionPreviewRequest, DescriptionPreviewResponse, JobStatusResponse
from offersync.billing.ledger import InsufficientFundsError
from offersync.content.preview import DescriptionPreviewService, OfferNotFoundError
from offersync.core.security import get_current_user_id
from offersync.jobs.registry import ConflictError, JobAccessError, JobNotFoundError, JobRegistry
from offersync.jobs.service import BulkEditService, BulkEditValidationError
from offersync.marketplace.base import AuthExpiredError, MarketplaceError
from offersync.marketplace.integrations import IntegrationNotFoundError

router = APIRouter()
logger = logging.getLogger("offersync.api.routes.bulk_edit")


def _payment_required(exc: InsufficientFundsError, message: str) -> HTTPException:
  return HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail={"detail": message, "balanceRequired": exc.required, "balance": exc.balance})


@router.post("/jobs", response_model=BulkEditAccepted, status_code=status.HTTP_202_ACCEPTED)
async def create_bulk_edit_job(  # noqa: B008
  request: BulkEditRequest,
  user_id: str = Depends(get_current_user_id),  # noqa: B008
  service: BulkEditService = Depends(get_bulk_edit_service),  # noqa: B008
) -> BulkEditAccepted:
  """Start a bulk edit in the background and return its id immediately."""
  try:
    job = await service.submit(user_id=user_id, offer_ids=request.offer_ids, modifications=request.modifications, marketplace=request.marketplace)
  except BulkEditValidationError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
  except ConflictError as exc:
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"detail": "Some offers are already being edited by another job", "conflictingIds": exc.conflicting_ids}) from exc
  except IntegrationNotFoundError as exc:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
  except InsufficientFundsError as exc:
    raise _payment_required(exc, "Insufficient wallet balance for this bulk edit") from exc

  return BulkEditAccepted(job_id=job.id)


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_bulk_edit_job(  # noqa: B008
  job_id: str,
  user_id: str = Depends(get_current_user_id),  # noqa: B008
  registry: JobRegistry = Depends(get_job_registry),  # noqa: B008
) -> JobStatusResponse:
  """Report progress of one of the caller's jobs."""
  try:
    job = registry.get(job_id, user_id)
  except JobNotFoundError as exc:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found") from exc
  except JobAccessError as exc:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied") from exc

  return JobStatusResponse.from_job(job)


@router.post("/offers/{offer_id}/generate-description", response_model=DescriptionPreviewResponse)
async def generate_offer_description(  # noqa: B008
  offer_id: str,
  request: DescriptionPreviewRequest | None = None,
  user_id: str = Depends(get_current_user_id),  # noqa: B008
  service: DescriptionPreviewService = Depends(get_description_preview_service),  # noqa: B008
) -> DescriptionPreviewResponse:
  """Generate one offer's description for preview and bill it; the offer itself is not changed."""
  request = request or DescriptionPreviewRequest()
  try:
    preview = await service.generate(user_id=user_id, offer_id=offer_id, template_id=request.template_id, options=request.ai_options, marketplace=request.marketplace)
  except BulkEditValidationError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
  except InsufficientFundsError as exc:
    raise _payment_required(exc, "Insufficient wallet balance for this description") from exc
  except (IntegrationNotFoundError, OfferNotFoundError) as exc:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
  except AuthExpiredError as exc:
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
  except GenerationError as exc:
    # `kind` separates exhausted provider funds from other provider failures.
    logger.warning("Description preview for offer %s failed: %s", offer_id, exc)
    raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail={"detail": "Failed to generate description", "reason": str(exc), "kind": exc.kind}) from exc
  except MarketplaceError as exc:
    raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

  return DescriptionPreviewResponse.from_preview(preview)
