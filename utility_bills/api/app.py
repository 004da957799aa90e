"""FastAPI application for the utility bill pipeline.

Provides endpoints for uploading bill photos, the processing trigger, the
review actions (retry, reject, confirm) and health checks.
"""

import hmac
from functools import lru_cache
from typing import Annotated

from fastapi import BackgroundTasks, FastAPI, File, Form, HTTPException, Query, UploadFile

from utility_bills import __version__
from utility_bills.errors import InvalidTransitionError, JobNotFoundError
from utility_bills.models import BillJob
from utility_bills.pipeline.factory import Services, build_services
from utility_bills.utils.config import load_config
from utility_bills.utils.logger import get_logger

from .schemas import (
    BillListResponse,
    BillResponse,
    ConfirmRequest,
    HealthResponse,
    TriggerResponse,
)

logger = get_logger(__name__)

app = FastAPI(
    title="Utility Bill Pipeline API",
    description="Rectify, recognize and triage photographed utility bills",
    version=__version__,
)

_ALLOWED_CONTENT_TYPES = {
    "image/png",
    "image/jpeg",
    "image/webp",
    "image/heic",
    "application/octet-stream",
}


@lru_cache(maxsize=1)
def _get_services() -> Services:
    """Build the shared pipeline components once per process."""
    return build_services(load_config())


def _check_secret(provided: str | None, expected: str) -> None:
    if expected and not hmac.compare_digest(provided or "", expected):
        raise HTTPException(status_code=403, detail="Invalid trigger secret")


async def _get_job(services: Services, job_id: str) -> BillJob:
    job = await services.repository.get_by_id(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Bill not found: {job_id}")
    return job


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Return system health status."""
    services = _get_services()
    return HealthResponse(
        status="healthy",
        version=__version__,
        document_detector_ready=services.runtime.ready,
        template_ocr_enabled=bool(services.config.ocr.template_endpoint),
        general_ocr_configured=bool(services.config.ocr.general_endpoint),
    )


@app.post("/utility-bills", response_model=BillResponse, status_code=201)
async def upload_bill(
    file: Annotated[UploadFile, File(...)],
    company_id: Annotated[str, Form(...)],
) -> BillResponse:
    """Store an uploaded bill photo and start processing it.

    Args:
        file: Photographed bill image.
        company_id: Owning company.

    Returns:
        The new bill in PROCESSING.
    """
    content_type = file.content_type or "application/octet-stream"
    if content_type not in _ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=400, detail=f"Unsupported file type: {content_type}"
        )

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")

    services = _get_services()
    job = await services.review.create_job(company_id, content, content_type)
    services.trigger.trigger(job.id)
    return BillResponse.from_job(job)


@app.get("/utility-bills", response_model=BillListResponse)
async def list_bills(company_id: Annotated[str, Query()]) -> BillListResponse:
    """List a company's bills, newest first."""
    jobs = await _get_services().repository.list_by_company(company_id)
    return BillListResponse(items=[BillResponse.from_job(job) for job in jobs])


@app.api_route(
    "/utility-bills/process",
    methods=["GET", "POST"],
    response_model=TriggerResponse,
    status_code=202,
)
async def trigger_processing(
    background_tasks: BackgroundTasks,
    job_id: Annotated[str, Query(alias="id")],
    secret: Annotated[str | None, Query()] = None,
) -> TriggerResponse:
    """Run the pipeline for one job in the background.

    Args:
        job_id: Bill job identifier.
        secret: Shared trigger secret.

    Returns:
        Acknowledgement; the outcome is written to the bill itself.
    """
    services = _get_services()
    _check_secret(secret, services.config.trigger.secret)
    await _get_job(services, job_id)
    background_tasks.add_task(services.pipeline.process, job_id)
    return TriggerResponse(accepted=True, job_id=job_id)


@app.get("/utility-bills/{job_id}", response_model=BillResponse)
async def get_bill(job_id: str) -> BillResponse:
    """Return one bill, including its stage for progress polling."""
    return BillResponse.from_job(await _get_job(_get_services(), job_id))


@app.post("/utility-bills/{job_id}/retry", response_model=BillResponse)
async def retry_bill(job_id: str) -> BillResponse:
    """Reset a bill to PROCESSING and reprocess it from the original image."""
    services = _get_services()
    try:
        job = await services.review.retry(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    services.trigger.trigger(job.id)
    return BillResponse.from_job(job)


@app.post("/utility-bills/{job_id}/reject", response_model=BillResponse)
async def reject_bill(job_id: str) -> BillResponse:
    """Mark a bill as rejected."""
    try:
        job = await _get_services().review.reject(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return BillResponse.from_job(job)


@app.post("/utility-bills/{job_id}/confirm", response_model=BillResponse)
async def confirm_bill(job_id: str, edits: ConfirmRequest | None = None) -> BillResponse:
    """Confirm a reviewed bill with optional reviewer edits."""
    payload = edits.model_dump(exclude_none=True) if edits else {}
    try:
        job = await _get_services().review.confirm(job_id, payload)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return BillResponse.from_job(job)
