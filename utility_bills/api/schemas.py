"""Pydantic request/response schemas for the FastAPI endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from utility_bills.models import BillJob


class BillResponse(BaseModel):
    """Response schema for a single bill job."""

    id: str
    company_id: str
    status: str
    processing_stage: str
    vendor_name: str | None = None
    bill_type: str | None = None
    amount_due: int | None = None
    due_date: str | None = None
    billing_period_start: str | None = None
    billing_period_end: str | None = None
    customer_no: str | None = None
    payment_account: str | None = None
    raw_ocr_text: str | None = None
    ocr_mode: str | None = None
    template_id: str | None = None
    confidence: float | None = None
    extracted_json: dict[str, Any] | None = None
    last_error_code: str | None = None
    last_error_message: str | None = None
    file_url: str
    processed_file_url: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: BillJob) -> "BillResponse":
        return cls.model_validate(job.model_dump(mode="json", exclude={"claim_token"}))


class BillListResponse(BaseModel):
    """Response schema listing a company's bills."""

    items: list[BillResponse]


class ConfirmRequest(BaseModel):
    """Reviewer-edited fields submitted with a confirm action.

    Values are loosely typed; amounts and dates are normalized server-side.
    """

    vendor_name: str | None = None
    bill_type: str | None = None
    amount_due: int | float | str | None = None
    due_date: str | None = None
    billing_period_start: str | None = None
    billing_period_end: str | None = None
    customer_no: str | None = None
    payment_account: str | None = None


class TriggerResponse(BaseModel):
    """Response schema for the processing trigger endpoint."""

    accepted: bool
    job_id: str


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    document_detector_ready: bool
    template_ocr_enabled: bool
    general_ocr_configured: bool
