"""Bill job data model shared by the pipeline, storage and API layers."""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class BillStatus(StrEnum):
    """Review lifecycle of a bill job."""

    PROCESSING = "PROCESSING"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"


class ProcessingStage(StrEnum):
    """Checkpointed pipeline stages, in execution order."""

    DOWNLOAD = "DOWNLOAD"
    PREPROCESS_CV = "PREPROCESS_CV"
    PREPROCESS_UPLOAD = "PREPROCESS_UPLOAD"
    TEMPLATE_OCR = "TEMPLATE_OCR"
    GENERAL_OCR = "GENERAL_OCR"
    GEMINI = "GEMINI"
    VALIDATE = "VALIDATE"
    DONE = "DONE"


STAGE_ORDER: tuple[ProcessingStage, ...] = tuple(ProcessingStage)


def stage_index(stage: ProcessingStage | str) -> int:
    """Return the position of a stage in the forward-only stage order."""
    return STAGE_ORDER.index(ProcessingStage(stage))


class BillType(StrEnum):
    """Closed set of bill categories the extractor may return."""

    ELECTRICITY = "ELECTRICITY"
    WATER = "WATER"
    GAS = "GAS"
    TELECOM = "TELECOM"
    TAX = "TAX"
    ETC = "ETC"


class OcrMode(StrEnum):
    """OCR strategy whose output fed the extractor."""

    TEMPLATE = "TEMPLATE"
    GENERAL = "GENERAL"


class ErrorCode(StrEnum):
    """Codes written to ``last_error_code``."""

    PIPELINE_FAILED = "PIPELINE_FAILED"
    TEMPLATE_OCR_FAILED = "TEMPLATE_OCR_FAILED"
    DOC_DETECT_FAILED = "DOC_DETECT_FAILED"


EXTRACTED_FIELDS: tuple[str, ...] = (
    "vendor_name",
    "bill_type",
    "amount_due",
    "due_date",
    "billing_period_start",
    "billing_period_end",
    "customer_no",
    "payment_account",
)


def utcnow() -> datetime:
    return datetime.now(UTC)


class BillJob(BaseModel):
    """One uploaded utility bill and its processing outcome."""

    id: str
    company_id: str
    file_url: str

    status: BillStatus = BillStatus.PROCESSING
    processing_stage: ProcessingStage = ProcessingStage.DOWNLOAD

    vendor_name: str | None = None
    bill_type: BillType | None = None
    amount_due: int | None = None
    due_date: str | None = None
    billing_period_start: str | None = None
    billing_period_end: str | None = None
    customer_no: str | None = None
    payment_account: str | None = None

    raw_ocr_text: str | None = None
    ocr_mode: OcrMode | None = None
    template_id: str | None = None
    confidence: float | None = None
    extracted_json: dict[str, Any] | None = None
    last_error_code: str | None = None
    last_error_message: str | None = None

    processed_file_url: str | None = None
    claim_token: str | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


@dataclass(frozen=True)
class ProcessedPaths:
    """Blob paths of the preprocessed variants of one job."""

    scan: str
    track_a: str
    track_b: str


def build_processed_paths(company_id: str, job_id: str) -> ProcessedPaths:
    """Build the job-scoped blob paths for the processed images."""
    prefix = f"{company_id}/{job_id}/processed"
    return ProcessedPaths(
        scan=f"{prefix}/scan.png",
        track_a=f"{prefix}/trackA.png",
        track_b=f"{prefix}/trackB.png",
    )
