"""Job creation and human review actions: retry, reject, confirm.

Retry is a state transition, not a loop inside the pipeline: it resets the
job to PROCESSING at DOWNLOAD and the caller triggers exactly one new run.
"""

import mimetypes
import uuid
from datetime import timedelta
from typing import Any

from utility_bills.errors import InvalidTransitionError, JobNotFoundError
from utility_bills.models import BillJob, BillStatus, ProcessingStage, utcnow
from utility_bills.storage.base import BlobStore, JobRepository
from utility_bills.utils.logger import get_logger
from utility_bills.validation.triage import normalize_review_edits

logger = get_logger(__name__)

_CONFIRMABLE = {BillStatus.NEEDS_REVIEW, BillStatus.CONFIRMED}


class ReviewService:
    """Creates bill jobs and applies reviewer decisions.

    Args:
        repository: Job repository.
        blobs: Blob store for original uploads.
        stale_claim_seconds: How long a run may go without writing before
            retry may take its job away.
    """

    def __init__(
        self,
        repository: JobRepository,
        blobs: BlobStore,
        stale_claim_seconds: float = 600.0,
    ) -> None:
        self.repository = repository
        self.blobs = blobs
        self.stale_claim = timedelta(seconds=stale_claim_seconds)

    async def _require(self, job_id: str) -> BillJob:
        job = await self.repository.get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(f"Bill job not found: {job_id}")
        return job

    async def create_job(
        self, company_id: str, image: bytes, content_type: str = "image/jpeg"
    ) -> BillJob:
        """Store an uploaded photo and create a PROCESSING job for it.

        Args:
            company_id: Owning company.
            image: Uploaded image bytes.
            content_type: MIME type of the upload.

        Returns:
            The new job, at stage DOWNLOAD.
        """
        job_id = str(uuid.uuid4())
        extension = mimetypes.guess_extension(content_type) or ".bin"
        file_url = f"{company_id}/{job_id}/original{extension}"
        await self.blobs.upload(file_url, image, content_type)

        job = await self.repository.create(
            BillJob(id=job_id, company_id=company_id, file_url=file_url)
        )
        logger.info("Created bill %s for company %s", job_id, company_id)
        return job

    async def retry(self, job_id: str) -> BillJob:
        """Reset a job so the next run reprocesses the original end to end.

        A claimed PROCESSING job is only reset once its run has stopped
        writing for longer than the stale-claim window; the abandoned run
        then loses every further write.

        Raises:
            InvalidTransitionError: If a live run still owns the job.
        """
        job = await self._require(job_id)
        if (
            job.status == BillStatus.PROCESSING
            and job.claim_token
            and utcnow() - job.updated_at < self.stale_claim
        ):
            raise InvalidTransitionError(f"Bill {job_id} is being processed")
        job = await self.repository.update(
            job_id,
            {
                "status": BillStatus.PROCESSING,
                "processing_stage": ProcessingStage.DOWNLOAD,
                "last_error_code": None,
                "last_error_message": None,
                "confidence": 0.0,
                "claim_token": None,
            },
        )
        logger.info("Bill %s queued for retry", job_id)
        return job

    async def reject(self, job_id: str) -> BillJob:
        """Mark a job as rejected; it will not be processed again."""
        await self._require(job_id)
        job = await self.repository.update(job_id, {"status": BillStatus.REJECTED})
        logger.info("Bill %s rejected", job_id)
        return job

    async def confirm(self, job_id: str, edits: dict[str, Any] | None = None) -> BillJob:
        """Confirm a reviewed job, persisting the reviewer's field values.

        Args:
            job_id: Bill job identifier.
            edits: Reviewer-edited fields. Values that do not parse are
                ignored; the rest override the machine-extracted values.

        Returns:
            The confirmed job.

        Raises:
            InvalidTransitionError: If the job is PROCESSING or REJECTED.
        """
        job = await self._require(job_id)
        if job.status not in _CONFIRMABLE:
            raise InvalidTransitionError(
                f"Cannot confirm bill {job_id} in status {job.status.value}"
            )

        fields = normalize_review_edits(edits or {})
        confirmed = await self.repository.update(
            job_id, {**fields, "status": BillStatus.CONFIRMED}
        )
        logger.info("Bill %s confirmed with %d edited fields", job_id, len(fields))
        return confirmed
