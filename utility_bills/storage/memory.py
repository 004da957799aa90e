"""
In-memory blob store and job repository for tests and local demos.
"""

from typing import Any

from utility_bills.errors import BlobNotFoundError, JobNotFoundError
from utility_bills.models import BillJob, BillStatus, utcnow

from .base import BlobStore, JobRepository


class InMemoryBlobStore(BlobStore):
    """Blob store backed by a dict of path to (bytes, content type)."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}

    async def download(self, path: str) -> bytes:
        try:
            return self.objects[path][0]
        except KeyError:
            raise BlobNotFoundError(f"Blob not found: {path}") from None

    async def upload(self, path: str, data: bytes, content_type: str = "image/png") -> None:
        self.objects[path] = (bytes(data), content_type)


class InMemoryJobRepository(JobRepository):
    """
    Job repository keeping validated copies of jobs in a dict.

    Every update is recorded in ``history`` as ``(job_id, fields)`` so tests
    can inspect the sequence of persisted writes.
    """

    def __init__(self) -> None:
        self.jobs: dict[str, BillJob] = {}
        self.history: list[tuple[str, dict[str, Any]]] = []

    def _apply(self, job_id: str, fields: dict[str, Any]) -> BillJob:
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Bill job not found: {job_id}")
        self.history.append((job_id, dict(fields)))
        merged = {**job.model_dump(), **fields, "updated_at": utcnow()}
        updated = BillJob.model_validate(merged)
        self.jobs[job_id] = updated
        return updated.model_copy()

    async def create(self, job: BillJob) -> BillJob:
        self.jobs[job.id] = job.model_copy()
        return job.model_copy()

    async def get_by_id(self, job_id: str) -> BillJob | None:
        job = self.jobs.get(job_id)
        return job.model_copy() if job else None

    async def update(self, job_id: str, fields: dict[str, Any]) -> BillJob:
        return self._apply(job_id, fields)

    async def claim(self, job_id: str, token: str) -> bool:
        # Check and set run without yielding to the event loop.
        job = self.jobs.get(job_id)
        if job is None or job.status != BillStatus.PROCESSING or job.claim_token:
            return False
        self._apply(job_id, {"claim_token": token})
        return True

    async def update_claimed(
        self, job_id: str, token: str, fields: dict[str, Any]
    ) -> BillJob | None:
        job = self.jobs.get(job_id)
        if job is None or job.status != BillStatus.PROCESSING or job.claim_token != token:
            return None
        return self._apply(job_id, fields)

    async def list_by_company(self, company_id: str) -> list[BillJob]:
        jobs = [job for job in self.jobs.values() if job.company_id == company_id]
        return sorted(jobs, key=lambda job: job.created_at, reverse=True)
