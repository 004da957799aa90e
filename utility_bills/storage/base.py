"""
Abstract interfaces for the blob store and the bill job repository.

The pipeline depends only on these interfaces, so storage backends can be
swapped without touching the orchestrator:
- In-memory (tests and local demos)
- Local disk / SQLite (single-instance deployments)
- A managed database and object store (production)
"""

from abc import ABC, abstractmethod
from typing import Any

from utility_bills.models import BillJob


class BlobStore(ABC):
    """Binary object storage addressed by slash-separated paths."""

    @abstractmethod
    async def download(self, path: str) -> bytes:
        """
        Read the object stored at ``path``.

        Raises:
            BlobNotFoundError: If nothing is stored at ``path``.
        """

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: str = "image/png") -> None:
        """
        Store ``data`` at ``path``, replacing any existing object.
        """


class JobRepository(ABC):
    """Persistence for bill jobs with partial-update semantics."""

    @abstractmethod
    async def create(self, job: BillJob) -> BillJob:
        """
        Insert a new job and return it.
        """

    @abstractmethod
    async def get_by_id(self, job_id: str) -> BillJob | None:
        """
        Get a job by id.

        Returns:
            The job, or None if not found.
        """

    @abstractmethod
    async def update(self, job_id: str, fields: dict[str, Any]) -> BillJob:
        """
        Apply a partial update and stamp ``updated_at``.

        Args:
            job_id: Job identifier
            fields: Column name to new value

        Returns:
            The updated job.

        Raises:
            JobNotFoundError: If the job does not exist.
        """

    @abstractmethod
    async def claim(self, job_id: str, token: str) -> bool:
        """
        Atomically take ownership of a PROCESSING job.

        Succeeds only when the job is PROCESSING and holds no claim token.

        Returns:
            True if this caller now owns the job.
        """

    @abstractmethod
    async def update_claimed(
        self, job_id: str, token: str, fields: dict[str, Any]
    ) -> BillJob | None:
        """
        Apply a partial update only while the caller still owns the job.

        The write happens only when the job is PROCESSING and its claim
        token equals ``token``; a rejected or re-claimed job is left as is.

        Returns:
            The updated job, or None if the claim no longer holds.
        """

    @abstractmethod
    async def list_by_company(self, company_id: str) -> list[BillJob]:
        """
        List a company's jobs, newest first.
        """
