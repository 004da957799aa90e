"""Exception taxonomy for the utility bill pipeline.

Recoverable errors (template OCR, document detection) are caught where they
occur and recorded on the job. Everything else propagates to the
orchestrator, which records it as ``PIPELINE_FAILED``.
"""


class PipelineError(Exception):
    """Base error for pipeline failures."""


class OcrError(PipelineError):
    """Raised when an OCR request cannot be made or fails."""


class OcrConfigurationError(OcrError):
    """Raised when an OCR endpoint or secret is not configured."""


class OcrServiceError(OcrError):
    """Raised when the OCR service answers with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ExtractionError(PipelineError):
    """Raised when the language-model call fails or returns unusable content."""


class StorageError(PipelineError):
    """Raised when the blob store or job repository fails."""


class BlobNotFoundError(StorageError):
    """Raised when a blob path does not exist."""


class JobNotFoundError(PipelineError):
    """Raised when a bill job id is unknown."""


class InvalidTransitionError(PipelineError):
    """Raised when a review action is not allowed from the job's status."""


class ClaimLostError(PipelineError):
    """Raised when a run no longer owns its job (rejected or retried mid-run)."""
