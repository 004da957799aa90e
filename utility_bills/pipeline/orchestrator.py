"""Stage-by-stage processing of one bill job.

Each stage name is persisted before the stage runs, so a job that stops
mid-run shows exactly where it stopped. Every run that keeps its claim ends
with ``processing_stage = DONE`` and a non-PROCESSING status; unexpected
errors are written to the job instead of being raised to the caller. A run
whose job was rejected or retried underneath it stops without writing.
"""

import asyncio
import uuid
from typing import Any

from utility_bills.errors import ClaimLostError, JobNotFoundError
from utility_bills.extraction.llm_extractor import FieldExtractor
from utility_bills.models import (
    BillJob,
    BillStatus,
    ErrorCode,
    OcrMode,
    ProcessingStage,
    build_processed_paths,
)
from utility_bills.ocr.gateway import OcrGateway, OcrResult
from utility_bills.preprocessing.pipeline import GeometricPreprocessor, PreprocessResult
from utility_bills.storage.base import BlobStore, JobRepository
from utility_bills.utils.logger import get_logger
from utility_bills.validation.triage import ResultValidator

logger = get_logger(__name__)


class BillPipeline:
    """Runs the download → preprocess → OCR → extract → validate state machine.

    Args:
        repository: Job repository, the only shared mutable state.
        blobs: Blob store holding original and processed images.
        preprocessor: Geometric preprocessor.
        ocr: OCR gateway for template and general recognition.
        extractor: Language-model field extractor.
        validator: Confidence triage.
    """

    def __init__(
        self,
        repository: JobRepository,
        blobs: BlobStore,
        preprocessor: GeometricPreprocessor,
        ocr: OcrGateway,
        extractor: FieldExtractor,
        validator: ResultValidator,
    ) -> None:
        self.repository = repository
        self.blobs = blobs
        self.preprocessor = preprocessor
        self.ocr = ocr
        self.extractor = extractor
        self.validator = validator

    async def process(self, job_id: str) -> BillJob | None:
        """Process a job that is waiting in PROCESSING.

        Jobs in any other status, or already claimed by another run, are
        left untouched. Every write of the run is conditional on this run's
        claim, so a job rejected or retried mid-run keeps its new state.

        Args:
            job_id: Bill job identifier.

        Returns:
            The job after the run, the unchanged job if it was not
            PROCESSING, ``None`` if another run holds the claim, or the
            current job if the claim was lost mid-run.

        Raises:
            JobNotFoundError: If the job does not exist.
        """
        job = await self.repository.get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(f"Bill job not found: {job_id}")

        if job.status != BillStatus.PROCESSING:
            logger.info("Bill %s is %s, nothing to process", job_id, job.status.value)
            return job

        token = uuid.uuid4().hex
        if not await self.repository.claim(job_id, token):
            logger.info("Bill %s is already being processed", job_id)
            return None

        try:
            return await self._run(job, token)
        except ClaimLostError as exc:
            logger.info("Stopping bill %s: %s", job_id, exc)
            return await self.repository.get_by_id(job_id)
        except Exception as exc:
            logger.exception("Pipeline failed for bill %s", job_id)
            failed = await self.repository.update_claimed(
                job_id,
                token,
                {
                    "status": BillStatus.NEEDS_REVIEW,
                    "processing_stage": ProcessingStage.DONE,
                    "last_error_code": ErrorCode.PIPELINE_FAILED.value,
                    "last_error_message": str(exc) or type(exc).__name__,
                    "claim_token": None,
                },
            )
            return failed or await self.repository.get_by_id(job_id)

    async def _write(self, job_id: str, token: str, fields: dict[str, Any]) -> BillJob:
        job = await self.repository.update_claimed(job_id, token, fields)
        if job is None:
            raise ClaimLostError(f"bill {job_id} is no longer owned by this run")
        return job

    async def _advance(
        self, job_id: str, token: str, stage: ProcessingStage, **fields: Any
    ) -> None:
        await self._write(job_id, token, {"processing_stage": stage, **fields})
        logger.info("Bill %s: %s", job_id, stage.value)

    async def _run(self, job: BillJob, token: str) -> BillJob:
        await self._advance(
            job.id,
            token,
            ProcessingStage.DOWNLOAD,
            last_error_code=None,
            last_error_message=None,
        )
        original = await self.blobs.download(job.file_url)

        await self._advance(job.id, token, ProcessingStage.PREPROCESS_CV)
        prep = await asyncio.to_thread(self.preprocessor.process, original)

        await self._advance(job.id, token, ProcessingStage.PREPROCESS_UPLOAD)
        paths = build_processed_paths(job.company_id, job.id)
        await self.blobs.upload(paths.scan, prep.scan, "image/png")
        await self.blobs.upload(paths.track_a, prep.track_a, "image/png")
        await self.blobs.upload(paths.track_b, prep.track_b, "image/png")

        ocr_result, ocr_mode, template_id = await self._recognize(
            job.id, token, prep, paths.scan
        )

        await self._advance(
            job.id,
            token,
            ProcessingStage.GEMINI,
            raw_ocr_text=ocr_result.text or None,
            ocr_mode=ocr_mode,
            template_id=template_id,
        )
        template_fields = ocr_result.fields if ocr_mode == OcrMode.TEMPLATE else None
        candidate = await self.extractor.extract(ocr_result.text, template_fields)

        await self._advance(job.id, token, ProcessingStage.VALIDATE)
        triage = self.validator.evaluate(candidate, prep.doc_detected, ocr_result.text)

        extracted_json = {
            **triage.to_json(),
            "ocr_mode": ocr_mode.value,
            "template_id": template_id,
            "preprocess": {"doc_detected": prep.doc_detected, "note": prep.note},
        }
        final = await self._write(
            job.id,
            token,
            {
                **triage.fields,
                "confidence": triage.confidence,
                "status": triage.status,
                "extracted_json": extracted_json,
                "processing_stage": ProcessingStage.DONE,
                "last_error_code": (
                    None if prep.doc_detected else ErrorCode.DOC_DETECT_FAILED.value
                ),
                "last_error_message": None if prep.doc_detected else prep.note,
                "claim_token": None,
            },
        )
        logger.info(
            "Bill %s finished: %s (confidence %.2f, %s OCR)",
            job.id,
            final.status.value,
            triage.confidence,
            ocr_mode.value,
        )
        return final

    async def _recognize(
        self, job_id: str, token: str, prep: PreprocessResult, scan_path: str
    ) -> tuple[OcrResult, OcrMode, str | None]:
        """Try template OCR on track A, falling back to general OCR on track B."""
        if self.ocr.template_enabled:
            await self._advance(
                job_id, token, ProcessingStage.TEMPLATE_OCR, processed_file_url=scan_path
            )
            try:
                result = await self.ocr.recognize_template(prep.track_a)
            except Exception as exc:
                logger.warning("Template OCR failed for bill %s: %s", job_id, exc)
                await self._advance(
                    job_id,
                    token,
                    ProcessingStage.GENERAL_OCR,
                    last_error_code=ErrorCode.TEMPLATE_OCR_FAILED.value,
                    last_error_message=str(exc) or type(exc).__name__,
                )
            else:
                if self.ocr.accepts_template(result):
                    template_ids = self.ocr.config.template_ids
                    return result, OcrMode.TEMPLATE, template_ids[0] if template_ids else None
                logger.info(
                    "Template OCR for bill %s below acceptance (%d fields, %d chars)",
                    job_id,
                    result.fields_count,
                    len(result.text),
                )
                await self._advance(job_id, token, ProcessingStage.GENERAL_OCR)
        else:
            await self._advance(
                job_id, token, ProcessingStage.GENERAL_OCR, processed_file_url=scan_path
            )

        result = await self.ocr.recognize_general(prep.track_b)
        return result, OcrMode.GENERAL, None
