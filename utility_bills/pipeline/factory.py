"""Wiring of pipeline components from configuration."""

from dataclasses import dataclass
from pathlib import Path

from utility_bills.extraction.llm_extractor import FieldExtractor
from utility_bills.ocr.gateway import OcrGateway
from utility_bills.preprocessing.detector import VisionRuntime
from utility_bills.preprocessing.pipeline import GeometricPreprocessor
from utility_bills.storage.base import BlobStore, JobRepository
from utility_bills.storage.local_disk import LocalDiskBlobStore
from utility_bills.storage.memory import InMemoryBlobStore, InMemoryJobRepository
from utility_bills.storage.sqlite_repository import SQLiteJobRepository
from utility_bills.utils.config import AppConfig, StorageConfig
from utility_bills.validation.triage import ResultValidator

from .orchestrator import BillPipeline
from .review import ReviewService
from .trigger import ProcessingTrigger


@dataclass
class Services:
    """Process-wide pipeline components shared by the API handlers."""

    config: AppConfig
    runtime: VisionRuntime
    repository: JobRepository
    blobs: BlobStore
    pipeline: BillPipeline
    review: ReviewService
    trigger: ProcessingTrigger


def build_storage(config: StorageConfig) -> tuple[JobRepository, BlobStore]:
    """Create the job repository and blob store for the configured backend.

    Raises:
        ValueError: If the backend name is unknown.
    """
    if config.backend == "memory":
        return InMemoryJobRepository(), InMemoryBlobStore()
    if config.backend == "sqlite":
        return SQLiteJobRepository(config.sqlite_path), LocalDiskBlobStore(
            Path(config.blob_dir)
        )
    raise ValueError(f"Unsupported storage backend: {config.backend}")


def build_services(
    config: AppConfig,
    runtime: VisionRuntime | None = None,
    repository: JobRepository | None = None,
    blobs: BlobStore | None = None,
) -> Services:
    """Assemble all components; the vision runtime is loaded if not given."""
    if runtime is None:
        runtime = VisionRuntime.load(config.preprocessing)
    if repository is None or blobs is None:
        default_repository, default_blobs = build_storage(config.storage)
        repository = repository or default_repository
        blobs = blobs or default_blobs

    pipeline = BillPipeline(
        repository=repository,
        blobs=blobs,
        preprocessor=GeometricPreprocessor(config.preprocessing, runtime),
        ocr=OcrGateway(config.ocr),
        extractor=FieldExtractor(config.extraction),
        validator=ResultValidator(config.validation),
    )
    return Services(
        config=config,
        runtime=runtime,
        repository=repository,
        blobs=blobs,
        pipeline=pipeline,
        review=ReviewService(repository, blobs, config.trigger.stale_claim_seconds),
        trigger=ProcessingTrigger(config.trigger, pipeline),
    )
