"""Shared test fixtures for the utility bill pipeline test suite."""

import io
import json
from pathlib import Path
from typing import Any, Callable

import httpx
import numpy as np
import pytest
from PIL import Image, ImageDraw

from utility_bills.extraction.llm_extractor import FieldExtractor
from utility_bills.ocr.gateway import OcrGateway
from utility_bills.pipeline.orchestrator import BillPipeline
from utility_bills.pipeline.review import ReviewService
from utility_bills.preprocessing.detector import VisionRuntime
from utility_bills.preprocessing.pipeline import GeometricPreprocessor
from utility_bills.storage.memory import InMemoryBlobStore, InMemoryJobRepository
from utility_bills.utils.config import (
    ExtractionConfig,
    OCRConfig,
    PreprocessingConfig,
    ValidationConfig,
)
from utility_bills.validation.triage import ResultValidator

TEMPLATE_URL = "https://ocr.test/template"
GENERAL_URL = "https://ocr.test/general"
LLM_URL = "https://llm.test/v1/chat/completions"

DOCUMENT_CORNERS = [(150, 90), (660, 120), (630, 520), (120, 500)]

CLEAN_FIELDS = [
    {"inferText": "한국전력공사"},
    {"inferText": "납부할 금액 45,000원"},
    {"inferText": "납부기한 2024-03-25"},
    {"inferText": "고객번호 0123456789"},
    {"inferText": "전기요금 청구서 2024년 2월분"},
]

CLEAN_CANDIDATE = {
    "bill_type": "ELECTRICITY",
    "vendor_name": "한국전력공사",
    "amount_due": 45000,
    "due_date": "2024-03-25",
    "billing_period_start": "2024-02-01",
    "billing_period_end": "2024-02-29",
    "customer_no": "0123456789",
    "payment_account": None,
    "evidence": {
        "amount_text": "납부할 금액 45,000원",
        "due_date_text": "납부기한 2024-03-25",
        "vendor_text": "한국전력공사",
    },
    "confidence": 0.95,
}

EMPTY_CANDIDATE = {
    "bill_type": "ETC",
    "vendor_name": None,
    "amount_due": None,
    "due_date": None,
    "billing_period_start": None,
    "billing_period_end": None,
    "customer_no": None,
    "payment_account": None,
    "evidence": {"amount_text": None, "due_date_text": None, "vendor_text": None},
}


def encode_image(image: Image.Image, fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def make_document_photo() -> Image.Image:
    """A light, slightly skewed sheet with text lines on a dark table."""
    image = Image.new("RGB", (800, 600), (35, 35, 40))
    draw = ImageDraw.Draw(image)
    draw.polygon(DOCUMENT_CORNERS, fill=(245, 245, 240))
    for y in range(180, 460, 40):
        draw.rectangle([220, y, 540, y + 8], fill=(20, 20, 20))
    return image


def make_blank_photo() -> Image.Image:
    """A uniform frame with no document boundary in it."""
    return Image.new("RGB", (600, 400), (128, 128, 128))


def ocr_payload(fields: list[dict[str, Any]]) -> dict[str, Any]:
    return {"version": "V2", "images": [{"inferResult": "SUCCESS", "fields": fields}]}


def completion_payload(candidate: dict[str, Any]) -> dict[str, Any]:
    return {
        "choices": [
            {"message": {"role": "assistant", "content": json.dumps(candidate)}}
        ]
    }


class FakeServices:
    """Routes OCR and language-model requests to canned responses.

    Each attribute holds either a JSON payload for a 200 response or an
    ``httpx.Response`` returned as-is. Every request is recorded.
    """

    def __init__(self) -> None:
        self.template: Any = ocr_payload(CLEAN_FIELDS[:2])
        self.general: Any = ocr_payload(CLEAN_FIELDS)
        self.llm: Any = completion_payload(CLEAN_CANDIDATE)
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url == TEMPLATE_URL:
            reply = self.template
        elif url == GENERAL_URL:
            reply = self.general
        elif url == LLM_URL:
            reply = self.llm
        else:
            return httpx.Response(404, json={"message": "unknown endpoint"})
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json=reply)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]

    def json_body(self, url: str) -> dict[str, Any]:
        return json.loads(self.calls_to(url)[-1].content)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def config_dir(project_root: Path) -> Path:
    """Return the configs directory path."""
    return project_root / "configs"


@pytest.fixture
def document_photo_bytes() -> bytes:
    return encode_image(make_document_photo(), "JPEG")


@pytest.fixture
def blank_photo_bytes() -> bytes:
    return encode_image(make_blank_photo(), "JPEG")


@pytest.fixture
def document_array() -> np.ndarray:
    return np.asarray(make_document_photo())


@pytest.fixture(scope="session")
def vision_runtime() -> VisionRuntime:
    """The OpenCV runtime, loaded once for the whole session."""
    return VisionRuntime.load(PreprocessingConfig(detector_init_timeout=30.0))


@pytest.fixture
def ocr_config() -> OCRConfig:
    return OCRConfig(
        template_endpoint=TEMPLATE_URL,
        general_endpoint=GENERAL_URL,
        template_ids=["tpl-kepco", "tpl-water"],
        secret="ocr-secret",
    )


@pytest.fixture
def extraction_config() -> ExtractionConfig:
    return ExtractionConfig(
        endpoint=LLM_URL,
        model="test/model",
        api_key="llm-key",
        site_url="https://bills.example.com",
        app_name="Utility Bills",
    )


@pytest.fixture
def fake_services() -> FakeServices:
    return FakeServices()


@pytest.fixture
def repository() -> InMemoryJobRepository:
    return InMemoryJobRepository()


@pytest.fixture
def blobs() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def make_pipeline(
    repository: InMemoryJobRepository,
    blobs: InMemoryBlobStore,
    vision_runtime: VisionRuntime,
    ocr_config: OCRConfig,
    extraction_config: ExtractionConfig,
    fake_services: FakeServices,
) -> Callable[..., BillPipeline]:
    """Factory for a pipeline wired to in-memory storage and fake services."""

    def _make(
        runtime: VisionRuntime | None = None, ocr: OCRConfig | None = None
    ) -> BillPipeline:
        transport = fake_services.transport()
        return BillPipeline(
            repository=repository,
            blobs=blobs,
            preprocessor=GeometricPreprocessor(
                PreprocessingConfig(), runtime or vision_runtime
            ),
            ocr=OcrGateway(ocr or ocr_config, transport=transport),
            extractor=FieldExtractor(extraction_config, transport=transport),
            validator=ResultValidator(ValidationConfig()),
        )

    return _make


@pytest.fixture
def review(
    repository: InMemoryJobRepository, blobs: InMemoryBlobStore
) -> ReviewService:
    return ReviewService(repository, blobs)
