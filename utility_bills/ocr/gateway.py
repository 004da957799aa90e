"""HTTP gateway to the external OCR service.

Supports template-matched and general recognition against separate
endpoints and normalizes the service's response into plain text.
"""

import base64
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

import httpx

from utility_bills.errors import OcrConfigurationError, OcrServiceError
from utility_bills.utils.config import OCRConfig
from utility_bills.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class OcrResult:
    """Recognized text of one image plus the raw service response."""

    text: str
    raw: Any
    fields_count: int
    fields: list[dict[str, Any]] = field(default_factory=list)


def _clean(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def parse_ocr_response(payload: Any) -> OcrResult:
    """Flatten an OCR response into newline-joined text.

    Every part of the payload is treated as untrusted: missing or mistyped
    keys produce an empty result instead of an error. Only the first image
    is read; field texts come before table cell texts.

    Args:
        payload: Decoded JSON response body, of any shape.

    Returns:
        OcrResult with text, raw payload, field count and raw field entries.
    """
    data = payload if isinstance(payload, dict) else {}
    images = _as_list(data.get("images"))
    image = images[0] if images and isinstance(images[0], dict) else {}

    fields = [f for f in _as_list(image.get("fields")) if isinstance(f, dict)]
    cells = [
        cell
        for table in _as_list(image.get("tables"))
        if isinstance(table, dict)
        for cell in _as_list(table.get("cells"))
        if isinstance(cell, dict)
    ]

    lines = [_clean(f.get("inferText")) for f in fields]
    lines += [_clean(cell.get("cellText")) for cell in cells]
    text = "\n".join(line for line in lines if line).strip()

    return OcrResult(text=text, raw=payload, fields_count=len(fields), fields=fields)


def is_template_match(result: OcrResult, min_text_length: int = 30, min_fields: int = 4) -> bool:
    """Whether a template OCR result is good enough to skip general OCR."""
    return len(result.text) > min_text_length or result.fields_count >= min_fields


class OcrGateway:
    """Async client for the template and general OCR endpoints.

    Args:
        config: OCR configuration with endpoints, secret and language.
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        config: OCRConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport

    @property
    def template_enabled(self) -> bool:
        return bool(self.config.template_endpoint)

    def build_payload(self, image: bytes, template_ids: list[str] | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "version": "V2",
            "requestId": str(uuid.uuid4()),
            "timestamp": int(time.time() * 1000),
            "lang": self.config.lang,
            "images": [
                {
                    "format": "png",
                    "name": "utility-bill",
                    "data": base64.b64encode(image).decode("ascii"),
                }
            ],
            "enableTableDetection": True,
        }
        if template_ids:
            payload["templateIds"] = list(template_ids)
        return payload

    async def recognize(
        self,
        endpoint: str,
        image: bytes,
        template_ids: list[str] | None = None,
    ) -> OcrResult:
        """Send one PNG image to an OCR endpoint.

        Args:
            endpoint: Full URL of the OCR endpoint.
            image: PNG-encoded image bytes.
            template_ids: Template ids to match, for template mode.

        Returns:
            Parsed OCR result.

        Raises:
            OcrConfigurationError: If the endpoint or secret is missing.
            OcrServiceError: If the service cannot be reached or answers with
                a non-2xx status.
        """
        if not endpoint or not self.config.secret:
            raise OcrConfigurationError("OCR endpoint or secret is not configured")

        headers = {
            "Content-Type": "application/json",
            "X-OCR-SECRET": self.config.secret,
        }
        payload = self.build_payload(image, template_ids)

        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(endpoint, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise OcrServiceError(f"OCR request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.is_error:
            message = (
                data.get("message")
                if isinstance(data, dict) and isinstance(data.get("message"), str)
                else response.reason_phrase
            )
            raise OcrServiceError(
                f"OCR request failed ({response.status_code}): {message}",
                status_code=response.status_code,
            )

        result = parse_ocr_response(data)
        logger.info(
            "OCR returned %d fields, %d characters", result.fields_count, len(result.text)
        )
        return result

    async def recognize_template(self, image: bytes) -> OcrResult:
        """Run template-matched OCR on the track A image."""
        return await self.recognize(
            self.config.template_endpoint, image, self.config.template_ids
        )

    async def recognize_general(self, image: bytes) -> OcrResult:
        """Run free-form OCR on the track B image."""
        if not self.config.general_endpoint:
            raise OcrConfigurationError("General OCR endpoint is not configured")
        return await self.recognize(self.config.general_endpoint, image)

    def accepts_template(self, result: OcrResult) -> bool:
        return is_template_match(
            result,
            self.config.template_min_text_length,
            self.config.template_min_fields,
        )
