"""Schema-constrained language-model extraction of bill fields."""

import json
from typing import Any

import httpx

from utility_bills.errors import ExtractionError
from utility_bills.utils.config import ExtractionConfig
from utility_bills.utils.logger import get_logger

from .prompts import BILL_SCHEMA, build_messages

logger = get_logger(__name__)


def _error_message(data: Any, fallback: str) -> str:
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
    return fallback


def parse_completion(data: Any) -> dict[str, Any]:
    """Pull the JSON object out of a chat-completions response.

    Args:
        data: Decoded response body.

    Returns:
        The candidate field object produced by the model.

    Raises:
        ExtractionError: If there is no message content or it is not a JSON
            object.
    """
    choices = data.get("choices") if isinstance(data, dict) else None
    first = choices[0] if isinstance(choices, list) and choices else None
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None

    if not isinstance(content, str) or not content.strip():
        raise ExtractionError("Language model returned empty content")

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Language model returned invalid JSON: {exc}") from exc

    if not isinstance(parsed, dict):
        raise ExtractionError("Language model content is not a JSON object")
    return parsed


class FieldExtractor:
    """Sends OCR text to a chat-completions endpoint with a strict JSON schema.

    Args:
        config: Extraction configuration (endpoint, model, credentials).
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        config: ExtractionConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        if self.config.site_url:
            headers["HTTP-Referer"] = self.config.site_url
        if self.config.app_name:
            headers["X-Title"] = self.config.app_name
        return headers

    async def extract(
        self,
        ocr_text: str,
        template_fields: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Extract candidate bill fields from OCR text.

        Args:
            ocr_text: Plain OCR text, possibly empty.
            template_fields: Raw template OCR fields passed as hints.

        Returns:
            The model's candidate object, not yet normalized.

        Raises:
            ExtractionError: On missing credentials, transport failure,
                non-2xx status or unusable content.
        """
        if not self.config.api_key:
            raise ExtractionError("Language model API key is not configured")

        body = {
            "model": self.config.model,
            "messages": build_messages(ocr_text, template_fields),
            "response_format": {"type": "json_schema", "json_schema": BILL_SCHEMA},
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    self.config.endpoint, json=body, headers=self._headers()
                )
        except httpx.HTTPError as exc:
            raise ExtractionError(f"Language model request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.is_error:
            message = _error_message(data, response.reason_phrase)
            raise ExtractionError(
                f"Language model request failed ({response.status_code}): {message}"
            )

        candidate = parse_completion(data)
        logger.info("Language model extraction returned %d keys", len(candidate))
        return candidate
