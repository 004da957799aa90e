"""Configuration management for the utility bill pipeline.

Loads and validates YAML configuration with sensible defaults for
preprocessing, OCR, extraction, validation, storage and triggering, then
applies environment overrides for endpoints and secrets.
"""

import json
import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class PreprocessingConfig(BaseModel):
    """Configuration for the geometric preprocessor."""

    max_working_dimension: int = 1000
    min_document_area_ratio: float = 0.1
    detector_init_timeout: float = 5.0
    brightness: float = 1.03
    saturation: float = 1.05
    threshold_block_size: int = 35
    threshold_c: int = 10
    fallback_threshold: int = 180


class OCRConfig(BaseModel):
    """Configuration for the external OCR service."""

    template_endpoint: str = ""
    general_endpoint: str = ""
    template_ids: list[str] = Field(default_factory=list)
    secret: str = ""
    lang: str = "ko"
    timeout_seconds: float = 60.0
    template_min_text_length: int = 30
    template_min_fields: int = 4


class ExtractionConfig(BaseModel):
    """Configuration for the language-model field extractor."""

    endpoint: str = "https://openrouter.ai/api/v1/chat/completions"
    model: str = "google/gemini-2.5-flash"
    api_key: str = ""
    site_url: str | None = None
    app_name: str | None = None
    timeout_seconds: float = 90.0


class ValidationConfig(BaseModel):
    """Configuration for confidence triage."""

    auto_confirm_threshold: float = 0.85
    no_document_cap: float = 0.6


class StorageConfig(BaseModel):
    """Configuration for the job repository and blob store."""

    backend: str = "sqlite"
    sqlite_path: str = "data/utility_bills.db"
    blob_dir: str = "data/blobs"


class TriggerConfig(BaseModel):
    """Configuration for kicking off asynchronous processing."""

    site_url: str | None = None
    secret: str = ""
    local_delay_seconds: float = 0.1
    stale_claim_seconds: float = 600.0


class ServerConfig(BaseModel):
    """Configuration for the HTTP server."""

    host: str = "0.0.0.0"
    port: int = 8000


class AppConfig(BaseModel):
    """Top-level application configuration."""

    preprocessing: PreprocessingConfig = Field(default_factory=PreprocessingConfig)
    ocr: OCRConfig = Field(default_factory=OCRConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    trigger: TriggerConfig = Field(default_factory=TriggerConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    log_level: str = "INFO"


def parse_endpoints(
    combined: str, template: str = "", general: str = ""
) -> tuple[str, str]:
    """Resolve template and general OCR endpoints from a combined value.

    The combined value is either a JSON object with ``template`` and
    ``general`` keys, or a comma-separated list where a single item is the
    general endpoint and two items are ``template,general``.

    Args:
        combined: Combined endpoint value, possibly empty.
        template: Directly configured template endpoint.
        general: Directly configured general endpoint.

    Returns:
        Tuple of (template_endpoint, general_endpoint).
    """
    if not combined:
        return template, general

    try:
        parsed = json.loads(combined)
    except json.JSONDecodeError:
        parsed = None

    if isinstance(parsed, dict):
        return (
            parsed.get("template") or template,
            parsed.get("general") or general,
        )

    parts = [item.strip() for item in combined.split(",") if item.strip()]
    if len(parts) == 1:
        return template, parts[0]
    if len(parts) >= 2:
        return parts[0], parts[1]
    return template, general


def split_list(raw: str) -> list[str]:
    """Split a comma-separated setting into trimmed, non-empty items."""
    return [item.strip() for item in raw.split(",") if item.strip()]


def apply_env_overrides(config: AppConfig, env: dict[str, str] | None = None) -> AppConfig:
    """Override endpoints and secrets from environment variables.

    Args:
        config: Configuration loaded from YAML or defaults.
        env: Environment mapping. Defaults to ``os.environ``.

    Returns:
        The same configuration object, updated in place.
    """
    env = dict(os.environ) if env is None else env

    ocr = config.ocr
    ocr.template_endpoint = env.get("OCR_ENDPOINT_TEMPLATE", ocr.template_endpoint)
    ocr.general_endpoint = env.get("OCR_ENDPOINT_GENERAL", ocr.general_endpoint)
    ocr.template_endpoint, ocr.general_endpoint = parse_endpoints(
        env.get("OCR_ENDPOINTS", ""), ocr.template_endpoint, ocr.general_endpoint
    )
    if env.get("OCR_TEMPLATE_IDS"):
        ocr.template_ids = split_list(env["OCR_TEMPLATE_IDS"])
    ocr.secret = env.get("OCR_SECRET", ocr.secret)

    extraction = config.extraction
    extraction.api_key = env.get("LLM_API_KEY", extraction.api_key)
    extraction.model = env.get("LLM_MODEL", extraction.model)
    extraction.site_url = env.get("LLM_SITE_URL", extraction.site_url)
    extraction.app_name = env.get("LLM_APP_NAME", extraction.app_name)

    config.trigger.site_url = env.get("SITE_URL", config.trigger.site_url)
    config.trigger.secret = env.get("TRIGGER_SECRET", config.trigger.secret)
    if env.get("PORT"):
        config.server.port = int(env["PORT"])
    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file and the environment.

    Args:
        path: Path to the YAML configuration file.
            Defaults to configs/config.yaml.

    Returns:
        Validated application configuration.
    """
    if path is None:
        path = Path("configs/config.yaml")

    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        config = AppConfig(**raw)
    else:
        logger.info("No config file found at %s, using defaults", path)
        config = AppConfig()

    return apply_env_overrides(config)
