"""Run the utility bill API under uvicorn.

The shared pipeline components are built before the server starts, so the
document detector is loaded and storage is opened once at startup. Missing
OCR, language-model or trigger settings are reported in the startup log
instead of surfacing on the first upload.
"""

import uvicorn

from utility_bills.api.app import _get_services, app
from utility_bills.pipeline.factory import Services
from utility_bills.utils.config import load_config
from utility_bills.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def log_startup(services: Services) -> None:
    """Summarize which pipeline features are available."""
    config = services.config
    logger.info("Storage backend: %s", config.storage.backend)
    if not services.runtime.ready:
        logger.warning("Document detection disabled: %s", services.runtime.load_error)
    if not config.ocr.template_endpoint:
        logger.info("Template OCR endpoint not set, using general OCR only")
    if not config.ocr.general_endpoint:
        logger.warning("General OCR endpoint not set; bills will fail at GENERAL_OCR")
    if not config.extraction.api_key:
        logger.warning("LLM API key not set; bills will fail at GEMINI")
    if not config.trigger.secret:
        logger.warning("TRIGGER_SECRET not set; the processing endpoint is open")


def main() -> None:
    """Start the API server."""
    config = load_config()
    setup_logging(config.log_level)
    log_startup(_get_services())
    # Keep the root handler so uvicorn's access lines pass the secret mask.
    uvicorn.run(app, host=config.server.host, port=config.server.port, log_config=None)


if __name__ == "__main__":
    main()
