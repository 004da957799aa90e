"""Tests for the server entry point."""

import logging
from unittest.mock import MagicMock, patch

import pytest

from utility_bills import main as entry
from utility_bills.pipeline.factory import build_services
from utility_bills.preprocessing.detector import VisionRuntime
from utility_bills.utils.config import AppConfig, ServerConfig, StorageConfig


def _services(config: AppConfig):
    return build_services(config, runtime=VisionRuntime.degraded("opencv missing"))


class TestLogStartup:
    """Tests for the startup summary."""

    def test_reports_missing_settings(self, caplog: pytest.LogCaptureFixture) -> None:
        services = _services(AppConfig(storage=StorageConfig(backend="memory")))
        with caplog.at_level(logging.INFO, logger="utility_bills.main"):
            entry.log_startup(services)

        text = caplog.text
        assert "Storage backend: memory" in text
        assert "Document detection disabled: opencv missing" in text
        assert "General OCR endpoint not set" in text
        assert "LLM API key not set" in text
        assert "TRIGGER_SECRET not set" in text


class TestMain:
    """Tests for main()."""

    def test_runs_uvicorn_with_server_config(self) -> None:
        config = AppConfig(
            storage=StorageConfig(backend="memory"),
            server=ServerConfig(host="127.0.0.1", port=9001),
        )
        services = _services(config)
        with (
            patch.object(entry, "load_config", return_value=config),
            patch.object(entry, "setup_logging") as setup,
            patch.object(entry, "_get_services", return_value=services),
            patch.object(entry.uvicorn, "run") as run,
        ):
            entry.main()

        setup.assert_called_once_with("INFO")
        run.assert_called_once_with(
            entry.app, host="127.0.0.1", port=9001, log_config=None
        )

    def test_run_is_last(self) -> None:
        calls = MagicMock()
        config = AppConfig(storage=StorageConfig(backend="memory"))
        with (
            patch.object(entry, "load_config", return_value=config),
            patch.object(entry, "setup_logging"),
            patch.object(entry, "_get_services", return_value=_services(config)),
            patch.object(entry, "log_startup", calls.log_startup),
            patch.object(entry.uvicorn, "run", calls.run),
        ):
            entry.main()

        assert [name for name, _, _ in calls.mock_calls] == ["log_startup", "run"]
