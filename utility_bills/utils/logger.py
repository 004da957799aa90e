"""Logging for the bill pipeline and its API server.

:func:`setup_logging` installs one stdout handler on the root logger. The
handler masks ``secret=`` query values, which appear in access lines for
the processing trigger, and HTTP client loggers are held at WARNING so
that stage transitions stay readable.
"""

import logging
import re
import sys

_NOISY_LOGGERS = ("httpx", "httpcore")
_SECRET_QUERY = re.compile(r"(secret=)[^&\s\"']+")


class SecretMaskFilter(logging.Filter):
    """Replace ``secret=<value>`` in formatted messages with ``secret=***``."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if "secret=" in message:
            record.msg = _SECRET_QUERY.sub(r"\1***", message)
            record.args = None
        return True


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once per process.

    Args:
        level: Logging level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()

    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    handler.addFilter(SecretMaskFilter())
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
