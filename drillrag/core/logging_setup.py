"""Process-wide logging configuration."""

from __future__ import annotations

import logging

from drillrag.core.config import Settings, settings as default_settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Chatty third-party loggers that drown out pipeline lines at DEBUG
_NOISY_LOGGERS = ("botocore", "aioboto3", "urllib3", "httpx", "openai")


def configure_logging(settings: Settings | None = None) -> None:
    """
    Configure the root logger once at process start.

    Level is DEBUG when settings.debug is set, otherwise settings.log_level.
    """
    cfg   = settings or default_settings
    level = logging.DEBUG if cfg.debug else getattr(logging, cfg.log_level.upper(), logging.INFO)

    logging.basicConfig(level=level, format=LOG_FORMAT)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
