"""Logging setup for the service."""

import logging

from src.core.config import Settings

# Noisy third-party loggers kept at WARNING
_QUIET_LOGGERS = ("httpx", "httpcore", "urllib3", "chromadb", "sentence_transformers")


def configure_logging(settings: Settings) -> None:
    """Configure root logging from settings.

    Called once at application start-up. Module loggers are created with
    ``logging.getLogger(__name__)`` and inherit this configuration.
    """
    logging.basicConfig(level=settings.log_level, format=settings.log_format, force=True)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        f"[Logging] Configured level={settings.log_level} environment={settings.environment}"
    )
