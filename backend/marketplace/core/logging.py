"""Logging configuration for the application"""
import logging

from marketplace.core.config import settings

# Shared loggers the pipeline writes its audit trail to
PIPELINE_LOGGERS = ("payments", "security", "api_access", "notification_sweeper")
NOISY_LOGGERS = ("stripe", "urllib3", "httpx", "httpcore")


def setup_logging():
    """Configure logging for the application"""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    # Payment and security events stay visible even when LOG_LEVEL is raised
    for name in PIPELINE_LOGGERS:
        logging.getLogger(name).setLevel(min(level, logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
