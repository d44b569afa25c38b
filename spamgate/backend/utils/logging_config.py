"""Logging Configuration for spamgate

Centralized structlog setup with JSON output. Every pipeline run logs its
decision and any degraded signal source through the loggers configured here,
so a moderator can reconstruct why a comment was held or flagged.

Usage:
    >>> from spamgate.backend.utils.logging_config import setup_logging, get_logger
    >>> setup_logging()
    >>> logger = get_logger(__name__)
    >>> logger.info("moderation_decision", decision="hold", target_id="post-1")
    >>> logger.error("akismet_request_failed", exc_info=True, error_type="Timeout")
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

import structlog


DEFAULT_LOG_DIR = "logs"
DEFAULT_LOG_FILENAME = "backend.log"


def _resolve_level(level: Optional[str]) -> int:
    """Map a level name (e.g. "info") to its stdlib value, defaulting to DEBUG."""
    if not level:
        return logging.DEBUG
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.DEBUG


def setup_logging(
    log_dir: Optional[str] = None,
    log_filename: str = DEFAULT_LOG_FILENAME,
    level: Optional[str] = None,
) -> None:
    """Configure structlog with JSON renderer, file output and console output.

    Args:
        log_dir: Directory for log files. Falls back to the LOG_DIR environment
            variable, then "logs". Created if missing.
        log_filename: Name of the log file (default: "backend.log")
        level: Minimum level for the file handler. Falls back to LOG_LEVEL,
            then DEBUG. The console handler never goes below INFO.

    Log entry format (JSON):
        {
            "event": "moderation_decision",
            "level": "info",
            "timestamp": "2026-02-10T12:34:56.789Z",
            "logger": "spamgate.pipeline",
            "decision": "hold",
            ...
        }
    """
    log_path = Path(log_dir or os.environ.get("LOG_DIR", DEFAULT_LOG_DIR))
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / log_filename

    file_level = _resolve_level(level or os.environ.get("LOG_LEVEL"))

    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Final JSON rendering happens in the stdlib formatter so that records
    # from third-party libraries (requests, uvicorn) come out as JSON too.
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=shared_processors,
    )

    file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(max(file_level, logging.INFO))
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(file_level)
    root_logger.handlers.clear()
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)


def get_logger(name: str = None):
    """Get a configured structlog logger instance.

    Args:
        name: Logger name (typically __name__). If None, returns root logger.

    Returns:
        Configured structlog logger (BoundLoggerLazyProxy)
    """
    return structlog.get_logger(name)
