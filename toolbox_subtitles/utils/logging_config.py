"""Centralized logging configuration for the subtitle pipeline.

This module provides consistent logging setup for the CLI and for services
embedding the pipeline. Configuration respects environment variables and
provides sensible defaults for production and development.
"""

from __future__ import annotations

import logging
import os
import sys
import warnings
from typing import Literal

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

_PIPELINE_LOGGERS = (
    "toolbox_subtitles.pipeline",
    "toolbox_subtitles.jobs",
)


def _apply_pipeline_verbosity(*, pipeline_level: str) -> None:
    """Set the level used by the orchestration loggers.

    Args:
        pipeline_level: Level name applied to the pipeline and job loggers.
    """
    os.environ["PIPELINE_LOG_LEVEL"] = pipeline_level
    level = getattr(logging, pipeline_level, logging.INFO)
    for name in _PIPELINE_LOGGERS:
        logging.getLogger(name).setLevel(level)


def configure_logging(
    *,
    level: LogLevel | None = None,
    verbose: bool = False,
    quiet: bool = False,
    format_string: str | None = None,
) -> None:
    """Configure centralized logging for the application.

    This should be called once at application startup (CLI entry or the
    embedding service's bootstrap).

    Args:
        level: Explicit log level (overrides verbose/quiet).
        verbose: Enable verbose logging (DEBUG level, including progress events).
        quiet: Suppress all non-critical logs.
        format_string: Custom log format (uses default if None).

    Examples:
        >>> # CLI verbose mode
        >>> configure_logging(verbose=True)

        >>> # Production quiet mode
        >>> configure_logging(quiet=True)
    """
    # Determine effective log level
    if level is not None:
        log_level = getattr(logging, level.upper())
    elif verbose:
        log_level = logging.DEBUG
    elif quiet:
        log_level = logging.CRITICAL
    else:
        log_level = logging.INFO

    # Default format with timestamp
    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=format_string,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True,  # Reconfigure even if already configured
    )

    if verbose:
        _apply_pipeline_verbosity(pipeline_level="DEBUG")
    elif quiet:
        warnings.filterwarnings("ignore")
        _apply_pipeline_verbosity(pipeline_level="ERROR")
    else:
        # Default: honor env override; otherwise follow the root level.
        _apply_pipeline_verbosity(
            pipeline_level=os.getenv(
                "PIPELINE_LOG_LEVEL", logging.getLevelName(log_level)
            ).upper(),
        )

    if not quiet:
        logger = logging.getLogger(__name__)
        logger.debug(f"Logging configured: level={logging.getLevelName(log_level)}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__ of calling module).

    Returns:
        Configured logger instance.
    """
    return logging.getLogger(name)
