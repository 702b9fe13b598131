"""structlog setup for the command-line tool."""

import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog
from structlog.typing import Processor


def configure_logging(
    level: str = "INFO",
    file: Optional[Path] = None,
    verbose: bool = False,
    quiet: bool = False,
) -> None:
    """Configure structlog for a run.

    Args:
        level: Level name from configuration
        file: If given, write JSON lines there instead of the console
        verbose: Force DEBUG level
        quiet: Only show errors
    """
    if verbose:
        level = "DEBUG"
    elif quiet:
        level = "ERROR"
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if file is not None:
        file.parent.mkdir(parents=True, exist_ok=True)
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        logger_factory = structlog.WriteLoggerFactory(file=file.open("a"))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
        logger_factory = structlog.PrintLoggerFactory(file=sys.stderr)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=logger_factory,
        cache_logger_on_first_use=False,
    )
