from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pathlib import Path

_LOGGING_CONFIGURED = False


def _redirect_to_file(filename: str | Path) -> None:
    """Replace the root handlers with a single UTF-8 file handler."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    file_handler = logging.FileHandler(str(filename), encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(file_handler)


def setup_logging(filename: str | Path | None = None) -> structlog.BoundLogger:
    """Set up structured logging for the repo_weaver package.

    Structlog is configured once per process. A log file requested after the
    first call (typically from the CLI) replaces the stderr handler.

    Args:
        filename: Optional path to a log file. If None, logs are written to stderr.

    Returns:
        A structlog logger instance configured for the repo_weaver package.
    """
    global _LOGGING_CONFIGURED  # noqa: PLW0603
    if filename:
        _redirect_to_file(filename)
    if not _LOGGING_CONFIGURED:
        if not filename:
            logging.basicConfig(
                level=logging.INFO,
                handlers=[logging.StreamHandler(sys.stderr)],
                format="%(message)s",
            )
        logging.getLogger().setLevel(logging.INFO)
        structlog.configure(
            processors=[
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_CONFIGURED = True

    return structlog.get_logger("repo_weaver")


logger = setup_logging()
