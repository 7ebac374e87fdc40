"""
Logging configuration for the KRX backtesting engine.

Provides a consistent format across modules with:
- JSON structured output for log shipping
- Human-readable output for development
- Job ID tracking so lines from concurrent jobs can be told apart
"""

import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime

# Job ID of the work running on the current thread
current_job_id: ContextVar[str | None] = ContextVar("current_job_id", default=None)


class KRXFormatter(logging.Formatter):
    """
    Formatter that stamps an ISO timestamp and the active job ID.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.timestamp = datetime.now(UTC).isoformat()

        job_id = current_job_id.get()
        record.job_id = f"[{job_id}] " if job_id else ""

        return super().format(record)


def setup_logging(level: str = "INFO", json_output: bool = False) -> logging.Logger:
    """
    Configure logging for the engine.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output one JSON object per line

    Returns:
        Configured root logger
    """
    root = logging.getLogger()
    root.handlers.clear()

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(numeric_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)

    if json_output:
        fmt = (
            '{"timestamp": "%(timestamp)s", "level": "%(levelname)s", '
            '"module": "%(name)s", "job_id": "%(job_id)s", "message": "%(message)s"}'
        )
    else:
        fmt = "%(timestamp)s | %(levelname)-8s | %(name)s | %(job_id)s%(message)s"

    handler.setFormatter(KRXFormatter(fmt))
    root.addHandler(handler)

    # pandas/pyarrow chatter is not useful at INFO
    logging.getLogger("pyarrow").setLevel(logging.WARNING)

    return root


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a specific module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def set_job_id(job_id: str) -> None:
    """Set the current job ID for log correlation."""
    current_job_id.set(job_id)


def clear_job_id() -> None:
    """Clear the current job ID."""
    current_job_id.set(None)
