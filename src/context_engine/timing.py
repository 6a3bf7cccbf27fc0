"""Timing utilities for structured logging.

Uses time.perf_counter() for sub-millisecond precision timing.
"""

import logging
import time
from contextlib import contextmanager
from typing import Optional


@contextmanager
def timed_operation(
    operation: str,
    logger: logging.Logger,
    level: int = logging.INFO,
    extra: Optional[dict] = None,
):
    """Context manager for timing operations with structured logging.

    Logs ``{operation}_completed`` with ``duration_ms`` on success and
    ``{operation}_failed`` with the error on failure, then re-raises.

    Args:
        operation: Operation name used as the log message prefix
        logger: Logger instance to use for logging
        level: Log level for success case (default: INFO)
        extra: Optional dict of extra context to include in log

    Yields:
        dict that the caller may update with context to log on exit.

    Example:
        >>> with timed_operation("retrieve_layer", logger, extra={"layer": "L2"}) as ctx:
        ...     ctx["results_count"] = 5
    """
    start = time.perf_counter()
    context = dict(extra or {})

    try:
        yield context

        duration_ms = (time.perf_counter() - start) * 1000
        logger.log(
            level,
            f"{operation}_completed",
            extra={
                **context,
                "duration_ms": round(duration_ms, 2),
                "status": "success",
            },
        )

    except Exception as e:
        duration_ms = (time.perf_counter() - start) * 1000
        logger.error(
            f"{operation}_failed",
            extra={
                **context,
                "duration_ms": round(duration_ms, 2),
                "status": "failed",
                "error": str(e),
                "error_type": type(e).__name__,
            },
        )
        raise
