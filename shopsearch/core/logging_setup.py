"""Logging configuration for shopsearch.

Provides:
- Standard application logging with optional rotation
- Structured JSON logging for machine parsing
- Performance logging against the latency budgets of the search pipeline

Entry points should call ``configure_logging`` once at startup; library code
only ever asks ``logging.getLogger`` for a logger.
"""

import json
import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

# Latency budgets in milliseconds.
PERFORMANCE_BUDGETS: Dict[str, float] = {
    "TOTAL_RESPONSE": 1000,  # end-to-end response
    "TOOL_CALL": 700,  # a single multi-source search call
    "PARALLEL_TOOLS": 800,  # parallel source fan-out
    "RESULT_ENRICHMENT": 300,  # enrichment of the merged set
    "DATA_PROCESSING": 250,  # merging and ranking
}

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Third-party loggers that log every request at INFO.
NOISY_LOGGERS = ("httpx", "httpcore")


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Fields passed as ``extra={"extra_fields": {...}}`` are merged into the
    top level, so a performance record carries ``operation`` and
    ``duration_ms`` next to the message.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}",
            "line": record.lineno,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        log_data.update(getattr(record, "extra_fields", None) or {})
        return json.dumps(log_data, default=str)


@contextmanager
def log_performance(
    operation: str,
    budget_ms: Optional[float] = None,
    logger: Optional[logging.Logger] = None,
) -> Iterator[Dict[str, float]]:
    """Context manager for logging operation performance.

    Args:
        operation: Name of the operation
        budget_ms: Latency budget; exceeding it is logged as a warning
        logger: Logger to use (default: ``shopsearch.performance``)

    Yields:
        A dict that receives ``duration_ms`` once the block exits.

    Example:
        with log_performance("merge", PERFORMANCE_BUDGETS["DATA_PROCESSING"]):
            products = merge_results(results)
    """
    if logger is None:
        logger = logging.getLogger("shopsearch.performance")

    measurement: Dict[str, float] = {}
    start_time = time.perf_counter()
    success = False
    try:
        yield measurement
        success = True
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        measurement["duration_ms"] = duration_ms
        extra = {
            "extra_fields": {
                "event_type": "performance",
                "operation": operation,
                "duration_ms": round(duration_ms, 2),
                "budget_ms": budget_ms,
                "success": success,
            }
        }
        if budget_ms is not None and duration_ms > budget_ms:
            logger.warning(
                "%s exceeded budget: %.2fms > %.0fms (success=%s)",
                operation,
                duration_ms,
                budget_ms,
                success,
                extra=extra,
            )
        else:
            logger.debug(
                "%s completed in %.2fms (success=%s)", operation, duration_ms, success, extra=extra
            )


def _build_handlers(
    log_file: Optional[Path], max_bytes: int, backup_count: int, console_output: bool
) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if console_output:
        handlers.append(logging.StreamHandler())
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
        )
    return handlers


def configure_logging(
    log_file: Optional[Path] = None,
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    use_json: bool = False,
    console_output: bool = True,
) -> None:
    """Install root handlers for the console and, optionally, a rotating file.

    Does nothing when the root logger already has handlers, so calling it
    twice never duplicates output.

    Parameters
    ----------
    log_file: Path, optional
        File to write as well; its directory is created if missing.
    level: int
        Level for the root logger and every installed handler.
    max_bytes, backup_count: int
        Rotation size and number of rotated files to keep.
    use_json: bool
        Emit one JSON object per line instead of plain text.
    console_output: bool
        Also log to stderr.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    formatter = JSONFormatter() if use_json else logging.Formatter(TEXT_FORMAT, "%Y-%m-%d %H:%M:%S")
    for handler in _build_handlers(log_file, max_bytes, backup_count, console_output):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)

    if level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
