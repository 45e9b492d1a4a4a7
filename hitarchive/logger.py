"""
Structured logging system for hitarchive.

Provides centralized logging with console and file outputs, metrics tracking
for monitoring multi-hour runs, and the two append-only run artifacts: the
human-readable progress log and the JSON-lines failure log.
"""

import copy
import logging
import sys
import threading
from pathlib import Path
from typing import Any, Dict, Optional
from datetime import datetime, timezone
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for remote calls and per-stage results.
    """

    def __init__(
        self,
        name: str = "hitarchive",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()  # Remove existing handlers

        self.metrics = {
            "api_calls": 0,
            "retries": 0,
            "rate_limited": 0,
            "give_ups": 0,
            "stages": {},
        }
        # stage workers update counters from several threads
        self._metrics_lock = threading.Lock()

        # Console handler
        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        # File handler
        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"hitarchive_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        """Internal logging method with context."""
        if context:
            # default=str keeps datetimes and exceptions from breaking a log call
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_api_call(self):
        """Increment remote call counter."""
        with self._metrics_lock:
            self.metrics["api_calls"] += 1

    def record_retry(self, kind: str):
        """Record a retry; rate-limit waits are counted separately."""
        with self._metrics_lock:
            self.metrics["retries"] += 1
            if kind == "rate_limited":
                self.metrics["rate_limited"] += 1

    def record_give_up(self):
        """Record an operation that exhausted its retries or failed fatally."""
        with self._metrics_lock:
            self.metrics["give_ups"] += 1

    def record_stage_result(self, stage: str, processed: int, failed: int):
        """Accumulate processed/failed counts for a stage."""
        with self._metrics_lock:
            stats = self.metrics["stages"].setdefault(stage, {"processed": 0, "failed": 0})
            stats["processed"] += processed
            stats["failed"] += failed

    def get_metrics(self) -> dict:
        """Return current metrics."""
        with self._metrics_lock:
            metrics_copy = copy.deepcopy(self.metrics)
        for stage, stats in metrics_copy["stages"].items():
            total = stats["processed"] + stats["failed"]
            if total > 0:
                stats["success_rate"] = round(stats["processed"] / total, 3)

        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        self.info("=== Pipeline Run Metrics ===")
        self.info(f"Remote calls: {metrics['api_calls']}")
        self.info(
            f"Retries: {metrics['retries']} (rate limited: {metrics['rate_limited']}), "
            f"give-ups: {metrics['give_ups']}"
        )

        if metrics["stages"]:
            self.info("Stage results:")
            for stage, stats in metrics["stages"].items():
                rate = stats.get("success_rate", 0) * 100
                self.info(f"  {stage}: {stats['processed']} ok, {stats['failed']} failed ({rate:.1f}%)")


class ProgressLog:
    """Append-only human-readable progress file, echoed to the logger."""

    def __init__(self, path: Path, logger: Optional[StructuredLogger] = None):
        self.path = Path(path)
        self._logger = logger or get_logger()

    def write(self, message: str) -> None:
        self._logger.info(message)
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(f"[{timestamp}] {message}\n")
        except OSError as e:
            self._logger.warning("Could not write progress log", path=str(self.path), error=str(e))


class FailureLog:
    """
    Append-only JSON-lines log of failed attempts.

    Diagnostic only: the pipeline never reads it back.
    """

    RESPONSE_LIMIT = 500

    def __init__(self, path: Path, logger: Optional[StructuredLogger] = None):
        self.path = Path(path)
        self._logger = logger or get_logger()

    def append(self, identifier: Dict[str, Any], error: str, response: Optional[str] = None) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **identifier,
            "error": error,
            "response": response[: self.RESPONSE_LIMIT] if response else None,
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            self._logger.warning("Could not write failure log", path=str(self.path), error=str(e))


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "hitarchive",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
