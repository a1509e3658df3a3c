"""Structured logging configuration.

This module provides structured logging with JSON formatting for production
environments and human-readable formatting for development.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict


class StructuredFormatter(logging.Formatter):
    """Structured JSON formatter for logs.

    Formats log records as JSON for better parsing and analysis in
    production environments.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Parameters:
            record: Log record to format

        Returns:
            JSON string representation of log record
        """
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Context attached via logger.info(..., extra={...})
        if hasattr(record, "patient_id"):
            log_data["patient_id"] = record.patient_id
        if hasattr(record, "reconciliation_id"):
            log_data["reconciliation_id"] = record.reconciliation_id

        return json.dumps(log_data)


def setup_logging(use_json: bool = False, log_level: str = "INFO") -> None:
    """Setup application logging.

    Parameters:
        use_json: Use JSON formatting (for production)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)

    if use_json:
        formatter = StructuredFormatter()
    else:
        # Human-readable format for development
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    logging.getLogger("duckdb").setLevel(logging.WARNING)
