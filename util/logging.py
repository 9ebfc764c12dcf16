"""
Structured logging for index construction, queries and storage operations.
"""

import logging
import os
from typing import Any, Dict, Optional


class StructuredLogger:
    """Structured logger for recommender build/query/storage operations."""

    def __init__(self, name: str = "nnrec", level: Optional[str] = None):
        self.logger = logging.getLogger(name)
        level_name = (level or os.getenv("NNREC_LOG_LEVEL", "INFO")).upper()
        self.logger.setLevel(getattr(logging, level_name, logging.INFO))

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None,
                      level: int = logging.INFO):
        """Log a structured operation."""
        if not self.logger.isEnabledFor(level):
            return
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_build(self, backend: str, status: str, details: Dict[str, Any] = None):
        """Log a backend construction step."""
        level = logging.ERROR if status == "failed" else logging.INFO
        self.log_operation(f"build.{backend}", status, details, level)

    def log_query(self, backend: str, subject_id: Any, n_requested: int,
                  n_returned: int = 0, status: str = "success"):
        """Log a recommendation query."""
        details = {
            "subject_id": subject_id,
            "n_requested": n_requested,
            "n_returned": n_returned
        }
        self.log_operation(f"recommend.{backend}", status, details, logging.DEBUG)

    def log_storage_operation(self, operation: str, path: str, status: str = "success",
                              details: Dict[str, Any] = None):
        """Log a storage environment operation."""
        log_details = {"path": path}
        if details:
            log_details.update(details)

        level = logging.ERROR if status == "failed" else logging.DEBUG
        self.log_operation(f"storage.{operation}", status, log_details, level)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)

# Global logger instance
logger = StructuredLogger()
