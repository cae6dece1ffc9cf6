"""Structured logging configuration."""

import logging
import sys
from typing import Any

import structlog
from pythonjsonlogger import jsonlogger

from delivery_rounds.config import get_settings


def setup_logging() -> None:
    """Configure structured logging for the application."""
    settings = get_settings()

    log_level = getattr(logging, settings.log_level)

    if settings.log_format == "json":
        handler = logging.StreamHandler(sys.stdout)
        formatter = jsonlogger.JsonFormatter(
            fmt="%(timestamp)s %(level)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
        )
        handler.setFormatter(formatter)
    else:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer() if settings.log_format == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class RoundLogger:
    """Logger for round lifecycle operations, bound to one service."""

    def __init__(self, service_id: str):
        self.service_id = service_id
        self.logger = get_logger(service_id)

    def log_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        **kwargs: Any,
    ) -> None:
        """Log the outcome of a lifecycle operation."""
        log_data = {
            "service_id": self.service_id,
            "operation": operation,
            "duration_ms": round(duration_ms, 3),
            "success": success,
        }
        log_data.update(kwargs)

        if success:
            self.logger.info("round_operation", **log_data)
        else:
            self.logger.warning("round_operation", **log_data)

    def log_compensation(
        self,
        action: str,
        suggestion_id: str,
        applied: bool,
        **kwargs: Any,
    ) -> None:
        """Log a compensating action taken across the planner boundary."""
        self.logger.warning(
            "round_compensation",
            service_id=self.service_id,
            action=action,
            suggestion_id=suggestion_id,
            applied=applied,
            **kwargs,
        )

    def log_error(
        self,
        error: str,
        operation: str,
        **kwargs: Any,
    ) -> None:
        """Log an unexpected error."""
        self.logger.error(
            "round_error",
            service_id=self.service_id,
            operation=operation,
            error=error,
            **kwargs,
        )
