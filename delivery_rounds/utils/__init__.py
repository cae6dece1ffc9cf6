"""Utility modules."""

from delivery_rounds.utils.clock import Clock, utc_now
from delivery_rounds.utils.logging import RoundLogger, get_logger, setup_logging
from delivery_rounds.utils.tracing import OperationTracer

__all__ = ["setup_logging", "get_logger", "RoundLogger", "OperationTracer", "Clock", "utc_now"]
