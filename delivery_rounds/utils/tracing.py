"""Operation tracing for round lifecycle calls."""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from delivery_rounds.utils.clock import utc_now
from delivery_rounds.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class TraceEvent:
    """Individual trace event recorded for an operation."""

    timestamp: datetime
    operation: str
    service_id: str
    success: bool
    duration_ms: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class OperationTracer:
    """Traces lifecycle operations issued on behalf of one caller."""

    def __init__(self, actor: str):
        self.actor = actor
        self.events: list[TraceEvent] = []
        self.start_time = time.time()

    def add_event(
        self,
        operation: str,
        service_id: str,
        success: bool = True,
        duration_ms: float | None = None,
        **metadata: Any,
    ) -> None:
        """Add a trace event."""
        event = TraceEvent(
            timestamp=utc_now(),
            operation=operation,
            service_id=service_id,
            success=success,
            duration_ms=duration_ms,
            metadata=metadata,
        )
        self.events.append(event)

        logger.debug(
            "trace_event",
            actor=self.actor,
            operation=operation,
            service_id=service_id,
            success=success,
            duration_ms=duration_ms,
            **metadata,
        )

    def get_trace_summary(self) -> dict[str, Any]:
        """Get a summary of the trace."""
        total_duration = (time.time() - self.start_time) * 1000

        operation_stats: dict[str, dict[str, Any]] = {}
        for event in self.events:
            if event.operation not in operation_stats:
                operation_stats[event.operation] = {
                    "count": 0,
                    "failures": 0,
                    "total_duration_ms": 0.0,
                }

            stats = operation_stats[event.operation]
            stats["count"] += 1
            if not event.success:
                stats["failures"] += 1
            if event.duration_ms:
                stats["total_duration_ms"] += event.duration_ms

        return {
            "actor": self.actor,
            "total_duration_ms": total_duration,
            "total_events": len(self.events),
            "operation_stats": operation_stats,
            "events": [
                {
                    "timestamp": event.timestamp.isoformat(),
                    "operation": event.operation,
                    "service_id": event.service_id,
                    "success": event.success,
                    "duration_ms": event.duration_ms,
                    "metadata": event.metadata,
                }
                for event in self.events
            ],
        }
