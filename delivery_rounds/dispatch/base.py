"""Base service class with common functionality for dispatch services."""

import time
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

from delivery_rounds.config import Settings, get_settings
from delivery_rounds.errors import RoundError
from delivery_rounds.utils.clock import Clock, utc_now
from delivery_rounds.utils.logging import RoundLogger
from delivery_rounds.utils.tracing import OperationTracer

ResultT = TypeVar("ResultT")


class BaseService:
    """Shared settings, clock, logging and tracing for dispatch services."""

    def __init__(
        self,
        service_id: str,
        settings: Settings | None = None,
        clock: Clock | None = None,
        tracer: OperationTracer | None = None,
    ):
        self.service_id = service_id
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self.logger = RoundLogger(service_id)
        self.tracer = tracer

    def now(self) -> datetime:
        return self.clock()

    async def run_operation(
        self,
        operation: str,
        func: Callable[..., Awaitable[ResultT]],
        **params: Any,
    ) -> ResultT:
        """
        Run one lifecycle operation with timing, logging and tracing.

        Args:
            operation: Operation name used in logs and traces
            func: Coroutine function implementing the operation
            **params: Keyword arguments passed to ``func``

        Returns:
            Whatever ``func`` returns. Errors are logged and re-raised.
        """
        start_time = time.time()
        context = {key: str(value) for key, value in params.items()}

        try:
            result = await func(**params)

        except RoundError as e:
            execution_time_ms = (time.time() - start_time) * 1000
            self.logger.log_operation(
                operation,
                duration_ms=execution_time_ms,
                success=False,
                error=e.code,
                detail=e.message,
                **context,
            )
            self._trace(operation, False, execution_time_ms, error=e.code, **context)
            raise

        except Exception as e:
            execution_time_ms = (time.time() - start_time) * 1000
            self.logger.log_error(error=str(e), operation=operation, **context)
            self._trace(operation, False, execution_time_ms, error="unexpected", **context)
            raise

        execution_time_ms = (time.time() - start_time) * 1000
        self.logger.log_operation(
            operation,
            duration_ms=execution_time_ms,
            success=True,
            **context,
        )
        self._trace(operation, True, execution_time_ms, **context)
        return result

    def _trace(
        self,
        operation: str,
        success: bool,
        duration_ms: float,
        **metadata: Any,
    ) -> None:
        if self.tracer:
            self.tracer.add_event(
                operation,
                self.service_id,
                success=success,
                duration_ms=duration_ms,
                **metadata,
            )
