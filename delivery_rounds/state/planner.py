"""Round planner boundary.

The planner proposes suggested rounds and owns their status. Dispatch only
reads suggestions, claims them through ``accept`` and hands them back through
``revert_to_pending``.
"""

from abc import ABC, abstractmethod
from typing import Any
from uuid import UUID

from redis.asyncio.client import Pipeline

from delivery_rounds.errors import ConflictError, NotFoundError, PreconditionFailedError
from delivery_rounds.models.order import Order
from delivery_rounds.models.suggestion import (
    SuggestedRound,
    SuggestedRoundPayload,
    SuggestionStatus,
)
from delivery_rounds.state import keys
from delivery_rounds.state.manager import StateManager, read_model
from delivery_rounds.utils.clock import Clock, utc_now
from delivery_rounds.utils.logging import get_logger

logger = get_logger(__name__)


class RoundPlanner(ABC):
    """Operations dispatch consumes from the round planner."""

    @abstractmethod
    async def get(self, suggestion_id: UUID) -> SuggestedRound | None:
        """Retrieve a suggestion by ID."""

    @abstractmethod
    async def list_open(self) -> list[SuggestedRound]:
        """Suggestions in ``pending`` or ``accepted`` status."""

    @abstractmethod
    async def accept(self, suggestion_id: UUID, driver_id: UUID) -> bool:
        """Claim a suggestion for a driver; False when another claim won."""

    @abstractmethod
    async def revert_to_pending(self, suggestion_id: UUID) -> bool:
        """Reopen a claimed suggestion; False when it has expired."""

    @abstractmethod
    async def prepare_revert(
        self, pipe: Pipeline, suggestion_id: UUID
    ) -> SuggestedRound | None:
        """Stage a revert inside a caller's transaction.

        Watches and reads the suggestion through ``pipe`` and returns the
        reverted document, or None when it is missing or expired. The caller
        queues it with ``write`` after ``pipe.multi()``.
        """

    @abstractmethod
    def write(self, pipe: Pipeline, suggestion: SuggestedRound) -> None:
        """Queue a suggestion write on a pipeline in MULTI mode."""


class RedisRoundPlanner(RoundPlanner):
    """Planner state kept in the shared Redis store."""

    def __init__(self, state_manager: StateManager, clock: Clock | None = None):
        self.state = state_manager
        self.clock = clock or utc_now

    async def get(self, suggestion_id: UUID) -> SuggestedRound | None:
        return await self.state.get_model(keys.suggestion_key(suggestion_id), SuggestedRound)

    async def list_open(self) -> list[SuggestedRound]:
        suggestion_ids = await self.state.members(keys.SUGGESTED_ROUNDS)
        suggestions = await self.state.get_models(
            [keys.suggestion_key(suggestion_id) for suggestion_id in suggestion_ids],
            SuggestedRound,
        )
        open_statuses = (SuggestionStatus.PENDING, SuggestionStatus.ACCEPTED)
        return sorted(
            (s for s in suggestions if s.status in open_statuses),
            key=lambda s: s.prep_at,
        )

    async def publish(
        self, payload: dict[str, Any] | SuggestedRoundPayload
    ) -> SuggestedRound:
        """Store a planner proposal and link its unclaimed orders to it.

        The payload is validated here, once; orders already linked elsewhere
        keep their link and orders that no longer exist are skipped. A
        suggestion a driver has claimed cannot be republished.
        """
        if not isinstance(payload, SuggestedRoundPayload):
            payload = SuggestedRoundPayload.model_validate(payload)
        suggestion = SuggestedRound.model_validate(payload.model_dump())

        suggestion_key = keys.suggestion_key(suggestion.id)
        order_keys = [keys.order_key(order_id) for order_id in suggestion.order_ids]

        async with self.state.transaction(suggestion_key, *order_keys) as pipe:
            stored = await read_model(pipe, suggestion_key, SuggestedRound)
            if stored is not None and stored.is_claimed:
                raise ConflictError(
                    "Suggested round is already claimed",
                    suggestion_id=suggestion.id,
                    driver_id=stored.driver_id,
                )

            linked: list[Order] = []
            for order_key in order_keys:
                order = await read_model(pipe, order_key, Order)
                if order is None or order.is_claimed:
                    continue
                if order.suggested_round_id in (None, suggestion.id):
                    order.suggested_round_id = suggestion.id
                    linked.append(order)

            pipe.multi()
            self.write(pipe, suggestion)
            pipe.sadd(keys.SUGGESTED_ROUNDS, str(suggestion.id))
            for order in linked:
                pipe.set(keys.order_key(order.id), order.model_dump_json())
            await pipe.execute()

        logger.info(
            "suggestion_published",
            suggestion_id=str(suggestion.id),
            status=suggestion.status.value,
            orders=len(suggestion.orders),
            linked=len(linked),
        )
        return suggestion

    async def validate(self, suggestion_id: UUID) -> SuggestedRound:
        """Kitchen validation: ``pending -> accepted``."""
        key = keys.suggestion_key(suggestion_id)
        async with self.state.transaction(key) as pipe:
            suggestion = await read_model(pipe, key, SuggestedRound)
            if suggestion is None:
                raise NotFoundError("Suggested round not found", suggestion_id=suggestion_id)
            if suggestion.is_expired(self.clock()):
                raise PreconditionFailedError(
                    "Suggested round has expired", suggestion_id=suggestion_id
                )

            suggestion.status = SuggestionStatus.ACCEPTED

            pipe.multi()
            self.write(pipe, suggestion)
            await pipe.execute()

        logger.info("suggestion_validated", suggestion_id=str(suggestion_id))
        return suggestion

    async def expire(self, suggestion_id: UUID) -> SuggestedRound:
        """Mark a suggestion expired and release the orders still linked to it."""
        key = keys.suggestion_key(suggestion_id)
        async with self.state.transaction(key) as pipe:
            suggestion = await read_model(pipe, key, SuggestedRound)
            if suggestion is None:
                raise NotFoundError("Suggested round not found", suggestion_id=suggestion_id)

            order_keys = [keys.order_key(order_id) for order_id in suggestion.order_ids]
            await pipe.watch(*order_keys)

            unlinked: list[Order] = []
            for order_key in order_keys:
                order = await read_model(pipe, order_key, Order)
                if order is not None and order.suggested_round_id == suggestion.id:
                    order.suggested_round_id = None
                    unlinked.append(order)

            suggestion.status = SuggestionStatus.EXPIRED

            pipe.multi()
            self.write(pipe, suggestion)
            for order in unlinked:
                pipe.set(keys.order_key(order.id), order.model_dump_json())
            await pipe.execute()

        logger.info(
            "suggestion_expired",
            suggestion_id=str(suggestion_id),
            unlinked=len(unlinked),
        )
        return suggestion

    async def accept(self, suggestion_id: UUID, driver_id: UUID) -> bool:
        key = keys.suggestion_key(suggestion_id)
        try:
            async with self.state.transaction(key) as pipe:
                suggestion = await read_model(pipe, key, SuggestedRound)
                if suggestion is None:
                    raise NotFoundError("Suggested round not found", suggestion_id=suggestion_id)

                if (
                    suggestion.status != SuggestionStatus.ACCEPTED
                    or suggestion.is_expired(self.clock())
                    or suggestion.is_claimed
                ):
                    logger.info(
                        "suggestion_accept_refused",
                        suggestion_id=str(suggestion_id),
                        driver_id=str(driver_id),
                        claimed_by=str(suggestion.driver_id) if suggestion.driver_id else None,
                    )
                    return False

                suggestion.driver_id = driver_id
                suggestion.accepted_at = self.clock()

                pipe.multi()
                self.write(pipe, suggestion)
                await pipe.execute()
        except ConflictError:
            logger.info(
                "suggestion_accept_raced",
                suggestion_id=str(suggestion_id),
                driver_id=str(driver_id),
            )
            return False

        logger.info(
            "suggestion_accepted",
            suggestion_id=str(suggestion_id),
            driver_id=str(driver_id),
        )
        return True

    async def revert_to_pending(self, suggestion_id: UUID) -> bool:
        async with self.state.transaction() as pipe:
            suggestion = await self.prepare_revert(pipe, suggestion_id)
            if suggestion is None:
                return False

            pipe.multi()
            self.write(pipe, suggestion)
            await pipe.execute()

        logger.info("suggestion_reverted", suggestion_id=str(suggestion_id))
        return True

    async def prepare_revert(
        self, pipe: Pipeline, suggestion_id: UUID
    ) -> SuggestedRound | None:
        key = keys.suggestion_key(suggestion_id)
        await pipe.watch(key)

        suggestion = await read_model(pipe, key, SuggestedRound)
        if suggestion is None or suggestion.is_expired(self.clock()):
            return None

        suggestion.status = SuggestionStatus.PENDING
        suggestion.driver_id = None
        suggestion.accepted_at = None
        return suggestion

    def write(self, pipe: Pipeline, suggestion: SuggestedRound) -> None:
        pipe.set(keys.suggestion_key(suggestion.id), suggestion.model_dump_json())
