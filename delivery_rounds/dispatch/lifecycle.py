"""Round lifecycle manager - claims, progress and releases of delivery rounds."""

from uuid import UUID

from redis.asyncio.client import Pipeline

from delivery_rounds.config import Settings
from delivery_rounds.dispatch.base import BaseService
from delivery_rounds.dispatch.validation import customer_window, ensure_capacity
from delivery_rounds.errors import (
    ConflictError,
    DriverNotAuthorizedError,
    NotFoundError,
    PreconditionFailedError,
)
from delivery_rounds.models.order import Order, OrderType
from delivery_rounds.models.round import (
    DeliveryRound,
    RoundRelease,
    RoundStatus,
    Stop,
    StopStatus,
)
from delivery_rounds.models.suggestion import (
    SuggestedRound,
    SuggestedRoundMember,
    SuggestionStatus,
)
from delivery_rounds.state import keys
from delivery_rounds.state.drivers import DriverDirectory
from delivery_rounds.state.manager import StateManager, read_model
from delivery_rounds.state.orders import OrderStore
from delivery_rounds.state.planner import RoundPlanner
from delivery_rounds.state.rounds import RoundStore
from delivery_rounds.state.workflow import RoundTransitions, StopTransitions
from delivery_rounds.utils.clock import Clock
from delivery_rounds.utils.tracing import OperationTracer


class RoundLifecycleManager(BaseService):
    """
    Owns delivery rounds and their stops.

    Responsibilities:
    - Claim a single order or a suggested round into a new round
    - Append orders to a round that has not departed
    - Start rounds and deliver stops strictly in sequence
    - Release stops or whole rounds, reopening the originating suggestion

    Every mutation is one optimistic Redis transaction: the keys read are
    watched, and a concurrent write to any of them turns the commit into a
    ConflictError. The linkage fields on orders act as the claim flags.
    """

    def __init__(
        self,
        state_manager: StateManager,
        orders: OrderStore,
        planner: RoundPlanner,
        rounds: RoundStore,
        drivers: DriverDirectory,
        settings: Settings | None = None,
        clock: Clock | None = None,
        tracer: OperationTracer | None = None,
    ):
        super().__init__("round_lifecycle", settings=settings, clock=clock, tracer=tracer)
        self.state = state_manager
        self.orders = orders
        self.planner = planner
        self.rounds = rounds
        self.drivers = drivers

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    async def get_round(self, round_id: UUID) -> DeliveryRound:
        """Get a round by ID."""
        delivery_round = await self.rounds.get(round_id)
        if delivery_round is None:
            raise NotFoundError("Delivery round not found", round_id=round_id)
        return delivery_round

    async def current_round(self, driver_id: UUID) -> DeliveryRound | None:
        """The driver's most recent ready or in-progress round."""
        await self.drivers.resolve(driver_id)
        return await self.rounds.current_for_driver(driver_id)

    async def list_active_rounds(self) -> list[DeliveryRound]:
        return await self.rounds.list_active()

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    async def claim_order(self, order_id: UUID, driver_id: UUID) -> DeliveryRound:
        """
        Claim one order into a fresh single-stop round.

        Args:
            order_id: Unassigned delivery order, ready in the kitchen
            driver_id: Acting driver, who must not hold a ready round already

        Returns:
            The new round, status ``ready``
        """
        return await self.run_operation(
            "claim_order", self._claim_order, order_id=order_id, driver_id=driver_id
        )

    async def _claim_order(self, order_id: UUID, driver_id: UUID) -> DeliveryRound:
        await self.drivers.resolve(driver_id)

        async with self.state.transaction() as pipe:
            order = await self._load_claimable_order(pipe, order_id)
            self._ensure_order_ready(order)
            await self._ensure_no_ready_round(pipe, driver_id)

            delivery_round = DeliveryRound(driver_id=driver_id)
            self._append_order(delivery_round, order)

            pipe.multi()
            self._queue_round(pipe, delivery_round)
            self._queue_order(pipe, order)
            await pipe.execute()

        self.logger.logger.info(
            "round_claimed",
            round_id=str(delivery_round.id),
            driver_id=str(driver_id),
            order_id=str(order_id),
        )
        return delivery_round

    async def add_to_round(
        self, round_id: UUID, order_id: UUID, driver_id: UUID
    ) -> DeliveryRound:
        """
        Append an order to the driver's round before it departs.

        Args:
            round_id: Driver's ready round
            order_id: Unassigned delivery order
            driver_id: Acting driver, owner of the round

        Returns:
            The round with the new stop at the end of the sequence
        """
        return await self.run_operation(
            "add_to_round",
            self._add_to_round,
            round_id=round_id,
            order_id=order_id,
            driver_id=driver_id,
        )

    async def _add_to_round(
        self, round_id: UUID, order_id: UUID, driver_id: UUID
    ) -> DeliveryRound:
        await self.drivers.resolve(driver_id)

        async with self.state.transaction() as pipe:
            delivery_round = await self._load_round(pipe, round_id)
            self._ensure_owner(delivery_round, driver_id)

            if not RoundTransitions.can_extend(delivery_round.status):
                raise PreconditionFailedError(
                    "Orders can only be added before the round departs",
                    round_id=round_id,
                    status=delivery_round.status.value,
                )

            ensure_capacity(
                delivery_round.total_stops,
                1,
                self.settings.max_deliveries_per_round,
                round_id=round_id,
            )

            order = await self._load_claimable_order(pipe, order_id)
            self._ensure_order_ready(order)
            stop = self._append_order(delivery_round, order)

            pipe.multi()
            self._queue_round(pipe, delivery_round)
            self._queue_order(pipe, order)
            await pipe.execute()

        self.logger.logger.info(
            "stop_added",
            round_id=str(round_id),
            order_id=str(order_id),
            stop_order=stop.stop_order,
            total_stops=delivery_round.total_stops,
        )
        return delivery_round

    async def claim_suggested_round(
        self, suggestion_id: UUID, driver_id: UUID
    ) -> DeliveryRound:
        """
        Claim a planner suggestion and materialize it as a round.

        The planner-side ``accept`` is the single point of mutual exclusion
        between drivers. If materialization fails afterwards the accept is
        rolled back so the suggestion is never stranded half-claimed.

        Args:
            suggestion_id: Suggested round in ``accepted`` status
            driver_id: Acting driver

        Returns:
            The new round, stops in the suggestion's sequence
        """
        return await self.run_operation(
            "claim_suggested_round",
            self._claim_suggested_round,
            suggestion_id=suggestion_id,
            driver_id=driver_id,
        )

    async def _claim_suggested_round(
        self, suggestion_id: UUID, driver_id: UUID
    ) -> DeliveryRound:
        await self.drivers.resolve(driver_id)

        suggestion = await self.planner.get(suggestion_id)
        if suggestion is None:
            raise NotFoundError("Suggested round not found", suggestion_id=suggestion_id)

        await self._check_suggestion_claimable(suggestion, driver_id)

        if not await self.planner.accept(suggestion_id, driver_id):
            raise ConflictError(
                "Suggested round was just claimed by another driver",
                suggestion_id=suggestion_id,
            )

        try:
            delivery_round = await self._materialize_suggestion(suggestion_id, driver_id)
        except Exception as e:
            reverted = await self.planner.revert_to_pending(suggestion_id)
            self.logger.log_compensation(
                "revert_accept",
                suggestion_id=str(suggestion_id),
                applied=reverted,
                driver_id=str(driver_id),
                reason=str(e),
            )
            raise

        self.logger.logger.info(
            "suggested_round_claimed",
            round_id=str(delivery_round.id),
            suggestion_id=str(suggestion_id),
            driver_id=str(driver_id),
            total_stops=delivery_round.total_stops,
        )
        return delivery_round

    async def _check_suggestion_claimable(
        self, suggestion: SuggestedRound, driver_id: UUID
    ) -> None:
        """Fail fast, before the planner-side accept, on stale or unready suggestions."""
        if suggestion.is_expired(self.now()):
            raise PreconditionFailedError(
                "Suggested round has expired", suggestion_id=suggestion.id
            )

        if suggestion.is_claimed:
            raise ConflictError(
                "Suggested round is already claimed", suggestion_id=suggestion.id
            )

        if suggestion.status != SuggestionStatus.ACCEPTED:
            raise PreconditionFailedError(
                "Suggested round is awaiting kitchen validation",
                suggestion_id=suggestion.id,
            )

        ensure_capacity(
            0,
            len(suggestion.orders),
            self.settings.max_deliveries_per_round,
            suggestion_id=suggestion.id,
        )

        members = await self.orders.get_many(suggestion.order_ids)
        missing = [order_id for order_id in suggestion.order_ids if order_id not in members]
        if missing:
            raise NotFoundError(
                "Order in suggested round no longer exists",
                suggestion_id=suggestion.id,
                order_id=missing[0],
            )

        ready_count = sum(1 for order in members.values() if order.is_ready)
        if ready_count < len(suggestion.orders):
            raise PreconditionFailedError(
                f"Suggested round is in preparation ({ready_count}/{len(suggestion.orders)} ready)",
                suggestion_id=suggestion.id,
            )

        current = await self.rounds.current_for_driver(driver_id)
        if current is not None and current.status == RoundStatus.READY:
            raise PreconditionFailedError(
                "Driver already holds a round waiting to depart",
                round_id=current.id,
            )

    async def _materialize_suggestion(
        self, suggestion_id: UUID, driver_id: UUID
    ) -> DeliveryRound:
        async with self.state.transaction() as pipe:
            suggestion_key = keys.suggestion_key(suggestion_id)
            await pipe.watch(suggestion_key)
            suggestion = await read_model(pipe, suggestion_key, SuggestedRound)

            if suggestion is None:
                raise NotFoundError("Suggested round not found", suggestion_id=suggestion_id)
            if suggestion.driver_id != driver_id:
                raise ConflictError(
                    "Claim on the suggested round was lost", suggestion_id=suggestion_id
                )
            if suggestion.is_expired(self.now()):
                raise ConflictError(
                    "Suggested round expired while it was being claimed",
                    suggestion_id=suggestion_id,
                )

            await self._ensure_no_ready_round(pipe, driver_id)

            delivery_round = DeliveryRound(
                driver_id=driver_id,
                planned_departure=suggestion.depart_at,
                suggested_round_id=suggestion.id,
            )

            members: list[Order] = []
            for member in suggestion.orders:
                order = await self._load_claimable_order(
                    pipe, member.order_id, allowed_suggestion_id=suggestion.id
                )
                if not order.is_ready:
                    raise PreconditionFailedError(
                        "Order in suggested round is not ready",
                        suggestion_id=suggestion_id,
                        order_id=order.id,
                    )
                self._append_order(delivery_round, order, member)
                members.append(order)

            pipe.multi()
            self._queue_round(pipe, delivery_round)
            for order in members:
                self._queue_order(pipe, order)
            await pipe.execute()

        return delivery_round

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def start_round(self, round_id: UUID, driver_id: UUID) -> DeliveryRound:
        """Depart: ``ready -> in_progress``."""
        return await self.run_operation(
            "start_round", self._start_round, round_id=round_id, driver_id=driver_id
        )

    async def _start_round(self, round_id: UUID, driver_id: UUID) -> DeliveryRound:
        await self.drivers.resolve(driver_id)

        async with self.state.transaction() as pipe:
            delivery_round = await self._load_round(pipe, round_id)
            self._ensure_owner(delivery_round, driver_id)

            if not RoundTransitions.can_transition(delivery_round.status, RoundStatus.IN_PROGRESS):
                raise PreconditionFailedError(
                    "Round has already departed",
                    round_id=round_id,
                    status=delivery_round.status.value,
                )

            delivery_round.status = RoundStatus.IN_PROGRESS
            delivery_round.actual_departure = self.now()

            pipe.multi()
            pipe.set(keys.round_key(round_id), delivery_round.model_dump_json())
            await pipe.execute()

        self.logger.logger.info(
            "round_started",
            round_id=str(round_id),
            driver_id=str(driver_id),
            total_stops=delivery_round.total_stops,
        )
        return delivery_round

    async def mark_stop_delivered(
        self, round_id: UUID, stop_id: UUID, driver_id: UUID
    ) -> DeliveryRound:
        """
        Deliver the next stop in sequence.

        Stops are completed strictly in order; the round completes with its
        last stop.
        """
        return await self.run_operation(
            "mark_stop_delivered",
            self._mark_stop_delivered,
            round_id=round_id,
            stop_id=stop_id,
            driver_id=driver_id,
        )

    async def _mark_stop_delivered(
        self, round_id: UUID, stop_id: UUID, driver_id: UUID
    ) -> DeliveryRound:
        await self.drivers.resolve(driver_id)

        async with self.state.transaction() as pipe:
            delivery_round = await self._load_round(pipe, round_id)
            self._ensure_owner(delivery_round, driver_id)

            if delivery_round.status != RoundStatus.IN_PROGRESS:
                raise PreconditionFailedError(
                    "Start the round before delivering stops",
                    round_id=round_id,
                    status=delivery_round.status.value,
                )

            stop = delivery_round.get_stop(stop_id)
            if stop is None:
                raise NotFoundError("Stop not found", round_id=round_id, stop_id=stop_id)

            if not StopTransitions.can_transition(stop.status, StopStatus.DELIVERED):
                raise PreconditionFailedError(
                    "Stop is already delivered", round_id=round_id, stop_id=stop_id
                )

            next_stop = delivery_round.next_pending_stop()
            if next_stop is not None and next_stop.id != stop.id:
                raise PreconditionFailedError(
                    f"Deliver stop {next_stop.stop_order} first",
                    round_id=round_id,
                    stop_id=stop_id,
                    expected_stop_id=next_stop.id,
                )

            now = self.now()
            stop.status = StopStatus.DELIVERED
            stop.actual_arrival = now

            completed = delivery_round.next_pending_stop() is None
            if completed:
                delivery_round.status = RoundStatus.COMPLETED
                delivery_round.completed_at = now

            pipe.multi()
            if completed:
                pipe.set(
                    keys.round_key(round_id),
                    delivery_round.model_dump_json(),
                    ex=self.settings.completed_round_ttl,
                )
                pipe.srem(keys.driver_rounds_key(driver_id), str(round_id))
                pipe.srem(keys.ACTIVE_ROUNDS, str(round_id))
            else:
                pipe.set(keys.round_key(round_id), delivery_round.model_dump_json())
            await pipe.execute()

        self.logger.logger.info(
            "stop_delivered",
            round_id=str(round_id),
            stop_id=str(stop_id),
            stop_order=stop.stop_order,
            round_completed=completed,
        )
        return delivery_round

    # ------------------------------------------------------------------
    # Releases
    # ------------------------------------------------------------------

    async def release_stop(
        self, round_id: UUID, stop_id: UUID, driver_id: UUID
    ) -> DeliveryRound | None:
        """
        Give back the only stop of a round that has not departed.

        Grouped rounds (two or more stops) must be released as a whole.

        Returns:
            The remaining round, or None once its last stop is gone and the
            round has been deleted
        """
        return await self.run_operation(
            "release_stop",
            self._release_stop,
            round_id=round_id,
            stop_id=stop_id,
            driver_id=driver_id,
        )

    async def _release_stop(
        self, round_id: UUID, stop_id: UUID, driver_id: UUID
    ) -> DeliveryRound | None:
        await self.drivers.resolve(driver_id)

        async with self.state.transaction() as pipe:
            delivery_round = await self._load_round(pipe, round_id)
            self._ensure_owner(delivery_round, driver_id)
            self._ensure_releasable(delivery_round)

            stop = delivery_round.get_stop(stop_id)
            if stop is None:
                raise NotFoundError("Stop not found", round_id=round_id, stop_id=stop_id)

            if delivery_round.is_grouped:
                raise PreconditionFailedError(
                    "Grouped round: release the whole round instead of a single stop",
                    round_id=round_id,
                    total_stops=delivery_round.total_stops,
                )

            order_key = keys.order_key(stop.order_id)
            await pipe.watch(order_key)
            order = await read_model(pipe, order_key, Order)

            delivery_round.remove_stop(stop_id)

            pipe.multi()
            if order is not None and order.delivery_round_id == delivery_round.id:
                order.delivery_round_id = None
                order.suggested_round_id = None
                self._queue_order(pipe, order)
            if delivery_round.total_stops == 0:
                self._queue_round_delete(pipe, delivery_round)
            else:
                self._queue_round(pipe, delivery_round)
            await pipe.execute()

        self.logger.logger.info(
            "stop_released",
            round_id=str(round_id),
            stop_id=str(stop_id),
            order_id=str(stop.order_id),
            round_deleted=delivery_round.total_stops == 0,
        )
        return delivery_round if delivery_round.total_stops else None

    async def release_round(self, round_id: UUID, driver_id: UUID) -> RoundRelease:
        """
        Give back a whole round that has not departed.

        All stops are removed, the orders unlinked and the round deleted in one
        transaction. A suggestion the round came from is reopened as
        ``pending`` unless it has expired, in which case its orders fall back
        to individual eligibility.
        """
        return await self.run_operation(
            "release_round", self._release_round, round_id=round_id, driver_id=driver_id
        )

    async def cancel_round(self, round_id: UUID) -> RoundRelease:
        """Dispatcher-side release of any round that has not departed."""
        return await self.run_operation(
            "cancel_round", self._release_round, round_id=round_id, driver_id=None
        )

    async def _release_round(self, round_id: UUID, driver_id: UUID | None) -> RoundRelease:
        if driver_id is not None:
            await self.drivers.resolve(driver_id)

        async with self.state.transaction() as pipe:
            delivery_round = await self._load_round(pipe, round_id)
            if driver_id is not None:
                self._ensure_owner(delivery_round, driver_id)
            self._ensure_releasable(delivery_round)

            order_keys = [keys.order_key(order_id) for order_id in delivery_round.order_ids]
            if order_keys:
                await pipe.watch(*order_keys)
            orders = [await read_model(pipe, order_key, Order) for order_key in order_keys]

            reverted: SuggestedRound | None = None
            if delivery_round.suggested_round_id is not None:
                reverted = await self.planner.prepare_revert(
                    pipe, delivery_round.suggested_round_id
                )

            unlinked: list[Order] = []
            for order in orders:
                if order is None or order.delivery_round_id != delivery_round.id:
                    continue
                order.delivery_round_id = None
                order.suggested_round_id = reverted.id if reverted else None
                unlinked.append(order)

            pipe.multi()
            self._queue_round_delete(pipe, delivery_round)
            for order in unlinked:
                self._queue_order(pipe, order)
            if reverted is not None:
                self.planner.write(pipe, reverted)
            await pipe.execute()

        release = RoundRelease(
            round_id=round_id,
            order_ids=[order.id for order in unlinked],
            suggested_round_id=delivery_round.suggested_round_id,
            suggestion_reverted=reverted is not None,
        )

        self.logger.logger.info(
            "round_released",
            round_id=str(round_id),
            driver_id=str(delivery_round.driver_id),
            orders=len(release.order_ids),
            suggestion_id=str(release.suggested_round_id) if release.suggested_round_id else None,
            suggestion_reverted=release.suggestion_reverted,
        )
        return release

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_round(self, pipe: Pipeline, round_id: UUID) -> DeliveryRound:
        """Watch and read a round."""
        round_key = keys.round_key(round_id)
        await pipe.watch(round_key)

        delivery_round = await read_model(pipe, round_key, DeliveryRound)
        if delivery_round is None:
            raise NotFoundError("Delivery round not found", round_id=round_id)
        return delivery_round

    async def _load_claimable_order(
        self,
        pipe: Pipeline,
        order_id: UUID,
        allowed_suggestion_id: UUID | None = None,
    ) -> Order:
        """Watch and read an order, rejecting it unless it is free to claim."""
        order_key = keys.order_key(order_id)
        await pipe.watch(order_key)

        order = await read_model(pipe, order_key, Order)
        if order is None:
            raise NotFoundError("Order not found", order_id=order_id)

        if order.order_type != OrderType.DELIVERY:
            raise PreconditionFailedError("Order is not a delivery order", order_id=order_id)

        if not order.is_open:
            raise ConflictError(
                "Order is no longer open for delivery",
                order_id=order_id,
                status=order.status.value,
            )

        if order.is_claimed:
            raise ConflictError(
                "Order already belongs to a delivery round",
                order_id=order_id,
                round_id=order.delivery_round_id,
            )

        linked = order.suggested_round_id
        if linked is not None and linked != allowed_suggestion_id:
            suggestion_key = keys.suggestion_key(linked)
            await pipe.watch(suggestion_key)
            suggestion = await read_model(pipe, suggestion_key, SuggestedRound)
            if suggestion is not None and not suggestion.is_expired(self.now()):
                raise ConflictError(
                    "Order is part of a suggested round; claim the round instead",
                    order_id=order_id,
                    suggestion_id=linked,
                )

        return order

    def _ensure_order_ready(self, order: Order) -> None:
        if not order.is_ready:
            raise PreconditionFailedError(
                "Order is in preparation",
                order_id=order.id,
                status=order.status.value,
            )

    async def _ensure_no_ready_round(self, pipe: Pipeline, driver_id: UUID) -> None:
        """A fresh claim needs the driver to have no round waiting to depart."""
        rounds_key = keys.driver_rounds_key(driver_id)
        await pipe.watch(rounds_key)

        round_ids = await pipe.smembers(rounds_key)
        if not round_ids:
            return

        round_keys = [keys.round_key(round_id) for round_id in round_ids]
        await pipe.watch(*round_keys)
        for round_key in round_keys:
            delivery_round = await read_model(pipe, round_key, DeliveryRound)
            if delivery_round is not None and delivery_round.status == RoundStatus.READY:
                raise PreconditionFailedError(
                    "Driver already holds a round waiting to depart; add to it or start it first",
                    driver_id=driver_id,
                    round_id=delivery_round.id,
                )

    def _ensure_owner(self, delivery_round: DeliveryRound, driver_id: UUID) -> None:
        if delivery_round.driver_id != driver_id:
            raise DriverNotAuthorizedError(
                "Round belongs to another driver",
                round_id=delivery_round.id,
                driver_id=driver_id,
            )

    def _ensure_releasable(self, delivery_round: DeliveryRound) -> None:
        if not RoundTransitions.can_release(delivery_round.status):
            raise PreconditionFailedError(
                "A round can only be released before it departs",
                round_id=delivery_round.id,
                status=delivery_round.status.value,
            )

    def _append_order(
        self,
        delivery_round: DeliveryRound,
        order: Order,
        member: SuggestedRoundMember | None = None,
    ) -> Stop:
        """Snapshot an order into a new last stop and link it to the round."""
        scheduled = order.scheduled_time
        address = order.delivery_address
        estimated_arrival = None
        if member is not None:
            scheduled = member.scheduled_time or scheduled
            address = member.delivery_address or address
            estimated_arrival = member.estimated_delivery

        slot_start, slot_end = customer_window(
            scheduled, self.settings.customer_tolerance_minutes
        )
        stop = delivery_round.append_stop(
            Stop(
                round_id=delivery_round.id,
                order_id=order.id,
                order_number=order.order_number,
                address=address or "",
                location=order.location,
                customer_slot_start=slot_start,
                customer_slot_end=slot_end,
                estimated_arrival=estimated_arrival,
            )
        )

        order.delivery_round_id = delivery_round.id
        order.suggested_round_id = None
        return stop

    def _queue_round(self, pipe: Pipeline, delivery_round: DeliveryRound) -> None:
        round_id = str(delivery_round.id)
        pipe.set(keys.round_key(round_id), delivery_round.model_dump_json())
        pipe.sadd(keys.driver_rounds_key(delivery_round.driver_id), round_id)
        pipe.sadd(keys.ACTIVE_ROUNDS, round_id)

    def _queue_round_delete(self, pipe: Pipeline, delivery_round: DeliveryRound) -> None:
        round_id = str(delivery_round.id)
        pipe.delete(keys.round_key(round_id))
        pipe.srem(keys.driver_rounds_key(delivery_round.driver_id), round_id)
        pipe.srem(keys.ACTIVE_ROUNDS, round_id)

    def _queue_order(self, pipe: Pipeline, order: Order) -> None:
        pipe.set(keys.order_key(order.id), order.model_dump_json())
