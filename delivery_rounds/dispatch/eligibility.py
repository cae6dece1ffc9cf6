"""Eligibility query - what a driver may claim right now."""

from datetime import datetime, timedelta
from uuid import UUID

from delivery_rounds.config import Settings
from delivery_rounds.dispatch.base import BaseService
from delivery_rounds.dispatch.validation import suggestion_within_tolerance
from delivery_rounds.models.order import Order
from delivery_rounds.models.suggestion import SuggestedRound, SuggestionStatus
from delivery_rounds.models.work import (
    EligibleWork,
    OrderAvailability,
    OrderView,
    SuggestionAvailability,
    SuggestionView,
)
from delivery_rounds.state.drivers import DriverDirectory
from delivery_rounds.state.orders import OrderStore
from delivery_rounds.state.planner import RoundPlanner
from delivery_rounds.state.rounds import RoundStore
from delivery_rounds.utils.clock import Clock
from delivery_rounds.utils.tracing import OperationTracer


class EligibilityService(BaseService):
    """
    Computes claimable work for a driver.

    Pure read: individual unassigned orders inside the look-ahead window,
    plus open suggested rounds with their display state. Orders or
    suggestions that disappear mid-query are filtered out, never reported as
    errors.
    """

    def __init__(
        self,
        orders: OrderStore,
        planner: RoundPlanner,
        rounds: RoundStore,
        drivers: DriverDirectory,
        settings: Settings | None = None,
        clock: Clock | None = None,
        tracer: OperationTracer | None = None,
    ):
        super().__init__("eligibility", settings=settings, clock=clock, tracer=tracer)
        self.orders = orders
        self.planner = planner
        self.rounds = rounds
        self.drivers = drivers

    async def list_eligible_work(self, driver_id: UUID) -> EligibleWork:
        """List individual orders and suggested rounds the driver may claim."""
        return await self.run_operation(
            "list_eligible_work", self._list_eligible_work, driver_id=driver_id
        )

    async def _list_eligible_work(self, driver_id: UUID) -> EligibleWork:
        await self.drivers.resolve(driver_id)
        now = self.now()

        orders = await self.orders.list_delivery_orders()
        orders_by_id = {order.id: order for order in orders}
        suggestions = await self.planner.list_open()

        live_suggestion_ids = {
            s.id for s in suggestions if not s.is_expired(now)
        }

        views: list[SuggestionView] = []
        shown_order_ids: set[UUID] = set()
        for suggestion in suggestions:
            view = self._suggestion_view(suggestion, orders_by_id, now)
            if view is None:
                continue
            views.append(view)
            shown_order_ids.update(suggestion.order_ids)

        horizon = now + timedelta(hours=self.settings.eligibility_window_hours)
        individual = sorted(
            (
                order
                for order in orders
                if order.id not in shown_order_ids
                and self._is_individually_claimable(order, live_suggestion_ids, now, horizon)
            ),
            key=lambda order: order.scheduled_time,
        )

        return EligibleWork(
            driver_id=driver_id,
            generated_at=now,
            orders=[self._order_view(order) for order in individual],
            suggested_rounds=views,
            current_round=await self.rounds.current_for_driver(driver_id),
            refresh_after_seconds=self.settings.refresh_interval_seconds,
        )

    def _is_individually_claimable(
        self,
        order: Order,
        live_suggestion_ids: set[UUID],
        now: datetime,
        horizon: datetime,
    ) -> bool:
        if not order.is_open or order.is_claimed:
            return False
        # A link to a suggestion that expired or vanished no longer holds the order
        if order.suggested_round_id in live_suggestion_ids:
            return False
        return now <= order.scheduled_time <= horizon

    def _order_view(self, order: Order) -> OrderView:
        if order.is_ready:
            availability = OrderAvailability.TAKEABLE
        else:
            availability = OrderAvailability.IN_PREPARATION
        return OrderView(order=order, availability=availability)

    def _suggestion_view(
        self,
        suggestion: SuggestedRound,
        orders_by_id: dict[UUID, Order],
        now: datetime,
    ) -> SuggestionView | None:
        """Display state of a suggestion, or None if it must be hidden."""
        if suggestion.is_expired(now) or suggestion.is_claimed:
            return None

        members: list[Order] = []
        for order_id in suggestion.order_ids:
            order = orders_by_id.get(order_id)
            if order is None or not order.is_open or order.is_claimed:
                return None
            if order.suggested_round_id not in (None, suggestion.id):
                return None
            members.append(order)

        ready_count = sum(1 for order in members if order.is_ready)

        if suggestion.status == SuggestionStatus.PENDING:
            availability = SuggestionAvailability.AWAITING_VALIDATION
        elif ready_count < len(members):
            availability = SuggestionAvailability.IN_PREPARATION
        else:
            availability = SuggestionAvailability.TAKEABLE

        return SuggestionView(
            suggestion=suggestion,
            availability=availability,
            ready_count=ready_count,
            total_count=len(members),
            within_tolerance=suggestion_within_tolerance(
                suggestion, self.settings.customer_tolerance_minutes
            ),
        )
