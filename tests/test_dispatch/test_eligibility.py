"""Tests for the driver eligibility query."""

from datetime import timedelta
from uuid import uuid4

import pytest

from conftest import FrozenClock, MakeOrder, MakeSuggestion
from delivery_rounds.dispatch import EligibilityService, RoundLifecycleManager
from delivery_rounds.errors import NotFoundError
from delivery_rounds.models import (
    Driver,
    OrderAvailability,
    OrderStatus,
    OrderType,
    SuggestionAvailability,
)
from delivery_rounds.state import OrderStore


@pytest.mark.asyncio
async def test_lists_unassigned_orders_in_window(
    eligibility: EligibilityService,
    make_order: MakeOrder,
    clock: FrozenClock,
    driver: Driver,
) -> None:
    """Test the look-ahead window and open-status filters."""
    now = clock()
    later = await make_order(scheduled_time=now + timedelta(hours=3))
    soon = await make_order(
        scheduled_time=now + timedelta(minutes=20), status=OrderStatus.PREPARING
    )
    await make_order(scheduled_time=now - timedelta(minutes=5))
    await make_order(scheduled_time=now + timedelta(hours=5))
    await make_order(status=OrderStatus.CANCELLED)
    await make_order(status=OrderStatus.COMPLETED)
    await make_order(order_type=OrderType.PICKUP)

    work = await eligibility.list_eligible_work(driver.id)

    assert [view.order.id for view in work.orders] == [soon.id, later.id]
    assert [view.availability for view in work.orders] == [
        OrderAvailability.IN_PREPARATION,
        OrderAvailability.TAKEABLE,
    ]
    assert not work.orders[0].can_take
    assert work.driver_id == driver.id
    assert work.generated_at == now
    assert work.refresh_after_seconds == 30
    assert work.current_round is None


@pytest.mark.asyncio
async def test_claimed_orders_not_listed(
    eligibility: EligibilityService,
    lifecycle: RoundLifecycleManager,
    make_order: MakeOrder,
    driver: Driver,
) -> None:
    """Test that a claimed order disappears and the driver's round shows up."""
    claimed = await make_order()
    free = await make_order()
    delivery_round = await lifecycle.claim_order(claimed.id, driver.id)

    work = await eligibility.list_eligible_work(driver.id)

    assert [view.order.id for view in work.orders] == [free.id]
    assert work.current_round.id == delivery_round.id


@pytest.mark.asyncio
async def test_suggestion_availability_states(
    eligibility: EligibilityService,
    make_order: MakeOrder,
    make_suggestion: MakeSuggestion,
    driver: Driver,
) -> None:
    """Test awaiting validation, in preparation and takeable display states."""
    pending = await make_suggestion([await make_order()], validated=False)
    preparing = await make_suggestion(
        [
            await make_order(),
            await make_order(),
            await make_order(status=OrderStatus.PREPARING),
        ]
    )
    takeable = await make_suggestion([await make_order(), await make_order()])

    work = await eligibility.list_eligible_work(driver.id)
    views = {view.suggestion.id: view for view in work.suggested_rounds}

    assert views[pending.id].availability == SuggestionAvailability.AWAITING_VALIDATION
    assert views[preparing.id].availability == SuggestionAvailability.IN_PREPARATION
    assert (views[preparing.id].ready_count, views[preparing.id].total_count) == (2, 3)
    assert views[takeable.id].availability == SuggestionAvailability.TAKEABLE
    assert views[takeable.id].can_take
    assert not views[pending.id].can_take

    # Suggestion members are offered through their suggestion only
    assert work.orders == []


@pytest.mark.asyncio
async def test_suggestion_sharing_an_order_is_hidden(
    eligibility: EligibilityService,
    make_order: MakeOrder,
    make_suggestion: MakeSuggestion,
    driver: Driver,
) -> None:
    """Test that a suggestion whose member is linked elsewhere is not shown."""
    shared = await make_order()
    first = await make_suggestion([shared, await make_order()])
    second = await make_suggestion([shared, await make_order()])

    work = await eligibility.list_eligible_work(driver.id)
    shown = {view.suggestion.id for view in work.suggested_rounds}

    assert first.id in shown
    assert second.id not in shown


@pytest.mark.asyncio
async def test_claimed_or_broken_suggestions_hidden(
    eligibility: EligibilityService,
    lifecycle: RoundLifecycleManager,
    make_order: MakeOrder,
    make_suggestion: MakeSuggestion,
    order_store: OrderStore,
    other_driver: Driver,
    driver: Driver,
) -> None:
    claimed = await make_suggestion([await make_order()])
    await lifecycle.claim_suggested_round(claimed.id, other_driver.id)

    cancelled_member = await make_order()
    broken = await make_suggestion([cancelled_member, await make_order()])
    await order_store.update_status(cancelled_member.id, OrderStatus.CANCELLED)

    work = await eligibility.list_eligible_work(driver.id)
    shown = {view.suggestion.id for view in work.suggested_rounds}

    assert claimed.id not in shown
    assert broken.id not in shown


@pytest.mark.asyncio
async def test_expired_suggestion_releases_orders_to_individual_list(
    eligibility: EligibilityService,
    make_order: MakeOrder,
    make_suggestion: MakeSuggestion,
    clock: FrozenClock,
    driver: Driver,
) -> None:
    """Test that a lapsed suggestion no longer holds its orders."""
    orders = [await make_order(), await make_order()]
    await make_suggestion(orders)
    clock.advance(minutes=31)

    work = await eligibility.list_eligible_work(driver.id)

    assert work.suggested_rounds == []
    assert {view.order.id for view in work.orders} == {order.id for order in orders}


@pytest.mark.asyncio
async def test_suggestion_tolerance_flag(
    eligibility: EligibilityService,
    make_order: MakeOrder,
    make_suggestion: MakeSuggestion,
    clock: FrozenClock,
    driver: Driver,
) -> None:
    """Test that late estimates are flagged for display."""
    order = await make_order()
    late = await make_suggestion(
        [order],
        orders=[
            {
                "order_id": str(order.id),
                "sequence_order": 1,
                "estimated_delivery": (order.scheduled_time + timedelta(minutes=25)).isoformat(),
                "scheduled_time": order.scheduled_time.isoformat(),
            }
        ],
    )

    work = await eligibility.list_eligible_work(driver.id)

    assert [view.suggestion.id for view in work.suggested_rounds] == [late.id]
    assert work.suggested_rounds[0].within_tolerance is False


@pytest.mark.asyncio
async def test_unknown_driver(eligibility: EligibilityService) -> None:
    with pytest.raises(NotFoundError):
        await eligibility.list_eligible_work(uuid4())
