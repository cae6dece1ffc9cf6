"""Tests for releasing stops and rounds, and the claim compensation."""

from uuid import UUID, uuid4

import pytest

from conftest import FrozenClock, MakeOrder, MakeSuggestion
from delivery_rounds.dispatch import EligibilityService, RoundLifecycleManager
from delivery_rounds.errors import (
    ConflictError,
    DriverNotAuthorizedError,
    NotFoundError,
    PreconditionFailedError,
)
from delivery_rounds.models import Driver, OrderStatus, SuggestionStatus
from delivery_rounds.state import (
    DriverDirectory,
    OrderStore,
    RedisRoundPlanner,
    RoundStore,
    StateManager,
)


@pytest.mark.asyncio
async def test_release_single_stop_deletes_round(
    lifecycle: RoundLifecycleManager,
    make_order: MakeOrder,
    order_store: OrderStore,
    round_store: RoundStore,
    driver: Driver,
) -> None:
    """Test that releasing the only stop removes the round."""
    order = await make_order()
    delivery_round = await lifecycle.claim_order(order.id, driver.id)

    remaining = await lifecycle.release_stop(
        delivery_round.id, delivery_round.stops[0].id, driver.id
    )

    assert remaining is None
    with pytest.raises(NotFoundError):
        await lifecycle.get_round(delivery_round.id)

    released = await order_store.get(order.id)
    assert released.delivery_round_id is None
    assert released.suggested_round_id is None
    assert await round_store.list_for_driver(driver.id) == []


@pytest.mark.asyncio
async def test_grouped_round_released_as_a_whole(
    lifecycle: RoundLifecycleManager,
    make_order: MakeOrder,
    order_store: OrderStore,
    driver: Driver,
) -> None:
    """Test claim O1, add O2, refused single-stop release, then whole release."""
    first = await make_order()
    second = await make_order()
    delivery_round = await lifecycle.claim_order(first.id, driver.id)
    delivery_round = await lifecycle.add_to_round(delivery_round.id, second.id, driver.id)

    with pytest.raises(PreconditionFailedError, match="release the whole round"):
        await lifecycle.release_stop(delivery_round.id, delivery_round.stops[0].id, driver.id)

    assert (await lifecycle.get_round(delivery_round.id)).total_stops == 2

    release = await lifecycle.release_round(delivery_round.id, driver.id)

    assert set(release.order_ids) == {first.id, second.id}
    assert release.suggested_round_id is None
    assert release.suggestion_reverted is False
    with pytest.raises(NotFoundError):
        await lifecycle.get_round(delivery_round.id)
    for order in (first, second):
        assert (await order_store.get(order.id)).delivery_round_id is None


@pytest.mark.asyncio
async def test_release_started_round_rejected(
    lifecycle: RoundLifecycleManager,
    make_order: MakeOrder,
    driver: Driver,
) -> None:
    """Test that in-progress rounds can neither be released nor cancelled."""
    delivery_round = await lifecycle.claim_order((await make_order()).id, driver.id)
    await lifecycle.start_round(delivery_round.id, driver.id)

    with pytest.raises(PreconditionFailedError):
        await lifecycle.release_stop(delivery_round.id, delivery_round.stops[0].id, driver.id)

    with pytest.raises(PreconditionFailedError):
        await lifecycle.release_round(delivery_round.id, driver.id)

    with pytest.raises(PreconditionFailedError):
        await lifecycle.cancel_round(delivery_round.id)


@pytest.mark.asyncio
async def test_release_requires_owner(
    lifecycle: RoundLifecycleManager,
    make_order: MakeOrder,
    driver: Driver,
    other_driver: Driver,
) -> None:
    delivery_round = await lifecycle.claim_order((await make_order()).id, driver.id)

    with pytest.raises(DriverNotAuthorizedError):
        await lifecycle.release_round(delivery_round.id, other_driver.id)

    with pytest.raises(DriverNotAuthorizedError):
        await lifecycle.release_stop(
            delivery_round.id, delivery_round.stops[0].id, other_driver.id
        )


@pytest.mark.asyncio
async def test_release_unknown_stop(
    lifecycle: RoundLifecycleManager, make_order: MakeOrder, driver: Driver
) -> None:
    delivery_round = await lifecycle.claim_order((await make_order()).id, driver.id)

    with pytest.raises(NotFoundError):
        await lifecycle.release_stop(delivery_round.id, uuid4(), driver.id)

    with pytest.raises(NotFoundError):
        await lifecycle.release_round(uuid4(), driver.id)


@pytest.mark.asyncio
async def test_release_round_reverts_live_suggestion(
    lifecycle: RoundLifecycleManager,
    make_order: MakeOrder,
    make_suggestion: MakeSuggestion,
    order_store: OrderStore,
    planner: RedisRoundPlanner,
    driver: Driver,
) -> None:
    """Test that releasing a planner round hands the suggestion back as pending."""
    orders = [await make_order() for _ in range(2)]
    suggestion = await make_suggestion(orders)
    delivery_round = await lifecycle.claim_suggested_round(suggestion.id, driver.id)

    release = await lifecycle.release_round(delivery_round.id, driver.id)

    assert release.suggested_round_id == suggestion.id
    assert release.suggestion_reverted is True

    reverted = await planner.get(suggestion.id)
    assert reverted.status == SuggestionStatus.PENDING
    assert reverted.driver_id is None
    assert reverted.accepted_at is None

    for order in orders:
        released = await order_store.get(order.id)
        assert released.delivery_round_id is None
        assert released.suggested_round_id == suggestion.id


@pytest.mark.asyncio
async def test_release_round_after_suggestion_expired(
    lifecycle: RoundLifecycleManager,
    eligibility: EligibilityService,
    make_order: MakeOrder,
    make_suggestion: MakeSuggestion,
    order_store: OrderStore,
    planner: RedisRoundPlanner,
    clock: FrozenClock,
    driver: Driver,
) -> None:
    """Test that an expired suggestion stays expired and its orders go individual."""
    orders = [await make_order() for _ in range(2)]
    suggestion = await make_suggestion(orders)
    delivery_round = await lifecycle.claim_suggested_round(suggestion.id, driver.id)
    clock.advance(minutes=31)
    await planner.expire(suggestion.id)

    release = await lifecycle.release_round(delivery_round.id, driver.id)

    assert release.suggestion_reverted is False
    assert (await planner.get(suggestion.id)).status == SuggestionStatus.EXPIRED

    for order in orders:
        released = await order_store.get(order.id)
        assert released.delivery_round_id is None
        assert released.suggested_round_id is None

    work = await eligibility.list_eligible_work(driver.id)
    assert {view.order.id for view in work.orders} == {order.id for order in orders}
    assert work.suggested_rounds == []


@pytest.mark.asyncio
async def test_release_round_after_expiry_time_passed(
    lifecycle: RoundLifecycleManager,
    make_order: MakeOrder,
    make_suggestion: MakeSuggestion,
    planner: RedisRoundPlanner,
    clock: FrozenClock,
    driver: Driver,
) -> None:
    """Test that a lapsed expires_at blocks the revert even before the planner expires it."""
    suggestion = await make_suggestion([await make_order()])
    delivery_round = await lifecycle.claim_suggested_round(suggestion.id, driver.id)
    clock.advance(minutes=30)

    release = await lifecycle.release_round(delivery_round.id, driver.id)

    assert release.suggestion_reverted is False
    stored = await planner.get(suggestion.id)
    assert stored.is_expired(clock())
    assert stored.status != SuggestionStatus.PENDING


@pytest.mark.asyncio
async def test_cancel_round_by_dispatcher(
    lifecycle: RoundLifecycleManager,
    make_order: MakeOrder,
    order_store: OrderStore,
    round_store: RoundStore,
    driver: Driver,
) -> None:
    order = await make_order()
    delivery_round = await lifecycle.claim_order(order.id, driver.id)

    release = await lifecycle.cancel_round(delivery_round.id)

    assert release.order_ids == [order.id]
    assert await round_store.list_active() == []
    assert (await order_store.get(order.id)).delivery_round_id is None


# Compensation across the planner boundary


class KitchenRecallPlanner(RedisRoundPlanner):
    """Planner whose accept races with the kitchen pulling an order back."""

    def __init__(self, state_manager: StateManager, clock: FrozenClock, recalled: UUID):
        super().__init__(state_manager, clock=clock)
        self.orders = OrderStore(state_manager)
        self.recalled = recalled

    async def accept(self, suggestion_id: UUID, driver_id: UUID) -> bool:
        accepted = await super().accept(suggestion_id, driver_id)
        await self.orders.update_status(self.recalled, OrderStatus.PREPARING)
        return accepted


class LaggingPlanner(RedisRoundPlanner):
    """Planner whose accept returns just as the suggestion lapses."""

    async def accept(self, suggestion_id: UUID, driver_id: UUID) -> bool:
        accepted = await super().accept(suggestion_id, driver_id)
        self.clock.advance(minutes=45)
        return accepted


def _lifecycle_with(
    planner: RedisRoundPlanner,
    state_manager: StateManager,
    lifecycle: RoundLifecycleManager,
) -> RoundLifecycleManager:
    return RoundLifecycleManager(
        state_manager,
        OrderStore(state_manager),
        planner,
        RoundStore(state_manager),
        DriverDirectory(state_manager),
        settings=lifecycle.settings,
        clock=lifecycle.clock,
    )


@pytest.mark.asyncio
async def test_failed_materialization_reverts_accept(
    lifecycle: RoundLifecycleManager,
    make_order: MakeOrder,
    make_suggestion: MakeSuggestion,
    state_manager: StateManager,
    order_store: OrderStore,
    round_store: RoundStore,
    clock: FrozenClock,
    driver: Driver,
) -> None:
    """Test that the accept is rolled back when an order stops being ready."""
    orders = [await make_order() for _ in range(2)]
    suggestion = await make_suggestion(orders)
    planner = KitchenRecallPlanner(state_manager, clock, recalled=orders[1].id)
    manager = _lifecycle_with(planner, state_manager, lifecycle)

    with pytest.raises(PreconditionFailedError):
        await manager.claim_suggested_round(suggestion.id, driver.id)

    reverted = await planner.get(suggestion.id)
    assert reverted.status == SuggestionStatus.PENDING
    assert reverted.driver_id is None

    assert await round_store.list_active() == []
    for order in orders:
        assert (await order_store.get(order.id)).delivery_round_id is None


@pytest.mark.asyncio
async def test_suggestion_expiring_mid_claim(
    lifecycle: RoundLifecycleManager,
    make_order: MakeOrder,
    make_suggestion: MakeSuggestion,
    state_manager: StateManager,
    round_store: RoundStore,
    clock: FrozenClock,
    driver: Driver,
) -> None:
    """Test that expiry between accept and materialization fails the claim."""
    suggestion = await make_suggestion([await make_order()])
    planner = LaggingPlanner(state_manager, clock=clock)
    manager = _lifecycle_with(planner, state_manager, lifecycle)

    with pytest.raises(ConflictError):
        await manager.claim_suggested_round(suggestion.id, driver.id)

    stored = await planner.get(suggestion.id)
    assert stored.is_expired(clock())
    assert stored.status != SuggestionStatus.PENDING
    assert await round_store.list_active() == []
