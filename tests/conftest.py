"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Awaitable, Callable
from uuid import uuid4

import fakeredis
import pytest
import pytest_asyncio

from delivery_rounds.config import Settings
from delivery_rounds.dispatch import EligibilityService, RoundLifecycleManager
from delivery_rounds.models import (
    Driver,
    DriverStatus,
    Order,
    OrderStatus,
    SuggestedRound,
)
from delivery_rounds.state import (
    DriverDirectory,
    OrderStore,
    RedisRoundPlanner,
    RoundStore,
    StateManager,
)
from delivery_rounds.utils.tracing import OperationTracer

MakeOrder = Callable[..., Awaitable[Order]]
MakeSuggestion = Callable[..., Awaitable[SuggestedRound]]


class FrozenClock:
    """Deterministic clock; tests move it forward explicitly."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: Any) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock() -> FrozenClock:
    """Clock frozen at a weekday lunch service."""
    return FrozenClock(datetime(2026, 3, 14, 11, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings() -> Settings:
    """Settings with the default round limits, independent of the environment."""
    return Settings(
        max_deliveries_per_round=3,
        customer_tolerance_minutes=15,
        eligibility_window_hours=4,
        refresh_interval_seconds=30,
        completed_round_ttl=86400,
    )


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    """In-memory Redis, isolated per test."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def state_manager(
    redis_client: fakeredis.FakeAsyncRedis,
) -> AsyncGenerator[StateManager, None]:
    """Create a test state manager."""
    manager = StateManager(redis_client=redis_client)
    yield manager


@pytest.fixture
def order_store(state_manager: StateManager) -> OrderStore:
    return OrderStore(state_manager)


@pytest.fixture
def driver_directory(state_manager: StateManager) -> DriverDirectory:
    return DriverDirectory(state_manager)


@pytest.fixture
def round_store(state_manager: StateManager) -> RoundStore:
    return RoundStore(state_manager)


@pytest.fixture
def planner(state_manager: StateManager, clock: FrozenClock) -> RedisRoundPlanner:
    return RedisRoundPlanner(state_manager, clock=clock)


@pytest.fixture
def tracer() -> OperationTracer:
    return OperationTracer("test_driver_session")


@pytest.fixture
def lifecycle(
    state_manager: StateManager,
    order_store: OrderStore,
    planner: RedisRoundPlanner,
    round_store: RoundStore,
    driver_directory: DriverDirectory,
    settings: Settings,
    clock: FrozenClock,
    tracer: OperationTracer,
) -> RoundLifecycleManager:
    """Round lifecycle manager wired to the in-memory store."""
    return RoundLifecycleManager(
        state_manager,
        order_store,
        planner,
        round_store,
        driver_directory,
        settings=settings,
        clock=clock,
        tracer=tracer,
    )


@pytest.fixture
def eligibility(
    order_store: OrderStore,
    planner: RedisRoundPlanner,
    round_store: RoundStore,
    driver_directory: DriverDirectory,
    settings: Settings,
    clock: FrozenClock,
) -> EligibilityService:
    return EligibilityService(
        order_store,
        planner,
        round_store,
        driver_directory,
        settings=settings,
        clock=clock,
    )


# Sample data fixtures


@pytest_asyncio.fixture
async def driver(driver_directory: DriverDirectory) -> Driver:
    """An active driver."""
    return await driver_directory.save(
        Driver(name="Test Driver", phone="+33 6 00 00 00 01", status=DriverStatus.AVAILABLE)
    )


@pytest_asyncio.fixture
async def other_driver(driver_directory: DriverDirectory) -> Driver:
    """A second active driver competing for the same work."""
    return await driver_directory.save(
        Driver(name="Other Driver", phone="+33 6 00 00 00 02", status=DriverStatus.AVAILABLE)
    )


@pytest.fixture
def make_order(order_store: OrderStore, clock: FrozenClock) -> MakeOrder:
    """Factory storing a delivery order, ready and due in 45 minutes by default."""
    counter = iter(range(1001, 10000))

    async def _make_order(**overrides: Any) -> Order:
        number = next(counter)
        fields: dict[str, Any] = {
            "order_number": f"D-{number}",
            "status": OrderStatus.READY,
            "customer_name": f"Customer {number}",
            "delivery_address": f"{number} Rue de Rivoli, Paris",
            "delivery_lat": 48.8606,
            "delivery_lng": 2.3376,
            "scheduled_time": clock() + timedelta(minutes=45),
        }
        fields.update(overrides)
        return await order_store.save(Order(**fields))

    return _make_order


@pytest.fixture
def make_suggestion(planner: RedisRoundPlanner, clock: FrozenClock) -> MakeSuggestion:
    """Factory publishing a suggested round over the given orders.

    The suggestion is kitchen-validated (``accepted``) unless
    ``validated=False``; it expires 30 minutes from the current clock. Other
    keyword arguments override payload fields, ``orders`` included.
    """

    async def _make_suggestion(
        members: list[Order],
        validated: bool = True,
        expires_in: timedelta = timedelta(minutes=30),
        **overrides: Any,
    ) -> SuggestedRound:
        now = clock()
        payload: dict[str, Any] = {
            "id": str(uuid4()),
            "status": "pending",
            "prep_at": (now + timedelta(minutes=5)).isoformat(),
            "depart_at": (now + timedelta(minutes=20)).isoformat(),
            "expires_at": (now + expires_in).isoformat(),
            "total_distance_minutes": 25,
            "orders": [
                {
                    "order_id": str(order.id),
                    "order_number": order.order_number,
                    "sequence_order": position,
                    "estimated_delivery": (order.scheduled_time + timedelta(minutes=5)).isoformat(),
                    "customer_name": order.customer_name,
                    "delivery_address": order.delivery_address,
                    "scheduled_time": order.scheduled_time.isoformat(),
                }
                for position, order in enumerate(members, 1)
            ],
        }
        payload.update(overrides)

        suggestion = await planner.publish(payload)
        if validated:
            suggestion = await planner.validate(suggestion.id)
        return suggestion

    return _make_suggestion
