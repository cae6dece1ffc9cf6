"""Order store: the subset of the order record dispatch reads and links."""

from uuid import UUID

from delivery_rounds.errors import NotFoundError
from delivery_rounds.models.order import Order, OrderStatus, OrderType
from delivery_rounds.state import keys
from delivery_rounds.state.manager import StateManager
from delivery_rounds.utils.logging import get_logger

logger = get_logger(__name__)


class OrderStore:
    """Reads delivery orders and records kitchen status changes."""

    def __init__(self, state_manager: StateManager):
        self.state = state_manager

    async def get(self, order_id: UUID) -> Order | None:
        """Retrieve an order by ID."""
        return await self.state.get_model(keys.order_key(order_id), Order)

    async def get_many(self, order_ids: list[UUID]) -> dict[UUID, Order]:
        """Retrieve several orders; IDs that vanished are simply absent."""
        orders = await self.state.get_models(
            [keys.order_key(order_id) for order_id in order_ids], Order
        )
        return {order.id: order for order in orders}

    async def list_delivery_orders(self) -> list[Order]:
        """All known delivery orders, skipping any deleted mid-read."""
        order_ids = await self.state.members(keys.DELIVERY_ORDERS)
        orders = await self.state.get_models(
            [keys.order_key(order_id) for order_id in order_ids], Order
        )
        return [order for order in orders if order.order_type == OrderType.DELIVERY]

    async def save(self, order: Order) -> Order:
        """Insert or replace an order (ordering flow side)."""
        await self.state.set_model(keys.order_key(order.id), order)
        if order.order_type == OrderType.DELIVERY:
            await self.state.add_members(keys.DELIVERY_ORDERS, str(order.id))

        logger.debug("order_saved", order_id=str(order.id), status=order.status.value)
        return order

    async def update_status(self, order_id: UUID, status: OrderStatus) -> Order:
        """Record a kitchen status change.

        Runs as a watched transaction so a concurrent claim that links the
        order to a round is never overwritten.
        """
        key = keys.order_key(order_id)
        async with self.state.transaction(key) as pipe:
            raw = await pipe.get(key)
            if raw is None:
                raise NotFoundError("Order not found", order_id=order_id)

            order = Order.model_validate_json(raw)
            order.status = status

            pipe.multi()
            pipe.set(key, order.model_dump_json())
            await pipe.execute()

        logger.info("order_status_updated", order_id=str(order_id), status=status.value)
        return order
