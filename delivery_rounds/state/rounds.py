"""Read access to delivery rounds.

Rounds are only ever written by the lifecycle manager inside transactions;
this store serves the read views.
"""

from uuid import UUID

from delivery_rounds.models.round import DeliveryRound, RoundStatus
from delivery_rounds.state import keys
from delivery_rounds.state.manager import StateManager


class RoundStore:
    """Loads rounds and the per-driver and active indexes."""

    def __init__(self, state_manager: StateManager):
        self.state = state_manager

    async def get(self, round_id: UUID) -> DeliveryRound | None:
        """Retrieve a round by ID."""
        return await self.state.get_model(keys.round_key(round_id), DeliveryRound)

    async def list_for_driver(self, driver_id: UUID) -> list[DeliveryRound]:
        """The driver's open rounds, newest first."""
        round_ids = await self.state.members(keys.driver_rounds_key(driver_id))
        rounds = await self.state.get_models(
            [keys.round_key(round_id) for round_id in round_ids], DeliveryRound
        )
        return sorted(rounds, key=lambda r: r.created_at, reverse=True)

    async def current_for_driver(self, driver_id: UUID) -> DeliveryRound | None:
        """Most recent ready or in-progress round of a driver."""
        for delivery_round in await self.list_for_driver(driver_id):
            if delivery_round.status in (RoundStatus.READY, RoundStatus.IN_PROGRESS):
                return delivery_round
        return None

    async def list_active(self) -> list[DeliveryRound]:
        """All ready or in-progress rounds, newest first."""
        round_ids = await self.state.members(keys.ACTIVE_ROUNDS)
        rounds = await self.state.get_models(
            [keys.round_key(round_id) for round_id in round_ids], DeliveryRound
        )
        return sorted(rounds, key=lambda r: r.created_at, reverse=True)
