"""Driver directory."""

from uuid import UUID

from delivery_rounds.errors import DriverNotAuthorizedError, NotFoundError
from delivery_rounds.models.driver import Driver
from delivery_rounds.state import keys
from delivery_rounds.state.manager import StateManager


class DriverDirectory:
    """Resolves driver identities for claim authorization."""

    def __init__(self, state_manager: StateManager):
        self.state = state_manager

    async def get(self, driver_id: UUID) -> Driver | None:
        return await self.state.get_model(keys.driver_key(driver_id), Driver)

    async def save(self, driver: Driver) -> Driver:
        await self.state.set_model(keys.driver_key(driver.id), driver)
        return driver

    async def resolve(self, driver_id: UUID) -> Driver:
        """Return the acting driver, or raise if it may not act."""
        driver = await self.get(driver_id)

        if driver is None:
            raise NotFoundError("Driver not found", driver_id=driver_id)

        if not driver.is_active:
            raise DriverNotAuthorizedError("Driver account is inactive", driver_id=driver_id)

        return driver
