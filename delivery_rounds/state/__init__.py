"""State management modules."""

from delivery_rounds.state.drivers import DriverDirectory
from delivery_rounds.state.manager import StateManager, get_state_manager
from delivery_rounds.state.orders import OrderStore
from delivery_rounds.state.planner import RedisRoundPlanner, RoundPlanner
from delivery_rounds.state.rounds import RoundStore
from delivery_rounds.state.workflow import RoundTransitions, StopTransitions

__all__ = [
    "StateManager",
    "get_state_manager",
    "OrderStore",
    "DriverDirectory",
    "RoundStore",
    "RoundPlanner",
    "RedisRoundPlanner",
    "RoundTransitions",
    "StopTransitions",
]
