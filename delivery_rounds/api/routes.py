"""API routes for driver sessions, dispatchers and the round planner."""

from typing import AsyncGenerator
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel

from delivery_rounds.dispatch import EligibilityService, RoundLifecycleManager
from delivery_rounds.errors import NotFoundError
from delivery_rounds.models import (
    DeliveryRound,
    EligibleWork,
    RoundRelease,
    SuggestedRound,
    SuggestedRoundPayload,
)
from delivery_rounds.state import (
    DriverDirectory,
    OrderStore,
    RedisRoundPlanner,
    RoundStore,
    StateManager,
    get_state_manager,
)
from delivery_rounds.utils.logging import get_logger
from delivery_rounds.utils.tracing import OperationTracer

logger = get_logger(__name__)

router = APIRouter()


# Request/Response Models


class StopReleaseResponse(BaseModel):
    """Outcome of releasing a single stop."""

    round_id: UUID
    stop_id: UUID
    round_deleted: bool
    round: DeliveryRound | None = None


class ActiveRoundsResponse(BaseModel):
    """Dispatcher overview of rounds not yet completed."""

    rounds: list[DeliveryRound]
    total: int


# Dependencies


async def get_tracer(request: Request) -> AsyncGenerator[OperationTracer, None]:
    """Per-request tracer, summarized in the log once the request is handled."""
    actor = request.path_params.get("driver_id", "dispatch")
    tracer = OperationTracer(actor)
    try:
        yield tracer
    finally:
        if tracer.events:
            summary = tracer.get_trace_summary()
            logger.info(
                "request_traced",
                actor=actor,
                path=request.url.path,
                total_events=summary["total_events"],
                total_duration_ms=round(summary["total_duration_ms"], 3),
                operation_stats=summary["operation_stats"],
            )


async def get_planner(
    state_manager: StateManager = Depends(get_state_manager),
) -> RedisRoundPlanner:
    """Get the round planner adapter."""
    return RedisRoundPlanner(state_manager)


async def get_lifecycle_manager(
    state_manager: StateManager = Depends(get_state_manager),
    planner: RedisRoundPlanner = Depends(get_planner),
    tracer: OperationTracer = Depends(get_tracer),
) -> RoundLifecycleManager:
    """Get a round lifecycle manager bound to the shared store."""
    return RoundLifecycleManager(
        state_manager,
        OrderStore(state_manager),
        planner,
        RoundStore(state_manager),
        DriverDirectory(state_manager),
        tracer=tracer,
    )


async def get_eligibility_service(
    state_manager: StateManager = Depends(get_state_manager),
    planner: RedisRoundPlanner = Depends(get_planner),
    tracer: OperationTracer = Depends(get_tracer),
) -> EligibilityService:
    """Get the eligibility query service."""
    return EligibilityService(
        OrderStore(state_manager),
        planner,
        RoundStore(state_manager),
        DriverDirectory(state_manager),
        tracer=tracer,
    )


# Driver routes


@router.get("/drivers/{driver_id}/work", response_model=EligibleWork)
async def list_eligible_work(
    driver_id: UUID,
    eligibility: EligibilityService = Depends(get_eligibility_service),
) -> EligibleWork:
    """
    Claimable work for a driver.

    Individual unassigned orders inside the look-ahead window, open suggested
    rounds with their display state, and the driver's current round. Clients
    poll this every ``refresh_after_seconds``.
    """
    return await eligibility.list_eligible_work(driver_id)


@router.get("/drivers/{driver_id}/round", response_model=DeliveryRound)
async def get_current_round(
    driver_id: UUID,
    lifecycle: RoundLifecycleManager = Depends(get_lifecycle_manager),
) -> DeliveryRound:
    """Get the driver's current ready or in-progress round."""
    delivery_round = await lifecycle.current_round(driver_id)
    if delivery_round is None:
        raise NotFoundError("Driver has no open round", driver_id=driver_id)
    return delivery_round


@router.post(
    "/drivers/{driver_id}/orders/{order_id}/claim",
    response_model=DeliveryRound,
    status_code=status.HTTP_201_CREATED,
)
async def claim_order(
    driver_id: UUID,
    order_id: UUID,
    lifecycle: RoundLifecycleManager = Depends(get_lifecycle_manager),
) -> DeliveryRound:
    """Claim a single order into a new round."""
    return await lifecycle.claim_order(order_id, driver_id)


@router.post(
    "/drivers/{driver_id}/rounds/{round_id}/orders/{order_id}",
    response_model=DeliveryRound,
)
async def add_to_round(
    driver_id: UUID,
    round_id: UUID,
    order_id: UUID,
    lifecycle: RoundLifecycleManager = Depends(get_lifecycle_manager),
) -> DeliveryRound:
    """Append an order to the driver's ready round."""
    return await lifecycle.add_to_round(round_id, order_id, driver_id)


@router.post(
    "/drivers/{driver_id}/suggested-rounds/{suggestion_id}/claim",
    response_model=DeliveryRound,
    status_code=status.HTTP_201_CREATED,
)
async def claim_suggested_round(
    driver_id: UUID,
    suggestion_id: UUID,
    lifecycle: RoundLifecycleManager = Depends(get_lifecycle_manager),
) -> DeliveryRound:
    """
    Claim a suggested round.

    Exactly one of several concurrent claimants succeeds; the others receive
    409 and should refresh their work list.
    """
    return await lifecycle.claim_suggested_round(suggestion_id, driver_id)


@router.post("/drivers/{driver_id}/rounds/{round_id}/start", response_model=DeliveryRound)
async def start_round(
    driver_id: UUID,
    round_id: UUID,
    lifecycle: RoundLifecycleManager = Depends(get_lifecycle_manager),
) -> DeliveryRound:
    """Depart with a ready round."""
    return await lifecycle.start_round(round_id, driver_id)


@router.post(
    "/drivers/{driver_id}/rounds/{round_id}/stops/{stop_id}/deliver",
    response_model=DeliveryRound,
)
async def mark_stop_delivered(
    driver_id: UUID,
    round_id: UUID,
    stop_id: UUID,
    lifecycle: RoundLifecycleManager = Depends(get_lifecycle_manager),
) -> DeliveryRound:
    """Mark the next stop delivered."""
    return await lifecycle.mark_stop_delivered(round_id, stop_id, driver_id)


@router.delete(
    "/drivers/{driver_id}/rounds/{round_id}/stops/{stop_id}",
    response_model=StopReleaseResponse,
)
async def release_stop(
    driver_id: UUID,
    round_id: UUID,
    stop_id: UUID,
    lifecycle: RoundLifecycleManager = Depends(get_lifecycle_manager),
) -> StopReleaseResponse:
    """Release the only stop of a ready round."""
    delivery_round = await lifecycle.release_stop(round_id, stop_id, driver_id)

    return StopReleaseResponse(
        round_id=round_id,
        stop_id=stop_id,
        round_deleted=delivery_round is None,
        round=delivery_round,
    )


@router.delete("/drivers/{driver_id}/rounds/{round_id}", response_model=RoundRelease)
async def release_round(
    driver_id: UUID,
    round_id: UUID,
    lifecycle: RoundLifecycleManager = Depends(get_lifecycle_manager),
) -> RoundRelease:
    """Release a whole ready round, reopening its suggestion when possible."""
    return await lifecycle.release_round(round_id, driver_id)


# Dispatcher routes


@router.get("/admin/rounds", response_model=ActiveRoundsResponse)
async def list_active_rounds(
    lifecycle: RoundLifecycleManager = Depends(get_lifecycle_manager),
) -> ActiveRoundsResponse:
    """List ready and in-progress rounds."""
    rounds = await lifecycle.list_active_rounds()
    return ActiveRoundsResponse(rounds=rounds, total=len(rounds))


@router.get("/admin/rounds/{round_id}", response_model=DeliveryRound)
async def get_round(
    round_id: UUID,
    lifecycle: RoundLifecycleManager = Depends(get_lifecycle_manager),
) -> DeliveryRound:
    """Get a round with its stops."""
    return await lifecycle.get_round(round_id)


@router.delete("/admin/rounds/{round_id}", response_model=RoundRelease)
async def cancel_round(
    round_id: UUID,
    lifecycle: RoundLifecycleManager = Depends(get_lifecycle_manager),
) -> RoundRelease:
    """Cancel a ready round on behalf of its driver."""
    logger.info("round_cancel_requested", round_id=str(round_id))
    return await lifecycle.cancel_round(round_id)


# Planner routes


@router.post(
    "/planner/suggested-rounds",
    response_model=SuggestedRound,
    status_code=status.HTTP_201_CREATED,
)
async def publish_suggested_round(
    payload: SuggestedRoundPayload,
    planner: RedisRoundPlanner = Depends(get_planner),
) -> SuggestedRound:
    """
    Ingest a suggested round from the planner.

    The body is validated once on ingestion; malformed member lists and
    timestamps without a UTC offset are rejected with 422. A suggestion a
    driver has already claimed cannot be republished (409).
    """
    return await planner.publish(payload)


@router.post(
    "/planner/suggested-rounds/{suggestion_id}/validate",
    response_model=SuggestedRound,
)
async def validate_suggested_round(
    suggestion_id: UUID,
    planner: RedisRoundPlanner = Depends(get_planner),
) -> SuggestedRound:
    """Kitchen validation of a pending suggestion."""
    return await planner.validate(suggestion_id)


@router.post(
    "/planner/suggested-rounds/{suggestion_id}/expire",
    response_model=SuggestedRound,
)
async def expire_suggested_round(
    suggestion_id: UUID,
    planner: RedisRoundPlanner = Depends(get_planner),
) -> SuggestedRound:
    """Expire a suggestion and release its unclaimed orders."""
    return await planner.expire(suggestion_id)
