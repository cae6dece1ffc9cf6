"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from delivery_rounds import __version__
from delivery_rounds.api.routes import router
from delivery_rounds.config import get_settings
from delivery_rounds.errors import (
    CapacityExceededError,
    ConflictError,
    DriverNotAuthorizedError,
    NotFoundError,
    PreconditionFailedError,
    RoundError,
)
from delivery_rounds.state.manager import get_state_manager
from delivery_rounds.utils.logging import get_logger, setup_logging

# Setup logging first
setup_logging()
logger = get_logger(__name__)

ERROR_STATUS: dict[type[RoundError], int] = {
    NotFoundError: 404,
    DriverNotAuthorizedError: 403,
    ConflictError: 409,
    PreconditionFailedError: 412,
    CapacityExceededError: 422,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    logger.info("application_starting", version=__version__)

    # Initialize state manager
    state_manager = await get_state_manager()
    logger.info("state_manager_initialized")

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await state_manager.disconnect()


# Create FastAPI app
app = FastAPI(
    title="Delivery Rounds",
    description="Delivery round lifecycle: claims, stop sequencing and releases",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Driver tablets and the dispatch console run on other origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RoundError)
async def round_error_handler(request: Request, exc: RoundError) -> JSONResponse:
    """Render lifecycle errors as typed JSON responses."""
    status_code = ERROR_STATUS.get(type(exc), 400)
    logger.info(
        "request_rejected",
        path=request.url.path,
        status_code=status_code,
        error=exc.code,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": "delivery-rounds"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "message": "Delivery Rounds API",
        "docs": "/docs",
        "health": "/health",
    }


app.include_router(router, prefix="/api/v1", tags=["api"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "delivery_rounds.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.environment == "development",
        workers=1 if settings.environment == "development" else settings.api_workers,
    )
