"""HTTP API for the delivery round service."""

from delivery_rounds.api.routes import router

__all__ = ["router"]
