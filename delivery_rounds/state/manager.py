"""Redis-based state manager shared by every store."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, TypeVar

import redis.asyncio as redis
from pydantic import BaseModel
from redis.asyncio.client import Pipeline
from redis.exceptions import WatchError

from delivery_rounds.config import get_settings
from delivery_rounds.errors import ConflictError
from delivery_rounds.utils.logging import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class StateManager:
    """Centralized state management using Redis."""

    def __init__(self, redis_client: redis.Redis | None = None) -> None:
        settings = get_settings()
        self.redis_client: redis.Redis | None = redis_client
        self.redis_url = settings.redis_url

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self.redis_client is None:
            self.redis_client = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("redis_connected", url=self.redis_url)

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("redis_disconnected")

    async def client(self) -> redis.Redis:
        """Return the connected client, connecting lazily."""
        if not self.redis_client:
            await self.connect()
        return self.redis_client

    async def get_model(self, key: str, model: type[ModelT]) -> ModelT | None:
        """Load a JSON document into a model, or None when absent."""
        client = await self.client()
        raw = await client.get(key)
        if raw is None:
            return None
        return model.model_validate_json(raw)

    async def get_models(self, keys: Iterable[str], model: type[ModelT]) -> list[ModelT]:
        """Load several documents, skipping keys that vanished."""
        keys = list(keys)
        if not keys:
            return []

        client = await self.client()
        values = await client.mget(keys)
        return [model.model_validate_json(raw) for raw in values if raw is not None]

    async def set_model(self, key: str, value: BaseModel, ttl: int | None = None) -> None:
        """Store a model as a JSON document with optional TTL."""
        client = await self.client()
        await client.set(key, value.model_dump_json(), ex=ttl)
        logger.debug("state_set", key=key, ttl=ttl)

    async def delete(self, *keys: str) -> None:
        """Delete keys from Redis."""
        client = await self.client()
        await client.delete(*keys)
        logger.debug("state_deleted", keys=list(keys))

    async def members(self, key: str) -> set[str]:
        """Get the members of a set."""
        client = await self.client()
        return set(await client.smembers(key))

    async def add_members(self, key: str, *members: str) -> None:
        """Add members to a set."""
        client = await self.client()
        await client.sadd(key, *members)

    async def scan_keys(self, pattern: str) -> list[str]:
        """Collect keys matching a glob pattern without blocking the server."""
        client = await self.client()
        return [key async for key in client.scan_iter(match=pattern, count=500)]

    @asynccontextmanager
    async def transaction(self, *keys: str) -> AsyncIterator[Pipeline]:
        """Open an optimistic transaction watching ``keys``.

        Reads issued on the yielded pipeline run immediately until
        ``pipe.multi()``; writes queued after it are applied by
        ``await pipe.execute()`` only if no watched key changed meanwhile.
        """
        client = await self.client()
        async with client.pipeline(transaction=True) as pipe:
            if keys:
                await pipe.watch(*keys)
            try:
                yield pipe
            except WatchError as e:
                logger.info("transaction_conflict", keys=list(keys))
                raise ConflictError(
                    "State changed while the operation was running; refresh and retry"
                ) from e


async def read_model(pipe: Pipeline, key: str, model: type[ModelT]) -> ModelT | None:
    """Read a document through a watching pipeline."""
    raw = await pipe.get(key)
    if raw is None:
        return None
    return model.model_validate_json(raw)


# Global state manager instance
_state_manager: StateManager | None = None


async def get_state_manager() -> StateManager:
    """Get the global state manager instance."""
    global _state_manager
    if _state_manager is None:
        _state_manager = StateManager()
        await _state_manager.connect()
    return _state_manager
