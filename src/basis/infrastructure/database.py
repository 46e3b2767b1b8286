"""Redis connection management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional, Protocol

import redis.asyncio as redis


class HasDatabaseSettings(Protocol):
    database_url: str


class DatabaseClient:
    """Async Redis client shared by every repository of one process."""

    def __init__(self, settings: HasDatabaseSettings):
        self.settings = settings
        self._redis: Optional[redis.Redis] = None

    def initialize_database(self) -> None:
        # URL form: redis://host:port/db
        self._redis = redis.from_url(self.settings.database_url, decode_responses=True)

    @asynccontextmanager
    async def get_connection(self) -> AsyncGenerator[redis.Redis, None]:
        """Yield the pooled client; connections go back to the pool, not closed."""
        if self._redis is None:
            self.initialize_database()
        assert self._redis is not None
        yield self._redis

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


_clients: dict[str, DatabaseClient] = {}


def get_database_client(settings: HasDatabaseSettings) -> DatabaseClient:
    """One client per database URL."""
    client = _clients.get(settings.database_url)
    if client is None:
        client = DatabaseClient(settings)
        _clients[settings.database_url] = client
    return client
