"""Redis progress publisher for cross-process progress queries."""

from __future__ import annotations

from typing import Any, Optional

import redis.asyncio as redis

from ..models import ProgressSnapshot
from .base import BaseProgressPublisher


class RedisProgressPublisher(BaseProgressPublisher):
    """Stores each run's snapshot as a JSON string under ``<prefix>:<run_id>``."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        key_prefix: str = "vidlingo:progress",
        ttl_seconds: Optional[int] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds
        self._redis: Optional[Any] = None

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _key(self, run_id: str) -> str:
        return f"{self.key_prefix}:{run_id}"

    async def _load(self, run_id: str) -> Optional[ProgressSnapshot]:
        if not self._redis:
            await self.connect()
        raw = await self._redis.get(self._key(run_id))
        if raw is None:
            return None
        return ProgressSnapshot.model_validate_json(raw)

    async def _store(self, snapshot: ProgressSnapshot) -> None:
        if not self._redis:
            await self.connect()
        await self._redis.set(
            self._key(snapshot.run_id), snapshot.model_dump_json(), ex=self.ttl_seconds
        )

    async def delete(self, run_id: str) -> None:
        if not self._redis:
            await self.connect()
        await self._redis.delete(self._key(run_id))
