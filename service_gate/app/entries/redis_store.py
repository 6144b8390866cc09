"""
Redis-backed entry store.
"""

import json
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import StoreError
from shared.logging import get_logger
from .models import Entry


class RedisEntryStore:
    """Entries stored as JSON documents, one key per entry."""

    def __init__(self, redis_url: str, lock_timeout: float = 10.0):
        self.redis_url = redis_url
        self.lock_timeout = lock_timeout
        self.logger = get_logger("gate.entries.redis")
        self.redis: Optional[redis.Redis] = None

        # Key prefixes
        self.ENTRY_PREFIX = "entry:"
        self.LOCK_PREFIX = "entry-lock:"

    async def start(self):
        """Start the Redis store."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

            # Test connection
            await self.redis.ping()

            self.logger.info("Redis entry store started")

        except RedisError as e:
            self.logger.error("Failed to start Redis entry store", error=str(e))
            raise StoreError(f"Redis unavailable: {e}")

    async def stop(self):
        """Stop the Redis store."""
        if self.redis:
            await self.redis.aclose()
            self.logger.info("Redis entry store stopped")

    def _entry_key(self, name: str) -> str:
        return f"{self.ENTRY_PREFIX}{name}"

    async def get(self, name: str) -> Optional[Entry]:
        try:
            data = await self.redis.get(self._entry_key(name))
        except RedisError as e:
            raise StoreError(f"Could not read entry: {e}", {"entry": name})

        if data is None:
            return None

        try:
            return Entry.from_dict(json.loads(data))
        except (KeyError, TypeError, ValueError) as e:
            raise StoreError(f"Corrupt entry document: {e}", {"entry": name})

    async def commit(self, entry: Entry) -> None:
        try:
            await self.redis.set(self._entry_key(entry.name), json.dumps(entry.to_dict()))
        except RedisError as e:
            raise StoreError(f"Could not commit entry: {e}", {"entry": entry.name})

    @asynccontextmanager
    async def lock(self, name: str) -> AsyncIterator[None]:
        lock = self.redis.lock(
            f"{self.LOCK_PREFIX}{name}",
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_timeout,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            raise StoreError(f"Could not acquire entry lock: {e}", {"entry": name})
        if not acquired:
            raise StoreError("Timed out acquiring entry lock", {"entry": name})

        try:
            yield
        finally:
            try:
                await lock.release()
            except RedisError as e:
                # Lock expired while held, or the connection dropped
                self.logger.warning("Entry lock released late", entry=name, error=str(e))
