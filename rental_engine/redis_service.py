"""
Redis Service for the rental engine
Handles booking locks and idempotency results
"""

import redis.asyncio as aioredis
import asyncio
import hashlib
import json
import time
import uuid
from typing import Any, Optional
import logging

from .config import (
    REDIS_URL,
    BOOKING_LOCK_TTL_SECONDS,
    BOOKING_LOCK_WAIT_SECONDS,
    BOOKING_LOCK_RETRY_INTERVAL,
    IDEMPOTENCY_TTL_SECONDS,
)

logger = logging.getLogger(__name__)

# Owner-checked lock scripts: KEYS[1] lock key, ARGV[1] token, ARGV[2] ttl seconds
RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

EXTEND_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
end
return 0
"""


class RedisService:
    def __init__(self, redis_url: str = REDIS_URL, redis_client: Optional[aioredis.Redis] = None):
        self.redis_url = redis_url
        self.redis_client = redis_client

    async def connect(self):
        """Connect to Redis"""
        try:
            self.redis_client = aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
            # Test connection
            await self.redis_client.ping()
            logger.info("✅ Connected to Redis")
        except Exception as e:
            logger.error(f"❌ Failed to connect to Redis: {e}")
            raise

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("📴 Disconnected from Redis")

    async def get(self, key: str) -> Optional[str]:
        return await self.redis_client.get(key)

    async def set(self, key: str, value: str, expire: Optional[int] = None) -> bool:
        """Set value in Redis with optional expiration"""
        return bool(await self.redis_client.set(key, value, ex=expire))

    async def delete(self, key: str) -> bool:
        result = await self.redis_client.delete(key)
        return result > 0

    async def exists(self, key: str) -> bool:
        return await self.redis_client.exists(key) > 0

    async def ttl(self, key: str) -> int:
        return await self.redis_client.ttl(key)

    # JSON helpers
    async def set_json(self, key: str, value: Any, expire: Optional[int] = None) -> bool:
        return await self.set(key, json.dumps(value, default=str), expire)

    async def get_json(self, key: str) -> Optional[Any]:
        value = await self.get(key)
        if value:
            return json.loads(value)
        return None

    # Lock operations for bookings
    async def acquire_lock(
        self,
        resource: str,
        timeout: int = BOOKING_LOCK_TTL_SECONDS,
        wait: float = BOOKING_LOCK_WAIT_SECONDS,
        retry_interval: float = BOOKING_LOCK_RETRY_INTERVAL
    ) -> Optional[str]:
        """
        Acquire distributed lock for resource (e.g., a vehicle)
        Retries until `wait` seconds have passed.
        Returns the lock token if acquired, None otherwise
        """
        lock_key = f"lock:{resource}"
        token = str(uuid.uuid4())
        deadline = time.monotonic() + wait

        while True:
            # SET NX EX: only one holder, released automatically on crash
            if await self.redis_client.set(lock_key, token, nx=True, ex=timeout):
                logger.info(f"🔒 Acquired lock for {resource}")
                return token
            if time.monotonic() >= deadline:
                logger.info(f"⏰ Lock still held for {resource}, giving up")
                return None
            await asyncio.sleep(retry_interval)

    async def release_lock(self, resource: str, token: str) -> bool:
        """Release lock for resource if it is still held with this token"""
        # Compare and delete in one script so an expired lock re-taken by
        # another holder is never deleted
        released = await self.redis_client.eval(RELEASE_LOCK_SCRIPT, 1, f"lock:{resource}", token)
        if not released:
            logger.warning(f"Lock for {resource} expired or taken over, not releasing")
            return False

        logger.info(f"🔓 Released lock for {resource}")
        return True

    async def extend_lock(self, resource: str, token: str, timeout: int = BOOKING_LOCK_TTL_SECONDS) -> bool:
        """Reset the lock TTL if it is still held with this token"""
        extended = await self.redis_client.eval(EXTEND_LOCK_SCRIPT, 1, f"lock:{resource}", token, timeout)
        if not extended:
            logger.warning(f"Lock for {resource} is no longer held by this token")
        return bool(extended)

    async def is_locked(self, resource: str) -> bool:
        return await self.exists(f"lock:{resource}")

    # Idempotency
    @staticmethod
    def idempotency_key(tenant_id: str, scope: str, key: str) -> str:
        digest = hashlib.sha256(f"{tenant_id}:{scope}:{key}".encode()).hexdigest()
        return f"idempotency:{digest}"

    async def get_idempotent_result(self, tenant_id: str, scope: str, key: str) -> Optional[Any]:
        return await self.get_json(self.idempotency_key(tenant_id, scope, key))

    async def store_idempotent_result(
        self,
        tenant_id: str,
        scope: str,
        key: str,
        result: Any,
        expire: int = IDEMPOTENCY_TTL_SECONDS
    ) -> bool:
        return await self.set_json(self.idempotency_key(tenant_id, scope, key), result, expire)


# Global Redis service instance
redis_service = RedisService()


# FastAPI dependency
async def get_redis():
    """Dependency for FastAPI to get Redis service"""
    if not redis_service.redis_client:
        await redis_service.connect()
    return redis_service
