"""Per-conversation mutual exclusion on Redis, shared by all app instances."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from uuid import UUID

import redis.asyncio as aioredis
from redis.exceptions import LockError

from staffline.exceptions import ExternalServiceError
from staffline.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class ConversationLocks:
    """Hands out a Redis lock per conversation id."""

    def __init__(
        self,
        redis: aioredis.Redis,
        timeout: Optional[float] = None,
        blocking_timeout: Optional[float] = None,
    ):
        self.redis = redis
        self.timeout = timeout or settings.CONVERSATION_LOCK_TIMEOUT_SECONDS
        self.blocking_timeout = blocking_timeout or settings.CONVERSATION_LOCK_TIMEOUT_SECONDS

    @asynccontextmanager
    async def hold(self, conversation_id: UUID) -> AsyncIterator[None]:
        """Hold the conversation's lock for the duration of the block."""
        lock = self.redis.lock(
            f"lock:conversation:{conversation_id}",
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout,
        )
        if not await lock.acquire():
            logger.warning("Timed out waiting for conversation lock %s", conversation_id)
            raise ExternalServiceError("Conversation is busy, try again")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Expired while held; the next holder already owns it
                logger.warning("Conversation lock %s expired before release", conversation_id)
