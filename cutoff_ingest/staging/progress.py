"""Live import progress in Redis.

Each session keeps a hash `import:{session_id}:progress` with the current
stage and row counts, expiring after a day. Publishing never fails an
import: Redis errors are logged and ignored.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from redis.exceptions import RedisError

from cutoff_ingest.config import settings

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


def progress_key(session_id: uuid.UUID) -> str:
    return f"import:{session_id}:progress"


class ProgressReporter:
    """Publishes and reads per-session progress counters."""

    def __init__(self, client: aioredis.Redis | None = None, ttl_seconds: int | None = None) -> None:
        self._client = client
        self.ttl_seconds = ttl_seconds or settings.ingest.progress_ttl_seconds

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            from cutoff_ingest.db.engine import redis_client

            self._client = redis_client
        return self._client

    async def publish(self, session_id: uuid.UUID, stage: str, done: int, total: int) -> None:
        key = progress_key(session_id)
        try:
            await self.client.hset(key, mapping={"stage": stage, "done": done, "total": total})
            await self.client.expire(key, self.ttl_seconds)
        except (RedisError, OSError) as exc:
            logger.warning("Could not publish progress for %s: %s", session_id, exc)

    async def read(self, session_id: uuid.UUID) -> dict[str, str]:
        try:
            return await self.client.hgetall(progress_key(session_id))
        except (RedisError, OSError) as exc:
            logger.warning("Could not read progress for %s: %s", session_id, exc)
            return {}


# Module-level singleton
progress_reporter = ProgressReporter()
