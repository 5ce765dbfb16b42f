"""Idempotency marker for ledger commits keyed by request id."""

import redis.asyncio as redis
from redis.asyncio import Redis

from creditledger.settings import Settings, get_settings


def build_commit_key(request_id: str) -> str:
    """Build idempotency key for a request's commit.

    Returns:
        Key string: "ledger-commit:{request_id}"
    """
    return f"ledger-commit:{request_id}"


def create_redis(settings: Settings | None = None) -> Redis:
    """Redis client for the configured redis_url; connects lazily."""
    settings = settings or get_settings()
    return redis.from_url(settings.redis_url)


class CommitIdempotency:
    """Remembers which request ids already committed their buffer."""

    def __init__(
        self,
        client: Redis,
        ttl_seconds: int | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._redis = client
        if ttl_seconds is None:
            ttl_seconds = (settings or get_settings()).commit_idempotency_ttl_seconds
        self._ttl_seconds = ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "CommitIdempotency":
        """Marker backed by a client for settings.redis_url."""
        settings = settings or get_settings()
        return cls(create_redis(settings), settings=settings)

    async def already_committed(self, request_id: str) -> bool:
        """Check if the request's buffer was already committed."""
        result = await self._redis.get(build_commit_key(request_id))
        return result is not None

    async def mark_committed(self, request_id: str) -> None:
        """Mark the request's buffer as committed with TTL."""
        await self._redis.setex(build_commit_key(request_id), self._ttl_seconds, "1")
