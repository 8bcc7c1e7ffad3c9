"""Async Redis client for the council drain stream and event channel."""

from redis.asyncio import ConnectionPool, Redis

from .config import Settings


def create_redis_client(settings: Settings) -> Redis:
    """Build a Redis client with its own pool. Call once per process."""
    pool = ConnectionPool.from_url(settings.redis_url, max_connections=20, decode_responses=True)
    return Redis(connection_pool=pool)
