"""
Redis access for the request pipeline

Provides:
- A connection pool handing out one dedicated client per request
- JSON get/set helpers that log and swallow cache failures
- OAuth token storage keyed by session id
- Guild wrapping against the set of guilds the bot is connected to
"""
import json
from contextlib import asynccontextmanager
from typing import Any, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from pydantic import TypeAdapter, ValidationError
from pydantic_core import to_jsonable_python
import structlog

from .exceptions import CacheError
from .metrics import track_cache_connection_error, track_cache_lookup
from .models import OAuthToken, UserGuild, WrappedGuild

logger = structlog.get_logger(__name__)

TOKEN_KEY_PREFIX = "discord_token:"
CONNECTED_GUILDS_KEY = "connected_guilds"


def user_key(token: str) -> str:
    return f"{token}:user"


def guilds_key(token: str) -> str:
    return f"{token}:guilds"


def token_key(session_id: str) -> str:
    return TOKEN_KEY_PREFIX + session_id


class CachePool:
    """Pool of redis connections; each request borrows exactly one"""

    def __init__(self, redis_url: str, max_connections: int = 50, socket_timeout: float = 5.0):
        """
        Args:
            redis_url: Redis connection URL (e.g., redis://localhost:6379/0)
            max_connections: Upper bound on pooled connections
            socket_timeout: Seconds before a redis command or connect attempt fails
        """
        self.pool = redis.ConnectionPool.from_url(
            redis_url,
            max_connections=max_connections,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            decode_responses=True,
        )

    async def acquire(self) -> redis.Redis:
        """
        Borrow a client bound to a single pooled connection

        Raises:
            CacheError: If no connection could be established
        """
        client = redis.Redis(connection_pool=self.pool, single_connection_client=True)
        try:
            await client.initialize()
        except (RedisError, OSError) as e:
            track_cache_connection_error()
            await client.aclose()
            raise CacheError(f"Failed retrieving client from redis pool: {e}") from e
        return client

    async def release(self, client: redis.Redis) -> None:
        """Return the client's connection to the pool"""
        await client.aclose()

    @asynccontextmanager
    async def client(self):
        client = await self.acquire()
        try:
            yield client
        finally:
            await self.release(client)

    async def close(self) -> None:
        await self.pool.disconnect()


class Cache:
    """JSON cache operations on a borrowed client"""

    def __init__(self, client, default_ttl: int = 86400):
        self.client = client
        self.default_ttl = default_ttl

    async def get_json(self, key: str) -> Optional[Any]:
        """
        Get a cached JSON value

        Returns:
            Decoded value, or None on a miss, a redis failure or invalid JSON
        """
        try:
            cached = await self.client.get(key)
        except (RedisError, OSError) as e:
            logger.error("cache_get_error", key=key, error=str(e))
            return None

        if cached is None:
            track_cache_lookup(hit=False)
            logger.debug("cache_miss", key=key)
            return None

        try:
            value = json.loads(cached)
        except ValueError as e:
            logger.warning("cache_decode_error", key=key, error=str(e))
            return None

        track_cache_lookup(hit=True)
        logger.debug("cache_hit", key=key)
        return value

    async def get_model(self, key: str, model_type: Any) -> Optional[Any]:
        """Get a cached value validated as model_type (a model or List[model])"""
        raw = await self.get_json(key)
        if raw is None:
            return None
        try:
            return TypeAdapter(model_type).validate_python(raw)
        except ValidationError as e:
            logger.warning("cache_invalid_value", key=key, error=str(e))
            return None

    async def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Cache a value as JSON

        Args:
            key: Cache key
            value: Value to cache; pydantic models are dumped in JSON mode
            ttl: Seconds to live; the pool-wide default applies when omitted
        """
        ttl = ttl or self.default_ttl
        try:
            await self.client.setex(key, ttl, json.dumps(to_jsonable_python(value)))
        except (RedisError, OSError) as e:
            logger.error("cache_set_error", key=key, error=str(e))
            return False
        logger.debug("cache_set", key=key, ttl=ttl)
        return True

    async def delete(self, key: str) -> bool:
        try:
            deleted = await self.client.delete(key)
        except (RedisError, OSError) as e:
            logger.error("cache_delete_error", key=key, error=str(e))
            return False
        logger.debug("cache_delete", key=key, deleted=deleted)
        return True

# ============================================================
# Session tokens
# ============================================================

async def get_auth_token(client, session_id: str) -> Optional[OAuthToken]:
    """Token stored for a session cookie, or None when missing or malformed"""
    return await Cache(client).get_model(token_key(session_id), OAuthToken)


async def set_auth_token(client, session_id: str, token: OAuthToken, ttl: int) -> bool:
    return await Cache(client).set_json(token_key(session_id), token, ttl)


async def delete_auth_token(client, session_id: str) -> bool:
    return await Cache(client).delete(token_key(session_id))

# ============================================================
# Guild wrapping
# ============================================================

async def get_wrapped(guilds: List[UserGuild], client) -> List[WrappedGuild]:
    """
    Attach the bot's presence to each guild of a user's guild list

    Raises:
        CacheError: If the connected guild lookup fails
    """
    if not guilds:
        return []

    try:
        async with client.pipeline(transaction=False) as pipe:
            for guild in guilds:
                pipe.sismember(CONNECTED_GUILDS_KEY, guild.id)
            results = await pipe.execute()
    except (RedisError, OSError) as e:
        raise CacheError(f"Failed checking connected guilds: {e}") from e

    return [
        WrappedGuild(**guild.model_dump(), connected=bool(connected))
        for guild, connected in zip(guilds, results)
    ]
