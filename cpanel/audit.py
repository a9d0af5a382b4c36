"""
Control panel audit log

Records "who changed which config, when, on which guild". Entries live in a
capped redis list per guild, newest first.

Usage:
    audit = CPLogger(cache_pool, max_entries=100)
    await audit.add_entry(user, guild_id, "Updated Core Config.")
"""
import json
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ValidationError
from redis.exceptions import RedisError
import structlog

from .exceptions import CacheError
from .models import User

logger = structlog.get_logger(__name__)


def cp_log_key(guild_id: str) -> str:
    return f"cp_logs:{guild_id}"


class AuditEntry(BaseModel):
    timestamp: datetime
    guild_id: str
    author_id: str
    author_name: str
    action: str


class CPLogger:
    """Audit log writer and reader backed by the shared cache pool"""

    def __init__(self, cache_pool, max_entries: int = 100):
        self.cache_pool = cache_pool
        self.max_entries = max_entries

    async def add_entry(self, user: User, guild_id: str, action: str) -> AuditEntry:
        """
        Append an entry to a guild's control panel log

        Raises:
            CacheError: If the entry could not be stored
        """
        entry = AuditEntry(
            timestamp=datetime.now(timezone.utc),
            guild_id=guild_id,
            author_id=user.id,
            author_name=user.username,
            action=action,
        )

        key = cp_log_key(guild_id)
        try:
            async with self.cache_pool.client() as client:
                async with client.pipeline(transaction=True) as pipe:
                    pipe.lpush(key, entry.model_dump_json())
                    pipe.ltrim(key, 0, self.max_entries - 1)
                    await pipe.execute()
        except (RedisError, OSError) as e:
            raise CacheError(f"Failed writing control panel log: {e}") from e

        logger.info(
            "cp_log_entry_added",
            guild_id=guild_id,
            user_id=user.id,
            action=action,
        )
        return entry

    async def get_entries(self, guild_id: str, limit: Optional[int] = None) -> List[AuditEntry]:
        """Most recent entries first; unreadable entries are skipped"""
        limit = max(1, min(limit or self.max_entries, self.max_entries))
        try:
            async with self.cache_pool.client() as client:
                raw_entries = await client.lrange(cp_log_key(guild_id), 0, limit - 1)
        except (RedisError, OSError) as e:
            raise CacheError(f"Failed reading control panel log: {e}") from e

        entries = []
        for raw in raw_entries:
            try:
                entries.append(AuditEntry.model_validate(json.loads(raw)))
            except (ValueError, ValidationError) as e:
                logger.warning("cp_log_entry_invalid", guild_id=guild_id, error=str(e))
        return entries
