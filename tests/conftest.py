"""
Shared fixtures: an in-memory redis, a pool handing it out, and fake
platform / bot sidecar clients
"""
import io
import json
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from cpanel.audit import CPLogger
from cpanel.config import Settings
from cpanel.exceptions import BotRestError, CacheError, PlatformAPIError
from cpanel.lifecycle import start_accepting_requests
from cpanel.main import create_app
from cpanel.models import Channel, Guild, Member, Role, User, UserGuild
from cpanel.permissions import (
    PERMISSION_EMBED_LINKS,
    PERMISSION_MANAGE_ROLES,
    PERMISSION_SEND_MESSAGES,
)

SESSION_ID = "test-session"
ACCESS_TOKEN = "user-access-token"
AUTH_HEADER = f"Bearer {ACCESS_TOKEN}"
GUILD_ID = "111111111111111111"
OTHER_GUILD_ID = "222222222222222222"
BOT_ID = "900000000000000000"
BOT_ROLE_ID = "333333333333333333"
CHANNEL_ID = "444444444444444444"

# ============================================================
# Redis
# ============================================================

class MockRedis:
    """In-memory stand-in for the redis.asyncio commands the panel uses"""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.sets: Dict[str, set] = {}
        self.lists: Dict[str, List[str]] = {}
        self.fail_commands = False
        self.fail_pipelines = False
        self.closed = False

    def _check(self):
        if self.fail_commands:
            raise RedisConnectionError("redis is down")

    async def get(self, key):
        self._check()
        return self.values.get(key)

    async def set(self, key, value):
        self._check()
        self.values[key] = value
        return True

    async def setex(self, key, ttl, value):
        self._check()
        self.values[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys):
        self._check()
        deleted = 0
        for key in keys:
            for store in (self.values, self.sets, self.lists):
                if key in store:
                    del store[key]
                    deleted += 1
        return deleted

    async def sadd(self, key, *members):
        self._check()
        self.sets.setdefault(key, set()).update(members)
        return len(members)

    async def sismember(self, key, member):
        self._check()
        return int(member in self.sets.get(key, set()))

    async def lpush(self, key, *values):
        self._check()
        lst = self.lists.setdefault(key, [])
        for value in values:
            lst.insert(0, value)
        return len(lst)

    async def ltrim(self, key, start, end):
        self._check()
        self.lists[key] = _redis_range(self.lists.get(key, []), start, end)
        return True

    async def lrange(self, key, start, end):
        self._check()
        return _redis_range(self.lists.get(key, []), start, end)

    def pipeline(self, transaction=True):
        return MockPipeline(self)

    async def aclose(self):
        self.closed = True


def _redis_range(items, start, end):
    if end < 0:
        end = len(items) + end
    return list(items[start:end + 1])


class MockPipeline:

    def __init__(self, redis):
        self.redis = redis
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __getattr__(self, name):
        def queue(*args):
            self.commands.append((name, args))
            return self
        return queue

    async def execute(self):
        if self.redis.fail_pipelines:
            raise RedisConnectionError("pipeline failed")
        results = []
        for name, args in self.commands:
            results.append(await getattr(self.redis, name)(*args))
        self.commands = []
        return results


class MockCachePool:
    """CachePool double that always hands out the same MockRedis"""

    def __init__(self, redis: MockRedis):
        self.redis = redis
        self.unavailable = False
        self.acquired = 0
        self.released = 0

    async def acquire(self):
        if self.unavailable:
            raise CacheError("pool exhausted")
        self.acquired += 1
        return self.redis

    async def release(self, client):
        self.released += 1

    @asynccontextmanager
    async def client(self):
        client = await self.acquire()
        try:
            yield client
        finally:
            await self.release(client)

    async def close(self):
        pass

# ============================================================
# Platform and bot sidecar
# ============================================================

class FakeSession:
    """Per-user platform client"""

    def __init__(self, token: str, user: User, guilds: List[UserGuild]):
        self.token = token
        self.user = user
        self.guilds = guilds
        self.fail_user = False
        self.fail_guilds = False
        self.calls = []

    async def current_user(self):
        self.calls.append("current_user")
        if self.fail_user:
            raise PlatformAPIError("/users/@me returned HTTP 401", status_code=401)
        return self.user

    async def user_guilds(self, limit=100, before="", after=""):
        self.calls.append(("user_guilds", limit))
        if self.fail_guilds:
            raise PlatformAPIError("/users/@me/guilds returned HTTP 500", status_code=500)
        return self.guilds


class FakeBot:
    """Bot-authenticated platform client"""

    def __init__(self):
        self.guilds: Dict[str, Guild] = {}
        self.members: Dict[str, Member] = {}
        self.channels: Dict[str, List[Channel]] = {}
        self.calls = []

    async def guild(self, guild_id):
        self.calls.append(("guild", guild_id))
        if guild_id not in self.guilds:
            raise PlatformAPIError(f"/guilds/{guild_id} returned HTTP 404", status_code=404)
        return self.guilds[guild_id]

    async def guild_member(self, guild_id, user_id):
        self.calls.append(("guild_member", guild_id, user_id))
        if guild_id not in self.members:
            raise PlatformAPIError("Unknown member", status_code=404)
        return self.members[guild_id]

    async def guild_channels(self, guild_id):
        self.calls.append(("guild_channels", guild_id))
        if guild_id not in self.channels:
            raise PlatformAPIError("Missing access", status_code=403)
        return self.channels[guild_id]


class FakeBotRest:

    def __init__(self):
        self.running = True
        self.members: Dict[str, Member] = {}
        self.calls = []

    async def get_bot_member(self, guild_id):
        self.calls.append(guild_id)
        if guild_id not in self.members:
            raise BotRestError("botrest returned HTTP 404", status_code=404)
        return self.members[guild_id]

# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def settings():
    return Settings(
        host="panel.example.com",
        bot_id=BOT_ID,
        client_id="client-id",
        environment="development",
        json_logs=False,
    )


@pytest.fixture
def mock_redis():
    redis = MockRedis()
    redis.sets["connected_guilds"] = {GUILD_ID}
    return redis


@pytest.fixture
def cache_pool(mock_redis):
    return MockCachePool(mock_redis)


@pytest.fixture
def user():
    return User(id="555", username="operator")


@pytest.fixture
def user_guilds():
    return [
        UserGuild(id=GUILD_ID, name="Test Guild", owner=True),
        UserGuild(id="666666666666666666", name="Just Visiting", permissions=PERMISSION_SEND_MESSAGES),
    ]


@pytest.fixture
def full_guild():
    return Guild(
        id=GUILD_ID,
        name="Test Guild",
        owner_id="555",
        region="eu-west",
        roles=[
            Role(id=GUILD_ID, name="@everyone", permissions=PERMISSION_SEND_MESSAGES, position=0),
            Role(id=BOT_ROLE_ID, name="Bot", permissions=PERMISSION_EMBED_LINKS | PERMISSION_MANAGE_ROLES, position=3),
        ],
    )


@pytest.fixture
def session(user, user_guilds):
    return FakeSession(AUTH_HEADER, user, user_guilds)


@pytest.fixture
def bot(full_guild):
    bot = FakeBot()
    bot.guilds[GUILD_ID] = full_guild
    bot.channels[GUILD_ID] = [
        Channel(id=CHANNEL_ID, name="logs"),
        Channel(id="777777777777777777", name="general"),
    ]
    return bot


@pytest.fixture
def botrest():
    botrest = FakeBotRest()
    botrest.members[GUILD_ID] = Member(roles=[BOT_ROLE_ID])
    return botrest


@pytest.fixture
def access_log():
    return io.StringIO()


@pytest.fixture
def app(settings, cache_pool, session, bot, botrest, access_log):
    start_accepting_requests()
    sessions = []

    def session_factory(token):
        sessions.append(token)
        session.token = token
        return session

    app = create_app(
        settings,
        cache_pool=cache_pool,
        session_factory=session_factory,
        bot=bot,
        botrest=botrest,
        audit=CPLogger(cache_pool, max_entries=settings.cp_log_max_entries),
        access_log_stream=access_log,
    )
    app.state.created_sessions = sessions
    return app


@pytest.fixture
def client(app):
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def logged_in(client, mock_redis):
    """Client whose cookie maps to a stored OAuth token"""
    mock_redis.values[f"discord_token:{SESSION_ID}"] = json.dumps({
        "access_token": ACCESS_TOKEN,
        "token_type": "bearer",
    })
    client.cookies.set("cpanel-session", SESSION_ID)
    return client


def audit_entries(mock_redis: MockRedis, guild_id: Optional[str] = GUILD_ID) -> List[dict]:
    return [json.loads(raw) for raw in mock_redis.lists.get(f"cp_logs:{guild_id}", [])]
