"""
Tests for the cache helpers, the control panel log and the cached models

Uses the in-memory MockRedis from conftest.
"""
import json

import pytest

from cpanel.audit import CPLogger
from cpanel.cache import (
    Cache,
    delete_auth_token,
    get_auth_token,
    get_wrapped,
    set_auth_token,
)
from cpanel.exceptions import CacheError, RedirectError, SessionRequiredError
from cpanel.models import OAuthToken, User, UserGuild, parse_snowflake

from conftest import MockCachePool, MockRedis

# ============================================================
# JSON cache
# ============================================================

class TestCache:

    @pytest.mark.asyncio
    async def test_set_then_get_model(self):
        redis = MockRedis()
        cache = Cache(redis, default_ttl=120)

        assert await cache.set_json("u", User(id="1", username="a"))

        assert await cache.get_model("u", User) == User(id="1", username="a")
        assert redis.ttls["u"] == 120

    @pytest.mark.asyncio
    async def test_explicit_ttl(self):
        redis = MockRedis()

        await Cache(redis).set_json("k", {"a": 1}, ttl=30)

        assert redis.ttls["k"] == 30

    @pytest.mark.asyncio
    async def test_invalid_json_is_a_miss(self):
        redis = MockRedis()
        redis.values["k"] = "{not json"

        assert await Cache(redis).get_json("k") is None

    @pytest.mark.asyncio
    async def test_redis_failure_is_a_miss(self):
        redis = MockRedis()
        redis.fail_commands = True
        cache = Cache(redis)

        assert await cache.get_json("k") is None
        assert await cache.set_json("k", 1) is False

    @pytest.mark.asyncio
    async def test_wrong_shape_is_a_miss(self):
        redis = MockRedis()
        redis.values["k"] = json.dumps({"unrelated": True})

        assert await Cache(redis).get_model("k", User) is None

# ============================================================
# Session tokens
# ============================================================

class TestAuthToken:

    @pytest.mark.asyncio
    async def test_round_trip_and_delete(self):
        redis = MockRedis()
        token = OAuthToken(access_token="abc", token_type="bearer")

        await set_auth_token(redis, "sess", token, ttl=60)
        loaded = await get_auth_token(redis, "sess")

        assert loaded.access_token == "abc"
        assert "discord_token:sess" in redis.values

        await delete_auth_token(redis, "sess")
        assert await get_auth_token(redis, "sess") is None

    @pytest.mark.asyncio
    async def test_empty_access_token_rejected(self):
        redis = MockRedis()
        redis.values["discord_token:sess"] = json.dumps({"access_token": ""})

        assert await get_auth_token(redis, "sess") is None

    @pytest.mark.parametrize("token_type,expected", [
        ("", "Bearer"),
        ("bearer", "Bearer"),
        ("MAC", "MAC"),
        ("basic", "Basic"),
        ("Custom", "Custom"),
    ])
    def test_auth_type(self, token_type, expected):
        assert OAuthToken(access_token="x", token_type=token_type).auth_type == expected

# ============================================================
# Guild wrapping
# ============================================================

class TestGetWrapped:

    @pytest.mark.asyncio
    async def test_connected_flag(self):
        redis = MockRedis()
        redis.sets["connected_guilds"] = {"1"}
        guilds = [UserGuild(id="1", name="a"), UserGuild(id="2", name="b")]

        wrapped = await get_wrapped(guilds, redis)

        assert [(g.id, g.connected) for g in wrapped] == [("1", True), ("2", False)]

    @pytest.mark.asyncio
    async def test_empty_list(self):
        assert await get_wrapped([], MockRedis()) == []

    @pytest.mark.asyncio
    async def test_failure_raises_cache_error(self):
        redis = MockRedis()
        redis.fail_pipelines = True

        with pytest.raises(CacheError):
            await get_wrapped([UserGuild(id="1", name="a")], redis)

# ============================================================
# Control panel log
# ============================================================

class TestCPLogger:

    @pytest.mark.asyncio
    async def test_entries_capped_newest_first(self):
        pool = MockCachePool(MockRedis())
        audit = CPLogger(pool, max_entries=3)
        user = User(id="7", username="op")

        for i in range(5):
            await audit.add_entry(user, "42", f"change {i}")

        entries = await audit.get_entries("42")
        assert [e.action for e in entries] == ["change 4", "change 3", "change 2"]
        assert entries[0].author_name == "op"
        assert pool.acquired == pool.released

    @pytest.mark.asyncio
    async def test_limit_clamped_to_at_least_one(self):
        audit = CPLogger(MockCachePool(MockRedis()), max_entries=10)
        user = User(id="7", username="op")
        for i in range(4):
            await audit.add_entry(user, "42", f"change {i}")

        entries = await audit.get_entries("42", limit=-2)

        assert [e.action for e in entries] == ["change 3"]

    @pytest.mark.asyncio
    async def test_invalid_entries_skipped(self):
        redis = MockRedis()
        audit = CPLogger(MockCachePool(redis))
        await audit.add_entry(User(id="7", username="op"), "42", "ok")
        redis.lists["cp_logs:42"].insert(0, "garbage")

        entries = await audit.get_entries("42")

        assert [e.action for e in entries] == ["ok"]

    @pytest.mark.asyncio
    async def test_write_failure_raises(self):
        redis = MockRedis()
        redis.fail_pipelines = True
        audit = CPLogger(MockCachePool(redis))

        with pytest.raises(CacheError):
            await audit.add_entry(User(id="7", username="op"), "42", "x")

# ============================================================
# Ids and redirects
# ============================================================

class TestParseSnowflake:

    @pytest.mark.parametrize("value,expected", [
        ("0", 0),
        ("123456789012345678", 123456789012345678),
        ("-5", -5),
        ("9223372036854775807", 2 ** 63 - 1),
    ])
    def test_valid(self, value, expected):
        assert parse_snowflake(value) == expected

    @pytest.mark.parametrize("value", ["", "abc", "1.5", "9223372036854775808", " 1"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_snowflake(value)


def test_redirect_urls():
    assert RedirectError("noaccess").url == "/?err=noaccess"
    assert SessionRequiredError().url == "/?error=No+session"
