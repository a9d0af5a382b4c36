"""
Tests for the platform REST client and the bot sidecar client

Outbound HTTP is served by httpx.MockTransport handlers.
"""
import asyncio

import httpx
import pytest

from cpanel.botrest import BotRestClient
from cpanel.exceptions import BotRestError, PlatformAPIError
from cpanel.platform import DiscordClient, new_session

API = "https://discord.test/api/v10"
BOTREST = "http://botrest.test"


def http_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))

# ============================================================
# Platform API
# ============================================================

class TestDiscordClient:

    @pytest.mark.asyncio
    async def test_current_user_sends_token(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"id": "1", "username": "op", "extra": "ignored"})

        async with http_client(handler) as http:
            user = await DiscordClient("Bearer abc", http, API).current_user()

        assert user.username == "op"
        assert seen == {"auth": "Bearer abc", "url": f"{API}/users/@me"}

    @pytest.mark.asyncio
    async def test_user_guilds_limit(self):
        def handler(request):
            assert request.url.params["limit"] == "100"
            return httpx.Response(200, json=[{"id": "5", "name": "g", "owner": True, "permissions": 8}])

        async with http_client(handler) as http:
            guilds = await DiscordClient("Bearer abc", http, API).user_guilds(limit=100)

        assert guilds[0].owner is True
        assert guilds[0].permissions == 8

    @pytest.mark.asyncio
    async def test_guild_member_path(self):
        def handler(request):
            assert request.url.path == "/api/v10/guilds/5/members/9"
            return httpx.Response(200, json={"roles": ["r1"]})

        async with http_client(handler) as http:
            member = await DiscordClient("Bot t", http, API).guild_member("5", "9")

        assert member.roles == ["r1"]

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        async with http_client(lambda request: httpx.Response(403, json={})) as http:
            with pytest.raises(PlatformAPIError) as exc_info:
                await DiscordClient("Bot t", http, API).guild("5")

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with http_client(handler) as http:
            with pytest.raises(PlatformAPIError):
                await DiscordClient("Bot t", http, API).guild_channels("5")

    @pytest.mark.asyncio
    async def test_bad_payload_raises(self):
        async with http_client(lambda request: httpx.Response(200, json={"no": "id"})) as http:
            with pytest.raises(PlatformAPIError):
                await DiscordClient("Bot t", http, API).guild("5")


class TestNewSession:

    @pytest.mark.parametrize("token", ["Bearer abc", "Bot abc", "MAC abc", "Basic abc"])
    def test_valid_schemes(self, token):
        assert new_session(token, None, API).token == token

    @pytest.mark.parametrize("token", ["", "abc", "Bearer ", "Token abc"])
    def test_malformed_tokens(self, token):
        with pytest.raises(PlatformAPIError):
            new_session(token, None, API)

# ============================================================
# Bot sidecar
# ============================================================

class TestBotRestClient:

    @pytest.mark.asyncio
    async def test_get_bot_member(self):
        def handler(request):
            assert str(request.url) == f"{BOTREST}/5/botmember"
            return httpx.Response(200, json={"roles": ["r1", "r2"]})

        async with http_client(handler) as http:
            member = await BotRestClient(BOTREST, http).get_bot_member("5")

        assert member.roles == ["r1", "r2"]

    @pytest.mark.asyncio
    async def test_non_200_raises(self):
        async with http_client(lambda request: httpx.Response(404)) as http:
            with pytest.raises(BotRestError):
                await BotRestClient(BOTREST, http).get_bot_member("5")

    @pytest.mark.asyncio
    async def test_poll_updates_running_flag(self):
        async with http_client(lambda request: httpx.Response(200, text="pong")) as http:
            botrest = BotRestClient(BOTREST, http)
            task = asyncio.create_task(botrest.poll_running(1.0))
            for _ in range(100):
                if botrest.running:
                    break
                await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert botrest.running is True
