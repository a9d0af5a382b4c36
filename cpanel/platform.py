"""
Chat platform REST client

One DiscordClient exists per authenticated request (user OAuth token) and one
per process for the bot account. Both share the process-wide httpx client.
"""
from typing import Any, List, Optional

import httpx
import structlog
from pydantic import TypeAdapter, ValidationError

from .exceptions import PlatformAPIError
from .models import Channel, Guild, Member, User, UserGuild

logger = structlog.get_logger(__name__)

_VALID_SCHEMES = ("Bearer", "Bot", "MAC", "Basic")


class DiscordClient:
    """Minimal REST client authenticated with a single token"""

    def __init__(self, token: str, http: httpx.AsyncClient, base_url: str):
        """
        Args:
            token: Authorization header value, e.g. "Bearer abc"
            http: Shared httpx client
            base_url: API root, e.g. https://discord.com/api/v10
        """
        self.token = token
        self.http = http
        self.base_url = base_url.rstrip("/")

    async def _get(self, path: str, model_type: Any, params: Optional[dict] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = await self.http.get(
                url,
                params=params,
                headers={"Authorization": self.token},
            )
        except httpx.HTTPError as e:
            raise PlatformAPIError(f"Request to {path} failed: {e}") from e

        if response.status_code >= 400:
            raise PlatformAPIError(
                f"{path} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return TypeAdapter(model_type).validate_python(response.json())
        except (ValueError, ValidationError) as e:
            raise PlatformAPIError(f"Unexpected payload from {path}: {e}") from e

    async def current_user(self) -> User:
        return await self._get("/users/@me", User)

    async def user_guilds(self, limit: int = 100, before: str = "", after: str = "") -> List[UserGuild]:
        params = {"limit": limit}
        if before:
            params["before"] = before
        if after:
            params["after"] = after
        return await self._get("/users/@me/guilds", List[UserGuild], params=params)

    async def guild(self, guild_id: str) -> Guild:
        return await self._get(f"/guilds/{guild_id}", Guild)

    async def guild_member(self, guild_id: str, user_id: str) -> Member:
        return await self._get(f"/guilds/{guild_id}/members/{user_id}", Member)

    async def guild_channels(self, guild_id: str) -> List[Channel]:
        return await self._get(f"/guilds/{guild_id}/channels", List[Channel])


def new_session(token: str, http: httpx.AsyncClient, base_url: str) -> DiscordClient:
    """
    Build a client for an authorization string of the form "<scheme> <value>"

    Raises:
        PlatformAPIError: If the token is malformed
    """
    scheme, _, value = token.partition(" ")
    if scheme not in _VALID_SCHEMES or not value.strip():
        raise PlatformAPIError("Malformed authorization token")
    return DiscordClient(token, http, base_url)
