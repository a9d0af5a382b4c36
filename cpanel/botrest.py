"""
Client for the bot's internal REST sidecar

The sidecar answers from the bot's in-memory state, which is much cheaper
than asking the platform API. Liveness is polled in the background so page
renders can show whether the bot is up without a network call.
"""
import asyncio

import httpx
import structlog
from pydantic import ValidationError

from .exceptions import BotRestError
from .models import Member

logger = structlog.get_logger(__name__)


class BotRestClient:

    def __init__(self, base_url: str, http: httpx.AsyncClient):
        self.base_url = base_url.rstrip("/")
        self.http = http
        self.running = False

    async def get_bot_member(self, guild_id: str) -> Member:
        """
        Fetch the bot's own member record for a guild

        Raises:
            BotRestError: On any transport, status or payload failure
        """
        try:
            response = await self.http.get(f"{self.base_url}/{guild_id}/botmember")
        except httpx.HTTPError as e:
            raise BotRestError(f"botrest unreachable: {e}") from e

        if response.status_code != 200:
            raise BotRestError(
                f"botrest returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return Member.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise BotRestError(f"botrest returned an invalid member: {e}") from e

    async def ping(self) -> bool:
        try:
            response = await self.http.get(f"{self.base_url}/ping")
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    async def poll_running(self, interval: float) -> None:
        """Refresh the running flag until cancelled"""
        while True:
            running = await self.ping()
            if running != self.running:
                logger.info("botrest_status_changed", running=running)
            self.running = running
            await asyncio.sleep(interval)
