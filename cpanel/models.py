"""
Pydantic models for chat platform entities and cached session data
"""
import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

_SNOWFLAKE_RE = re.compile(r"^[+-]?\d+$")
_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1


def parse_snowflake(value: str) -> int:
    """Parse a decimal id that must fit in a signed 64 bit integer"""
    if not isinstance(value, str) or not _SNOWFLAKE_RE.match(value):
        raise ValueError(f"Invalid id: {value!r}")
    parsed = int(value)
    if parsed < _INT64_MIN or parsed > _INT64_MAX:
        raise ValueError(f"Id out of range: {value!r}")
    return parsed


class PlatformModel(BaseModel):
    """Platform payloads carry many fields we never read"""
    model_config = ConfigDict(extra="ignore")

# ============================================================
# Session
# ============================================================

class OAuthToken(PlatformModel):
    """OAuth2 token stored in redis under discord_token:<session id>"""
    access_token: str = Field(..., min_length=1)
    token_type: str = ""
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None

    @property
    def auth_type(self) -> str:
        """Normalized authorization scheme, defaults to Bearer"""
        lowered = self.token_type.lower()
        if lowered in ("", "bearer"):
            return "Bearer"
        if lowered == "mac":
            return "MAC"
        if lowered == "basic":
            return "Basic"
        return self.token_type

# ============================================================
# Users and guilds
# ============================================================

class User(PlatformModel):
    id: str
    username: str
    discriminator: Optional[str] = None
    avatar: Optional[str] = None


class UserGuild(PlatformModel):
    """Guild as seen from the member's guild list"""
    id: str
    name: str
    icon: Optional[str] = None
    owner: bool = False
    permissions: int = 0


class WrappedGuild(UserGuild):
    """UserGuild plus whether the bot is present in it"""
    connected: bool = False


class Role(PlatformModel):
    id: str
    name: str = ""
    permissions: int = 0
    position: int = 0


class Channel(PlatformModel):
    id: str
    name: str = ""
    type: int = 0
    position: int = 0


class Guild(PlatformModel):
    """
    Full guild record

    A stub built from membership data only carries id and name; owner_id is
    empty until the full record has been fetched.
    """
    id: str
    name: str = ""
    icon: Optional[str] = None
    owner_id: str = ""
    region: str = ""
    roles: List[Role] = Field(default_factory=list)
    channels: List[Channel] = Field(default_factory=list)

    @property
    def is_full(self) -> bool:
        return self.owner_id != ""

    def role(self, role_id: str) -> Optional[Role]:
        for role in self.roles:
            if role.id == role_id:
                return role
        return None

    def channel(self, channel_id: str) -> Optional[Channel]:
        for channel in self.channels:
            if channel.id == channel_id:
                return channel
        return None


class Member(PlatformModel):
    """Guild member; only the role ids matter to the panel"""
    user: Optional[User] = None
    nick: Optional[str] = None
    roles: List[str] = Field(default_factory=list)
