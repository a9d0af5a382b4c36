"""
Request-scoped context threaded through the pipeline

Every stage reads and extends the RequestContext stored on request.state.
Fields start out empty and are only ever filled in or replaced by a more
complete value; the active guild in particular is never downgraded from a
full record to a stub.
"""
from dataclasses import dataclass, field
from typing import Any, List, Optional

from pydantic import BaseModel
from starlette.requests import Request
import structlog

from .models import Channel, Guild, Member, Role, User, UserGuild, WrappedGuild
from .permissions import can_manage_guild

logger = structlog.get_logger(__name__)

# ============================================================
# Alerts and template data
# ============================================================

ALERT_DANGER = "danger"
ALERT_SUCCESS = "success"
ALERT_WARNING = "warning"


@dataclass(frozen=True)
class Alert:
    style: str
    message: str


def _join(parts) -> str:
    return "".join(str(p) for p in parts)


def error_alert(*parts) -> Alert:
    return Alert(ALERT_DANGER, _join(parts))


def success_alert(*parts) -> Alert:
    return Alert(ALERT_SUCCESS, _join(parts))


def warning_alert(*parts) -> Alert:
    return Alert(ALERT_WARNING, _join(parts))


class TemplateData(dict):
    """Render data for the page plus the alerts queued for display"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.setdefault("alerts", [])

    @property
    def alerts(self) -> List[Alert]:
        return self["alerts"]

    def add_alerts(self, *alerts: Alert) -> "TemplateData":
        self["alerts"].extend(alerts)
        return self

# ============================================================
# Request context
# ============================================================

@dataclass
class RequestContext:
    template_data: TemplateData = field(default_factory=TemplateData)

    redis: Optional[Any] = None
    session: Optional[Any] = None

    user: Optional[User] = None
    guilds: Optional[List[UserGuild]] = None
    wrapped_guilds: Optional[List[WrappedGuild]] = None
    managed_guilds: Optional[List[WrappedGuild]] = None

    current_user_guild: Optional[UserGuild] = None
    active_guild: Optional[Guild] = None
    channels: Optional[List[Channel]] = None

    bot_member: Optional[Member] = None
    highest_bot_role: Optional[Role] = None
    bot_permissions: Optional[int] = None

    parsed_form: Optional[BaseModel] = None
    form_ok: bool = False

    @property
    def is_admin(self) -> bool:
        """The user owns or manages the active guild"""
        if self.current_user_guild is None:
            return False
        return can_manage_guild(self.current_user_guild)

    @property
    def guild_id(self) -> Optional[str]:
        return self.active_guild.id if self.active_guild else None

    def set_active_guild(self, guild: Guild, user_guild: Optional[UserGuild] = None) -> bool:
        """
        Make guild the active guild unless that would replace a full record
        with a stub

        Returns:
            True if the context now references guild
        """
        current = self.active_guild
        if current is not None and current.is_full and not guild.is_full:
            logger.warning("active_guild_downgrade_refused", guild_id=current.id)
            return False

        self.active_guild = guild
        self.template_data["active_guild"] = guild
        if user_guild is not None:
            self.current_user_guild = user_guild
            self.template_data["is_admin"] = self.is_admin
        return True

    def upgrade_active_guild(self, full: Guild) -> Guild:
        """Replace the active stub with a snapshot carrying the full record's owner, region and roles"""
        upgraded = self.active_guild.model_copy(update={
            "owner_id": full.owner_id,
            "region": full.region,
            "roles": list(full.roles),
        })
        self.set_active_guild(upgraded)
        return upgraded

    def set_channels(self, channels: List[Channel]) -> None:
        self.channels = channels
        self.set_active_guild(self.active_guild.model_copy(update={"channels": list(channels)}))

    def set_bot_permissions(self, permissions: int, highest_role: Optional[Role]) -> None:
        self.bot_permissions = permissions
        self.highest_bot_role = highest_role
        self.template_data["bot_permissions"] = permissions
        self.template_data["highest_role"] = highest_role

    def set_form(self, form: Optional[BaseModel], ok: bool) -> None:
        self.parsed_form = form
        self.form_ok = ok

    def take_form(self) -> Optional[BaseModel]:
        """Hand the parsed form to its single consumer"""
        form, self.parsed_form = self.parsed_form, None
        return form


def get_context(request: Request) -> RequestContext:
    """Context of the current request, created on first access"""
    ctx = getattr(request.state, "ctx", None)
    if ctx is None:
        ctx = RequestContext()
        request.state.ctx = ctx
    return ctx
