"""
Per-guild core settings

All routes live under /manage/{server} and require a session plus admin
access to the guild. The page and the save additionally load the full
guild, the bot's member and the channel list so form fields can be checked
against them.
"""
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import Field

from ..cache import Cache
from ..context import RequestContext, TemplateData, error_alert
from ..controllers import SimpleConfigSaver, api_handler, controller_handler, simple_config_saver_handler
from ..dependencies import (
    require_active_guild,
    require_bot_member,
    require_full_guild,
    require_guild_admin,
    require_guild_channels,
    require_perms,
    require_session,
    resolve_active_guild,
)
from ..exceptions import CacheError, PublicError
from ..forms import ValidChannel, ValidRole
from ..models import Guild
from ..permissions import PERMISSION_EMBED_LINKS, PERMISSION_MANAGE_ROLES, PERMISSION_SEND_MESSAGES

router = APIRouter(
    prefix="/manage/{server}",
    tags=["Settings"],
    dependencies=[
        Depends(require_session),
        Depends(resolve_active_guild),
        Depends(require_active_guild),
        Depends(require_guild_admin),
    ],
)

GUILD_DEPENDENCIES = [
    Depends(require_full_guild),
    Depends(require_bot_member),
    Depends(require_guild_channels),
    Depends(require_perms(PERMISSION_SEND_MESSAGES, PERMISSION_EMBED_LINKS, PERMISSION_MANAGE_ROLES)),
]


def core_config_key(guild_id: str) -> str:
    return f"core_config:{guild_id}"


class CoreConfig(SimpleConfigSaver):
    """Settings every guild has regardless of enabled plugins"""

    config_name = "Core"

    prefix: str = Field(default="-", min_length=1, max_length=100)
    log_channel: Annotated[str, ValidChannel(allow_empty=True)] = ""
    mod_roles: Annotated[List[str], ValidRole(allow_empty=True)] = Field(default_factory=list)

    def validate_for_guild(self, guild: Optional[Guild], tmpl: TemplateData) -> bool:
        if any(c.isspace() for c in self.prefix):
            tmpl.add_alerts(error_alert("The prefix can't contain whitespace"))
            return False
        return True

    async def save(self, client, guild_id: str) -> None:
        if client is None:
            raise CacheError("No cache client for this request")
        await client.set(core_config_key(guild_id), self.model_dump_json())


async def load_core_config(ctx: RequestContext) -> CoreConfig:
    if ctx.redis is None:
        raise PublicError("Settings are unavailable right now, try again in a minute")

    config = await Cache(ctx.redis).get_model(core_config_key(ctx.guild_id), CoreConfig)
    return config or CoreConfig()

# ============================================================
# Handlers
# ============================================================

async def handle_core_page(request: Request, ctx: RequestContext) -> Optional[TemplateData]:
    ctx.template_data["config"] = await load_core_config(ctx)
    return None


async def handle_core_json(request: Request, ctx: RequestContext):
    config = await load_core_config(ctx)
    return config.model_dump()


async def handle_core_reset(request: Request, ctx: RequestContext) -> None:
    await CoreConfig().save(ctx.redis, ctx.guild_id)


async def handle_cp_logs(request: Request, ctx: RequestContext):
    limit = request.query_params.get("limit")
    try:
        limit = int(limit) if limit else None
    except ValueError:
        raise PublicError("limit must be a number") from None

    entries = await request.app.state.audit.get_entries(ctx.guild_id, limit)
    return [entry.model_dump(mode="json") for entry in entries]


core_page = controller_handler(handle_core_page, "settings.html")

router.add_api_route("/core", core_page, methods=["GET"], dependencies=GUILD_DEPENDENCIES)
router.add_api_route(
    "/core",
    simple_config_saver_handler(CoreConfig, core_page),
    methods=["POST"],
    dependencies=GUILD_DEPENDENCIES,
)
router.add_api_route("/core/json", api_handler(handle_core_json), methods=["GET"])
router.add_api_route(
    "/core/reset",
    api_handler(handle_core_reset, log_msg="Reset Core Config."),
    methods=["POST"],
)
router.add_api_route("/cplogs", api_handler(handle_cp_logs), methods=["GET"])
