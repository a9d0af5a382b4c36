"""
Route dependencies that finish building the request context

These stages need the matched route (the {server} path parameter), so they
run as FastAPI dependencies after the middleware chain. Declare them on a
router in this order:

    require_session -> resolve_active_guild -> require_active_guild ->
    require_guild_admin -> require_full_guild -> require_bot_member ->
    require_guild_channels -> require_perms(...)

Failing guards raise RedirectError, turned into a 307 by the handler
registered in main.create_app.
"""
from typing import Optional

from fastapi import Request
import structlog

from .context import RequestContext, error_alert, get_context, success_alert
from .exceptions import BotRestError, ConsoleException, RedirectError, SessionRequiredError
from .metrics import track_enrichment_failure
from .models import Guild, Member, parse_snowflake
from .permissions import aggregate_bot_permissions, describe_permissions

logger = structlog.get_logger(__name__)

# ============================================================
# Session guard
# ============================================================

async def require_session(request: Request) -> RequestContext:
    """
    Protected routes need a session and, when the browser sends one, a
    same-site Origin header
    """
    ctx = get_context(request)
    if ctx.session is None:
        raise SessionRequiredError()

    origin = request.headers.get("Origin")
    if origin:
        expected = request.app.state.settings.expected_origin
        if origin.lower() != expected.lower():
            logger.warning("bad_origin", origin=origin, expected=expected)
            raise RedirectError("bad_origin")

    return ctx

# ============================================================
# Active guild
# ============================================================

async def _fetch_full_guild(request: Request, guild_id: str) -> Optional[Guild]:
    try:
        return await request.app.state.bot.guild(guild_id)
    except ConsoleException as e:
        logger.error("active_guild_fetch_failed", guild_id=guild_id, error=str(e))
        track_enrichment_failure("active_guild")
        return None


async def resolve_active_guild(request: Request) -> None:
    """
    Resolve the {server} path parameter into the active guild

    Membership data gives a stub (id and name only) without a network call;
    guilds the user is not a member of are fetched in full through the bot.
    """
    raw_id = request.path_params.get("server")
    if raw_id is None:
        return

    try:
        parse_snowflake(raw_id)
    except ValueError as e:
        logger.warning("invalid_guild_id", guild_id=raw_id, error=str(e))
        return

    ctx = get_context(request)

    if ctx.guilds is not None:
        for user_guild in ctx.guilds:
            if user_guild.id == raw_id:
                ctx.set_active_guild(Guild(id=user_guild.id, name=user_guild.name), user_guild)
                return

    guild = await _fetch_full_guild(request, raw_id)
    if guild is not None:
        ctx.set_active_guild(guild)


async def require_active_guild(request: Request) -> None:
    if get_context(request).active_guild is None:
        raise RedirectError("no_active_guild")


async def require_guild_admin(request: Request) -> None:
    if not get_context(request).is_admin:
        raise RedirectError("noaccess")


async def require_full_guild(request: Request) -> None:
    """Upgrade a membership stub to the full guild record"""
    ctx = get_context(request)
    if ctx.active_guild is None or ctx.active_guild.is_full:
        return

    full = await _fetch_full_guild(request, ctx.active_guild.id)
    if full is None:
        raise RedirectError("errretrievingguild")

    ctx.upgrade_active_guild(full)

# ============================================================
# Bot member and permissions
# ============================================================

async def _fetch_bot_member(request: Request, guild_id: str) -> Optional[Member]:
    state = request.app.state
    try:
        return await state.botrest.get_bot_member(guild_id)
    except BotRestError as e:
        logger.warning("botrest_member_failed", guild_id=guild_id, error=str(e))

    try:
        return await state.bot.guild_member(guild_id, state.settings.bot_id)
    except ConsoleException as e:
        logger.error("bot_member_fetch_failed", guild_id=guild_id, error=str(e))
        track_enrichment_failure("bot_member")
        return None


async def require_bot_member(request: Request) -> None:
    """Load the bot's member record and derive its effective permissions"""
    ctx = get_context(request)
    guild = ctx.active_guild
    if guild is None:
        return

    member = await _fetch_bot_member(request, guild.id)
    if member is None:
        raise RedirectError("errFailedRetrievingBotMember")

    ctx.bot_member = member
    ctx.template_data["bot_member"] = member

    aggregated = aggregate_bot_permissions(guild.roles, member.roles)
    if aggregated is None:
        return
    ctx.set_bot_permissions(aggregated.permissions, aggregated.highest_role)


async def require_guild_channels(request: Request) -> None:
    ctx = get_context(request)
    if ctx.active_guild is None:
        return

    try:
        channels = await request.app.state.bot.guild_channels(ctx.active_guild.id)
    except ConsoleException as e:
        logger.error("guild_channels_fetch_failed", guild_id=ctx.active_guild.id, error=str(e))
        track_enrichment_failure("channels")
        raise RedirectError("retrievingchannels") from e

    ctx.set_channels(channels)


def require_perms(*perms: int):
    """
    Dependency factory that reports which of the given permissions the bot
    holds in the active guild

    Usage:
        dependencies=[Depends(require_perms(PERMISSION_MANAGE_ROLES))]
    """
    async def check_perms(request: Request) -> None:
        ctx = get_context(request)
        current = ctx.bot_permissions
        if current is None:
            logger.warning("bot_permissions_unavailable", guild_id=ctx.guild_id)
            current = 0

        has, missing = describe_permissions(current, perms)
        if missing:
            ctx.template_data.add_alerts(error_alert(
                "This plugin is missing the following permissions: ",
                ", ".join(missing),
                ", It may continue to work without the functionality that requires those permissions.",
            ))
        if has:
            ctx.template_data.add_alerts(success_alert(
                "The bot has the following permissions used by this plugin: ",
                ", ".join(has),
            ))

    return check_perms
