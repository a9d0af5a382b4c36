"""
Adapters that turn domain handlers into route endpoints

A handler is an async callable (request, ctx) that either returns its result
or raises. The adapters decide what the user sees:

- RedirectError: passed through to the redirect handler
- PublicError: its message is shown verbatim
- Anything else: a generic message is shown and the error is logged

Usage:
    index = controller_handler(handle_index, "settings.html")
    save = controller_post_handler(handle_save, index, CoreConfigForm, "Updated core config.")
    router.add_api_route("/", index, methods=["GET"])
    router.add_api_route("/", save, methods=["POST"])
"""
from typing import Any, Awaitable, Callable, ClassVar, Optional, Type

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import structlog

from .context import RequestContext, TemplateData, error_alert, get_context, success_alert
from .exceptions import ConsoleException, PublicError, RedirectError
from .forms import run_form_pipeline
from .metrics import track_audit_failure
from .models import Guild

logger = structlog.get_logger(__name__)

GENERIC_ERROR_MESSAGE = "An error occured... Contact support."
SAVED_MESSAGE = "Sucessfully saved! :')"

PageHandler = Callable[[Request, RequestContext], Awaitable[Optional[TemplateData]]]
ApiHandler = Callable[[Request, RequestContext], Awaitable[Any]]
Endpoint = Callable[[Request], Awaitable[Response]]

# ============================================================
# Shared helpers
# ============================================================

def render(request: Request, template: str, data: TemplateData) -> Response:
    return request.app.state.templates.TemplateResponse(request, template, data)


def check_controller_error(guild: Optional[Guild], data: TemplateData, exc: Optional[BaseException]) -> None:
    """Add the alert matching the error and log it, tagged with the guild"""
    if exc is None:
        return

    if isinstance(exc, PublicError):
        data.add_alerts(error_alert(exc.message))
    else:
        data.add_alerts(error_alert(GENERIC_ERROR_MESSAGE))

    logger.error(
        "web_handler_error",
        guild_id=guild.id if guild is not None else None,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=not isinstance(exc, PublicError),
    )


def _merge(ctx: RequestContext, data: Optional[TemplateData]) -> TemplateData:
    tmpl = ctx.template_data
    if data is None or data is tmpl:
        return tmpl
    for key, value in data.items():
        if key == "alerts":
            tmpl.add_alerts(*value)
        else:
            tmpl[key] = value
    return tmpl


async def write_audit_entry(request: Request, ctx: RequestContext, action: str) -> None:
    """Best-effort control panel log entry for the current user and guild"""
    if ctx.user is None or ctx.active_guild is None:
        return

    try:
        await request.app.state.audit.add_entry(ctx.user, ctx.active_guild.id, action)
    except ConsoleException as e:
        logger.error("cp_log_write_failed", guild_id=ctx.active_guild.id, action=action, error=str(e))
        track_audit_failure()

# ============================================================
# Page and JSON adapters
# ============================================================

def controller_handler(handler: PageHandler, template: str) -> Endpoint:
    """Render template with the handler's data, or the request's template data"""

    async def endpoint(request: Request) -> Response:
        ctx = get_context(request)
        try:
            data = await handler(request, ctx)
        except RedirectError:
            raise
        except Exception as e:
            check_controller_error(ctx.active_guild, ctx.template_data, e)
            data = None

        return render(request, template, _merge(ctx, data))

    endpoint.__name__ = getattr(handler, "__name__", "controller")
    return endpoint


def api_handler(handler: ApiHandler, log_msg: Optional[str] = None) -> Endpoint:
    """
    JSON variant of controller_handler

    Errors become {"ok": false, "error": <public message or "">} with a 500.
    A handler returning None yields {"ok": true}.
    """

    async def endpoint(request: Request):
        ctx = get_context(request)
        try:
            result = await handler(request, ctx)
        except RedirectError:
            raise
        except Exception as e:
            public = e.message if isinstance(e, PublicError) else ""
            logger.error(
                "web_handler_error",
                guild_id=ctx.guild_id,
                url=str(request.url),
                error=str(e),
                error_type=type(e).__name__,
                exc_info=not isinstance(e, PublicError),
            )
            return JSONResponse({"ok": False, "error": public}, status_code=500)

        if log_msg:
            await write_audit_entry(request, ctx, log_msg)

        if result is None:
            return {"ok": True}
        return result

    endpoint.__name__ = getattr(handler, "__name__", "api")
    return endpoint

# ============================================================
# Form save adapters
# ============================================================

def controller_post_handler(
    handler: PageHandler,
    extra_handler: Optional[Endpoint],
    form_schema: Type[BaseModel],
    log_msg: str,
) -> Endpoint:
    """
    Parse and validate form_schema, run handler when the form is ok, then
    render extra_handler (204 without one)

    A successful save adds the saved alert and an audit entry.
    """

    async def endpoint(request: Request) -> Response:
        ctx = get_context(request)
        if await run_form_pipeline(request, form_schema):
            try:
                data = await handler(request, ctx)
            except RedirectError:
                raise
            except Exception as e:
                check_controller_error(ctx.active_guild, ctx.template_data, e)
            else:
                _merge(ctx, data).add_alerts(success_alert(SAVED_MESSAGE))
                await write_audit_entry(request, ctx, log_msg)

        if extra_handler is None:
            return Response(status_code=204)
        return await extra_handler(request)

    endpoint.__name__ = getattr(handler, "__name__", "controller_post")
    return endpoint


class SimpleConfigSaver(BaseModel):
    """
    Form schema that knows how to persist itself

    Subclasses set config_name, shown in the control panel log as
    "Updated <config_name> Config.", and implement save.
    """

    config_name: ClassVar[str] = ""

    async def save(self, client, guild_id: str) -> None:
        raise NotImplementedError


def simple_config_saver_handler(schema: Type[SimpleConfigSaver], extra_handler: Optional[Endpoint]) -> Endpoint:
    """Save a SimpleConfigSaver form through controller_post_handler"""

    async def save_config(request: Request, ctx: RequestContext) -> None:
        form = ctx.take_form()
        try:
            await form.save(ctx.redis, ctx.guild_id)
        except PublicError:
            raise
        except Exception as e:
            logger.error("config_save_failed", config=schema.config_name, guild_id=ctx.guild_id, error=str(e))
            raise PublicError("Failed saving config") from e

    save_config.__name__ = f"save_{schema.__name__}"
    return controller_post_handler(
        save_config,
        extra_handler,
        schema,
        f"Updated {schema.config_name} Config.",
    )
