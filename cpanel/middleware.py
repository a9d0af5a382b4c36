"""
Middleware chain that builds the request context

Order (outermost first), see main.create_app:
    AccessLogMiddleware -> RequestTracingMiddleware -> MiscMiddleware ->
    CacheMiddleware -> BaseTemplateDataMiddleware -> SessionMiddleware ->
    UserInfoMiddleware

Stages that depend on the matched route (active guild, bot member, forms)
run as FastAPI dependencies, see dependencies.py.
"""
import json
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime
from typing import List, Optional, TextIO

from fastapi import Request
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send
import structlog

from .auth import handle_logout
from .cache import Cache, get_auth_token, get_wrapped, guilds_key, user_key
from .context import get_context
from .exceptions import CacheError, ConsoleException
from .lifecycle import is_accepting_requests
from .metrics import Timer, track_enrichment_failure, track_request
from .models import User, UserGuild
from .permissions import can_manage_guild

logger = structlog.get_logger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

HSTS_HEADER_VALUE = "max-age=31536000"


def get_request_id() -> str:
    """Get current request ID from context"""
    return request_id_var.get()


def is_static(request: Request) -> bool:
    prefix = request.app.state.settings.static_prefix
    return len(request.url.path) > len(prefix) and request.url.path.startswith(prefix)


def set_security_headers(request: Request, response: Response) -> Response:
    """HSTS on every non-static response, error responses included"""
    if not is_static(request):
        response.headers["Strict-Transport-Security"] = HSTS_HEADER_VALUE
    return response

# ============================================================================
# Access log
# ============================================================================

def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def format_access_line(
    client_ip: str,
    elapsed: float,
    started: datetime,
    request_line: str,
    status_code: int,
    sent_bytes: int,
    user_agent: str,
    referer: str,
) -> str:
    """
    One line in the GoAccess-compatible format:
        log-format %h %T %^[%d:%t %^] "%r" %s %b "%u" "%R"
    """
    return "%s %f - [%s] %s %d %d %s %s\n" % (
        client_ip,
        elapsed,
        started.strftime("%d/%b/%Y:%H:%M:%S %z"),
        _quote(request_line),
        status_code,
        sent_bytes,
        _quote(user_agent),
        _quote(referer),
    )


class AccessLogMiddleware:
    """
    Writes one access line per request and records request metrics

    Implemented as plain ASGI so the actual status and the number of body
    bytes sent can be observed.
    """

    def __init__(self, app: ASGIApp, stream: Optional[TextIO] = None):
        self.app = app
        self.stream = stream or sys.stdout

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = datetime.now().astimezone()
        timer = Timer()
        status_code = 500
        sent_bytes = 0

        async def counting_send(message: Message) -> None:
            nonlocal status_code, sent_bytes
            if message["type"] == "http.response.start":
                status_code = message["status"]
            elif message["type"] == "http.response.body":
                sent_bytes += len(message.get("body", b""))
            await send(message)

        try:
            await self.app(scope, receive, counting_send)
        finally:
            elapsed = timer.elapsed
            headers = Headers(scope=scope)
            client = scope.get("client")

            uri = scope.get("raw_path") or scope["path"].encode()
            if scope.get("query_string"):
                uri += b"?" + scope["query_string"]
            request_line = "%s %s HTTP/%s" % (
                scope["method"],
                uri.decode("latin-1"),
                scope.get("http_version", "1.1"),
            )

            self.stream.write(format_access_line(
                client[0] if client else "-",
                elapsed,
                started,
                request_line,
                status_code,
                sent_bytes,
                headers.get("user-agent", ""),
                headers.get("referer", ""),
            ))
            self.stream.flush()
            track_request(scope["method"], status_code, elapsed, sent_bytes)

# ============================================================================
# Tracing, shutdown gate and security headers
# ============================================================================

class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Assigns a request id and binds it to structlog for every log entry of the request"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request_id_var.set(request_id)

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path
        )
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id", "method", "path")

        response.headers["X-Request-ID"] = request_id
        return response


class MiscMiddleware(BaseHTTPMiddleware):
    """Rejects requests while shutting down and forces HTTPS for a year"""

    async def dispatch(self, request: Request, call_next):
        if not is_accepting_requests():
            return set_security_headers(request, JSONResponse(
                {"error": "Shutting down, try again in a minute"},
                status_code=503,
            ))

        return set_security_headers(request, await call_next(request))

# ============================================================================
# Context enrichment
# ============================================================================

class CacheMiddleware(BaseHTTPMiddleware):
    """
    Borrows one redis client for the whole request

    The client is returned to the pool on every exit path. When redis is
    unavailable the request is served without one.
    """

    async def dispatch(self, request: Request, call_next):
        pool = getattr(request.app.state, "cache_pool", None)
        if pool is None or is_static(request):
            return await call_next(request)

        try:
            client = await pool.acquire()
        except CacheError as e:
            logger.error("cache_client_unavailable", error=str(e))
            track_enrichment_failure("cache")
            return await call_next(request)

        get_context(request).redis = client
        try:
            return await call_next(request)
        finally:
            await pool.release(client)


class BaseTemplateDataMiddleware(BaseHTTPMiddleware):
    """Seeds the template data with values every page needs"""

    async def dispatch(self, request: Request, call_next):
        if not is_static(request):
            settings = request.app.state.settings
            botrest = getattr(request.app.state, "botrest", None)
            get_context(request).template_data.update({
                "client_id": settings.client_id,
                "host": settings.host,
                "version": settings.app_version,
                "bot_running": botrest.running if botrest is not None else False,
            })
        return await call_next(request)


class SessionMiddleware(BaseHTTPMiddleware):
    """Attaches a platform session when the cookie maps to a stored token"""

    async def dispatch(self, request: Request, call_next):
        if not is_static(request):
            await self._attach_session(request)
        return await call_next(request)

    async def _attach_session(self, request: Request) -> None:
        session_id = request.cookies.get(request.app.state.settings.session_cookie_name)
        if not session_id:
            return

        ctx = get_context(request)
        if ctx.redis is None:
            return

        token = await get_auth_token(ctx.redis, session_id)
        if token is None:
            return

        try:
            ctx.session = request.app.state.session_factory(f"{token.auth_type} {token.access_token}")
        except ConsoleException as e:
            logger.error("session_init_failed", error=str(e))
            track_enrichment_failure("session")


class UserInfoMiddleware(BaseHTTPMiddleware):
    """
    Loads the current user and their guilds, cache first

    A failed live lookup logs the user out; a failed guild wrap sends them
    back to the index with rediserr.
    """

    async def dispatch(self, request: Request, call_next):
        ctx = get_context(request)
        if ctx.session is None or ctx.redis is None:
            return await call_next(request)

        settings = request.app.state.settings
        cache = Cache(ctx.redis, default_ttl=settings.redis_ttl_seconds)
        token = ctx.session.token

        user = await cache.get_model(user_key(token), User)
        if user is None:
            try:
                user = await ctx.session.current_user()
            except ConsoleException as e:
                logger.error("user_info_fetch_failed", error=str(e))
                track_enrichment_failure("user")
                return await handle_logout(request)
            await cache.set_json(user_key(token), user, settings.user_cache_ttl)

        guilds = await cache.get_model(guilds_key(token), List[UserGuild])
        if guilds is None:
            try:
                guilds = await ctx.session.user_guilds(limit=100)
            except ConsoleException as e:
                logger.error("user_guilds_fetch_failed", error=str(e))
                track_enrichment_failure("guilds")
                return await handle_logout(request)
            await cache.set_json(guilds_key(token), guilds)

        try:
            wrapped = await get_wrapped(guilds, ctx.redis)
        except CacheError as e:
            logger.error("guild_wrap_failed", error=str(e))
            track_enrichment_failure("wrap_guilds")
            return RedirectResponse("/?err=rediserr", status_code=307)

        managed = [g for g in wrapped if can_manage_guild(g)]

        ctx.user = user
        ctx.guilds = guilds
        ctx.wrapped_guilds = wrapped
        ctx.managed_guilds = managed
        ctx.template_data.update({
            "user": user,
            "guilds": wrapped,
            "managed_guilds": managed,
        })
        structlog.contextvars.bind_contextvars(user_id=user.id)
        try:
            return await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("user_id")
