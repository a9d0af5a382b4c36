"""
Control panel web application

create_app wires the middleware chain, the exception handlers and the
routers. Services live on app.state and are created by the lifespan unless
they were provided up front (tests inject fakes this way):

    settings       Settings
    http           httpx.AsyncClient shared by every outbound call
    cache_pool     CachePool
    session_factory  callable(token) -> DiscordClient for the request's user
    bot            DiscordClient authenticated as the bot
    botrest        BotRestClient for the bot's sidecar
    audit          CPLogger
    templates      Jinja2Templates
"""
import asyncio
from contextlib import asynccontextmanager
from functools import partial
from pathlib import Path
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
import structlog

from .audit import CPLogger
from .botrest import BotRestClient
from .cache import CachePool
from .config import Settings, get_settings
from .exceptions import ConsoleException, FormParseError, RedirectError
from .lifecycle import start_accepting_requests, stop_accepting_requests
from .logging_config import configure_logging
from .middleware import (
    AccessLogMiddleware,
    BaseTemplateDataMiddleware,
    CacheMiddleware,
    MiscMiddleware,
    RequestTracingMiddleware,
    SessionMiddleware,
    UserInfoMiddleware,
    set_security_headers,
)
from .platform import DiscordClient, new_session
from .routers.metrics import router as metrics_router
from .routers.pages import router as pages_router
from .routers.settings import router as settings_router

logger = structlog.get_logger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"

# ============================================================
# Application Lifecycle Management
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the shared clients on startup and close them on shutdown"""
    settings: Settings = app.state.settings
    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.json_logs,
        app=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )
    logger.info("app_starting", host=settings.host)

    state = app.state
    owns_http = getattr(state, "http", None) is None
    if owns_http:
        state.http = httpx.AsyncClient(timeout=settings.external_call_timeout)

    owns_pool = getattr(state, "cache_pool", None) is None
    if owns_pool:
        state.cache_pool = CachePool(
            settings.redis_url,
            max_connections=settings.redis_max_connections,
            socket_timeout=settings.redis_socket_timeout,
        )

    if getattr(state, "session_factory", None) is None:
        state.session_factory = partial(new_session, http=state.http, base_url=settings.discord_api_url)
    if getattr(state, "bot", None) is None:
        state.bot = DiscordClient(f"Bot {settings.bot_token}", state.http, settings.discord_api_url)
    if getattr(state, "botrest", None) is None:
        state.botrest = BotRestClient(settings.botrest_url, state.http)
    if getattr(state, "audit", None) is None:
        state.audit = CPLogger(state.cache_pool, max_entries=settings.cp_log_max_entries)

    poller = asyncio.create_task(state.botrest.poll_running(settings.botrest_poll_interval))
    start_accepting_requests()
    logger.info("app_ready")

    yield

    stop_accepting_requests()
    logger.info("app_shutting_down")

    poller.cancel()
    try:
        await poller
    except asyncio.CancelledError:
        pass

    if owns_pool:
        await state.cache_pool.close()
    if owns_http:
        await state.http.aclose()

    access_log_file = getattr(state, "access_log_file", None)
    if access_log_file is not None:
        access_log_file.close()

    logger.info("app_stopped")

# ============================================================
# Exception Handlers
# ============================================================

async def redirect_error_handler(request: Request, exc: RedirectError):
    logger.info("request_redirected", location=exc.url)
    return RedirectResponse(exc.url, status_code=307)


async def form_parse_error_handler(request: Request, exc: FormParseError):
    logger.warning("form_parse_error", error=exc.message)
    return JSONResponse(status_code=400, content=exc.to_dict())


async def console_exception_handler(request: Request, exc: ConsoleException):
    """Pipeline errors that escaped every adapter"""
    logger.error("unhandled_console_exception", error=exc.message, error_code=exc.error_code)
    return JSONResponse(status_code=500, content=exc.to_dict())


async def generic_exception_handler(request: Request, exc: Exception):
    """
    Handle unexpected exceptions

    Starlette runs this outside the user middleware, so the security
    headers are set here too.
    """
    logger.error("unhandled_exception", error=str(exc), exc_info=exc)
    response = JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_SERVER_ERROR",
            "message": "An unexpected error occurred"
        }
    )
    return set_security_headers(request, response)

# ============================================================
# Application factory
# ============================================================

def create_app(settings: Optional[Settings] = None, **services) -> FastAPI:
    """
    Build the control panel application

    Args:
        settings: Settings to use instead of get_settings()
        **services: Preset app.state services (see module docstring)
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.state.settings = settings
    app.state.templates = Jinja2Templates(directory=settings.templates_dir or str(TEMPLATES_DIR))
    for name, service in services.items():
        setattr(app.state, name, service)

    access_stream = services.get("access_log_stream")
    if access_stream is None and settings.access_log_path:
        access_stream = open(settings.access_log_path, "a", buffering=1, encoding="utf-8")
        app.state.access_log_file = access_stream

    # Added innermost first; AccessLogMiddleware ends up outermost
    app.add_middleware(UserInfoMiddleware)
    app.add_middleware(SessionMiddleware)
    app.add_middleware(BaseTemplateDataMiddleware)
    app.add_middleware(CacheMiddleware)
    app.add_middleware(MiscMiddleware)
    app.add_middleware(RequestTracingMiddleware)
    app.add_middleware(AccessLogMiddleware, stream=access_stream)

    app.add_exception_handler(RedirectError, redirect_error_handler)
    app.add_exception_handler(FormParseError, form_parse_error_handler)
    app.add_exception_handler(ConsoleException, console_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    if settings.static_dir:
        app.mount(
            settings.static_prefix.rstrip("/"),
            StaticFiles(directory=settings.static_dir),
            name="static",
        )

    app.include_router(pages_router)
    app.include_router(settings_router)
    app.include_router(metrics_router)

    return app
