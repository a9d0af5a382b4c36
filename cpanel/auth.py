"""
Session cookie handling: creating a session for a stored OAuth token and
logging out
"""
import secrets

from starlette.requests import Request
from starlette.responses import RedirectResponse
import structlog

from .cache import delete_auth_token, set_auth_token
from .context import get_context
from .models import OAuthToken

logger = structlog.get_logger(__name__)

SESSION_TTL_SECONDS = 60 * 60 * 24 * 30  # 30 days


async def create_session(client, token: OAuthToken, ttl: int = SESSION_TTL_SECONDS) -> str:
    """
    Store a token under a fresh session id

    Returns:
        The session id to place in the session cookie
    """
    session_id = secrets.token_urlsafe(32)
    await set_auth_token(client, session_id, token, ttl)
    return session_id


async def handle_logout(request: Request) -> RedirectResponse:
    """Forget the session token and clear the cookie, then send the user home"""
    response = RedirectResponse("/", status_code=307)
    cookie_name = request.app.state.settings.session_cookie_name
    session_id = request.cookies.get(cookie_name)
    if session_id is None:
        return response

    response.delete_cookie(cookie_name, path="/")

    ctx = get_context(request)
    if ctx.redis is not None:
        await delete_auth_token(ctx.redis, session_id)

    logger.info("session_logged_out")
    return response
