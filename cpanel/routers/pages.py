"""
Public pages: the index and logout
"""
from typing import Optional

from fastapi import APIRouter, Request

from ..auth import handle_logout
from ..context import RequestContext, TemplateData, error_alert
from ..controllers import controller_handler

router = APIRouter(tags=["Pages"])

# Messages for the ?err= codes the guards redirect with
REDIRECT_ERRORS = {
    "no_active_guild": "No server selected",
    "noaccess": "You don't have access to that server",
    "bad_origin": "Request came from an unexpected origin",
    "rediserr": "Failed talking to the cache, try again in a moment",
    "retrievingchannels": "Failed retrieving the server's channels",
    "errretrievingguild": "Failed retrieving the server",
    "errFailedRetrievingBotMember": "Failed retrieving the bot's member, is it still on the server?",
}


async def handle_index(request: Request, ctx: RequestContext) -> Optional[TemplateData]:
    code = request.query_params.get("err") or request.query_params.get("error")
    if code:
        ctx.template_data.add_alerts(error_alert(REDIRECT_ERRORS.get(code, code)))
    return None


router.add_api_route("/", controller_handler(handle_index, "index.html"), methods=["GET"])


@router.get("/logout")
async def logout(request: Request):
    return await handle_logout(request)
