"""
Form parsing, decoding and guild-aware validation

Schemas are pydantic models. Fields that must reference something in the
active guild are marked with Annotated metadata:

    class CoreConfigForm(BaseModel):
        log_channel: Annotated[str, ValidChannel(allow_empty=True)] = ""
        mod_roles: Annotated[List[str], ValidRole()] = []

A schema may also define validate_for_guild(guild, tmpl) -> bool for checks
that span several fields.
"""
import typing
from typing import Any, List, Optional, Type

from fastapi import Request
from pydantic import BaseModel, ValidationError
from starlette.datastructures import FormData
from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException
import structlog

from .context import TemplateData, error_alert, get_context
from .exceptions import FormParseError
from .models import Guild

logger = structlog.get_logger(__name__)

MAX_MULTIPART_FIELDS = 1000

# ============================================================
# Field markers
# ============================================================

class ValidChannel:
    """The field holds the id of a channel in the active guild"""

    kind = "channel"

    def __init__(self, allow_empty: bool = False):
        self.allow_empty = allow_empty

    def exists(self, guild: Guild, value: str) -> bool:
        return guild.channel(value) is not None


class ValidRole:
    """The field holds the id of a role in the active guild"""

    kind = "role"

    def __init__(self, allow_empty: bool = False):
        self.allow_empty = allow_empty

    def exists(self, guild: Guild, value: str) -> bool:
        return guild.role(value) is not None

# ============================================================
# Parsing and decoding
# ============================================================

async def parse_form(request: Request) -> FormData:
    """
    Read the request body as a form

    Raises:
        FormParseError: If the body is not a well-formed form
    """
    content_type = request.headers.get("content-type", "")
    try:
        if "multipart/form-data" in content_type:
            return await request.form(max_fields=MAX_MULTIPART_FIELDS)
        return await request.form()
    except HTTPException as e:
        raise FormParseError(f"Malformed form body: {e.detail}") from e
    except MultiPartException as e:
        raise FormParseError(f"Malformed form body: {e.message}") from e


def _is_list_field(annotation: Any) -> bool:
    origin = typing.get_origin(annotation)
    if origin in (list, List):
        return True
    if origin is typing.Union:
        return any(_is_list_field(arg) for arg in typing.get_args(annotation))
    return False


def decode_form(schema: Type[BaseModel], form: FormData) -> BaseModel:
    """
    Build a schema instance from form values

    List fields take every value sent under their name, all other fields
    take the last one. Keys the schema does not declare are ignored.

    Raises:
        ValidationError: If the values do not satisfy the schema
    """
    values = {}
    for name, field_info in schema.model_fields.items():
        key = field_info.alias or name
        sent = form.getlist(key)
        if not sent:
            continue
        values[key] = list(sent) if _is_list_field(field_info.annotation) else sent[-1]
    return schema.model_validate(values)

# ============================================================
# Validation
# ============================================================

def _field_values(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def validate_form(guild: Optional[Guild], tmpl: TemplateData, form: BaseModel) -> bool:
    """
    Check marked fields against the active guild, then run the form's own
    validate_for_guild hook

    Every failure adds an error alert; returns False if any check failed.
    """
    ok = True
    for name, field_info in type(form).model_fields.items():
        for marker in field_info.metadata:
            if not isinstance(marker, (ValidChannel, ValidRole)):
                continue

            values = _field_values(getattr(form, name))
            if not values and not marker.allow_empty:
                tmpl.add_alerts(error_alert("No ", marker.kind, " specified for ", name))
                ok = False
                continue

            for value in values:
                if value == "" and marker.allow_empty:
                    continue
                if guild is None or not marker.exists(guild, str(value)):
                    tmpl.add_alerts(error_alert("Unknown ", marker.kind, " for ", name, ": ", value))
                    ok = False

    hook = getattr(form, "validate_for_guild", None)
    if hook is not None and not hook(guild, tmpl):
        ok = False

    return ok


async def run_form_pipeline(request: Request, schema: Type[BaseModel]) -> bool:
    """
    Parse, decode and validate the request form into the request context

    A decode failure is not fatal: it adds the "Failed parsing form" alert
    and records ok=False so the handler can skip the save.

    Raises:
        FormParseError: If the body could not be read as a form at all
    """
    ctx = get_context(request)
    form_data = await parse_form(request)

    try:
        form = decode_form(schema, form_data)
    except ValidationError as e:
        logger.error("form_decode_failed", schema=schema.__name__, error=str(e))
        ctx.template_data.add_alerts(error_alert("Failed parsing form"))
        ctx.set_form(None, False)
        return False

    ok = validate_form(ctx.active_guild, ctx.template_data, form)
    ctx.set_form(form, ok)
    return ok
