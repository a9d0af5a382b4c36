"""
Tests for the request context: alerts, active guild snapshots and the
single-consumer form slot
"""
from pydantic import BaseModel

from cpanel.context import (
    RequestContext,
    TemplateData,
    error_alert,
    success_alert,
    warning_alert,
)
from cpanel.models import Channel, Guild, Role, UserGuild
from cpanel.permissions import PERMISSION_MANAGE_SERVER

STUB = Guild(id="1", name="Stub")
FULL = Guild(
    id="1",
    name="Full name",
    owner_id="9",
    region="eu",
    roles=[Role(id="r1", name="Mods", position=2)],
)


class TestAlerts:

    def test_parts_joined_without_separator(self):
        assert error_alert("Max ", 10, " roles").message == "Max 10 roles"

    def test_styles(self):
        assert error_alert("x").style == "danger"
        assert success_alert("x").style == "success"
        assert warning_alert("x").style == "warning"

    def test_template_data_always_has_alerts(self):
        data = TemplateData(title="t")

        data.add_alerts(error_alert("a"), success_alert("b"))

        assert [a.message for a in data["alerts"]] == ["a", "b"]


class TestActiveGuild:

    def test_stub_never_replaces_full_guild(self):
        ctx = RequestContext()
        ctx.set_active_guild(FULL)

        assert ctx.set_active_guild(STUB) is False
        assert ctx.active_guild is FULL
        assert ctx.template_data["active_guild"] is FULL

    def test_full_replaces_stub(self):
        ctx = RequestContext()
        ctx.set_active_guild(STUB)

        assert ctx.set_active_guild(FULL) is True
        assert ctx.active_guild is FULL

    def test_user_guild_sets_admin_flag(self):
        ctx = RequestContext()

        ctx.set_active_guild(STUB, UserGuild(id="1", name="Stub", permissions=PERMISSION_MANAGE_SERVER))

        assert ctx.is_admin
        assert ctx.template_data["is_admin"] is True

    def test_not_admin_without_membership(self):
        ctx = RequestContext()
        ctx.set_active_guild(FULL)

        assert not ctx.is_admin

    def test_upgrade_produces_new_snapshot(self):
        ctx = RequestContext()
        stub = STUB.model_copy(update={"channels": [Channel(id="c1")]})
        ctx.set_active_guild(stub)

        upgraded = ctx.upgrade_active_guild(FULL)

        assert upgraded is not stub
        assert stub.owner_id == ""
        assert upgraded.name == "Stub"
        assert upgraded.owner_id == "9"
        assert upgraded.region == "eu"
        assert upgraded.roles == FULL.roles
        assert upgraded.channels == [Channel(id="c1")]
        assert ctx.active_guild is upgraded
        assert ctx.template_data["active_guild"] is upgraded

    def test_channels_attached_to_snapshot(self):
        ctx = RequestContext()
        ctx.set_active_guild(FULL)

        ctx.set_channels([Channel(id="c1", name="general")])

        assert ctx.active_guild.is_full
        assert ctx.active_guild.channel("c1").name == "general"
        assert FULL.channels == []


class TestForm:

    def test_take_form_consumes_once(self):
        class Form(BaseModel):
            name: str = "x"

        ctx = RequestContext()
        form = Form()
        ctx.set_form(form, True)

        assert ctx.take_form() is form
        assert ctx.take_form() is None
        assert ctx.form_ok is True
