"""
Permission bits and the bot permission aggregation
"""
from dataclasses import dataclass
from typing import Iterable, Optional

from .models import Role, UserGuild

PERMISSION_CREATE_INSTANT_INVITE = 1 << 0
PERMISSION_KICK_MEMBERS = 1 << 1
PERMISSION_BAN_MEMBERS = 1 << 2
PERMISSION_ADMINISTRATOR = 1 << 3
PERMISSION_MANAGE_CHANNELS = 1 << 4
PERMISSION_MANAGE_SERVER = 1 << 5
PERMISSION_READ_MESSAGES = 1 << 10
PERMISSION_SEND_MESSAGES = 1 << 11
PERMISSION_SEND_TTS_MESSAGES = 1 << 12
PERMISSION_MANAGE_MESSAGES = 1 << 13
PERMISSION_EMBED_LINKS = 1 << 14
PERMISSION_ATTACH_FILES = 1 << 15
PERMISSION_READ_MESSAGE_HISTORY = 1 << 16
PERMISSION_MENTION_EVERYONE = 1 << 17
PERMISSION_VOICE_CONNECT = 1 << 20
PERMISSION_VOICE_SPEAK = 1 << 21
PERMISSION_VOICE_MUTE_MEMBERS = 1 << 22
PERMISSION_VOICE_DEAFEN_MEMBERS = 1 << 23
PERMISSION_VOICE_MOVE_MEMBERS = 1 << 24
PERMISSION_VOICE_USE_VAD = 1 << 25
PERMISSION_MANAGE_ROLES = 1 << 28

PERMISSION_NAMES = {
    PERMISSION_READ_MESSAGES: "Read Messages",
    PERMISSION_SEND_MESSAGES: "Send Messages",
    PERMISSION_SEND_TTS_MESSAGES: "Send TTS Messages",
    PERMISSION_MANAGE_MESSAGES: "Manage Messages",
    PERMISSION_EMBED_LINKS: "Embed Links",
    PERMISSION_ATTACH_FILES: "Attach Files",
    PERMISSION_READ_MESSAGE_HISTORY: "Read Message History",
    PERMISSION_MENTION_EVERYONE: "Mention Everyone",
    PERMISSION_VOICE_CONNECT: "Voice Connect",
    PERMISSION_VOICE_SPEAK: "Voice Speak",
    PERMISSION_VOICE_MUTE_MEMBERS: "Voice Mute Members",
    PERMISSION_VOICE_DEAFEN_MEMBERS: "Voice Deafen Members",
    PERMISSION_VOICE_MOVE_MEMBERS: "Voice Move Members",
    PERMISSION_VOICE_USE_VAD: "Voice Use VAD",
    PERMISSION_CREATE_INSTANT_INVITE: "Create Instant Invite",
    PERMISSION_KICK_MEMBERS: "Kick Members",
    PERMISSION_BAN_MEMBERS: "Ban Members",
    PERMISSION_MANAGE_ROLES: "Manage Roles",
    PERMISSION_MANAGE_CHANNELS: "Manage Channels",
    PERMISSION_MANAGE_SERVER: "Manage Server",
}


def can_manage_guild(guild: UserGuild) -> bool:
    """Owner or holder of the manage server bit"""
    return guild.owner or guild.permissions & PERMISSION_MANAGE_SERVER != 0


@dataclass(frozen=True)
class BotPermissions:
    permissions: int
    highest_role: Optional[Role]


def aggregate_bot_permissions(roles: Iterable[Role], member_role_ids: Iterable[str]) -> Optional[BotPermissions]:
    """
    Combine the permissions of the roles the bot holds

    Roles are walked in the given order; the first role with a strictly
    greater position than every earlier match becomes the highest role, so
    ties go to the role seen first.

    Returns None when the role list is empty (guild not fetched in full yet).
    """
    roles = list(roles)
    if not roles:
        return None

    held = set(member_role_ids)
    combined = 0
    highest: Optional[Role] = None
    for role in roles:
        if role.id not in held:
            continue

        combined |= role.permissions
        if highest is None or role.position > highest.position:
            highest = role

    return BotPermissions(permissions=combined, highest_role=highest)


def describe_permissions(current: int, wanted: Iterable[int]) -> tuple:
    """Split the wanted permissions into (has, missing) display names"""
    has = []
    missing = []
    for perm in wanted:
        name = PERMISSION_NAMES.get(perm, str(perm))
        if current & perm != 0:
            has.append(name)
        else:
            missing.append(name)
    return has, missing
