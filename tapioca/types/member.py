import typing as t

from .snowflake import Snowflake
from .user import User


class Role(t.TypedDict, total=False):
    id: Snowflake
    name: str
    color: int
    hoist: bool
    position: int
    permissions: str
    managed: bool
    mentionable: bool


class Member(t.TypedDict, total=False):
    user: User
    nick: t.Optional[str]
    roles: t.List[Snowflake]
    joined_at: str
    premium_since: t.Optional[str]
    deaf: bool
    mute: bool
    pending: bool


class _OptionalVoiceState(t.TypedDict, total=False):
    guild_id: Snowflake
    member: Member


class VoiceState(_OptionalVoiceState):
    channel_id: t.Optional[Snowflake]
    user_id: Snowflake
    session_id: str
    deaf: bool
    mute: bool
    self_deaf: bool
    self_mute: bool
    suppress: bool
