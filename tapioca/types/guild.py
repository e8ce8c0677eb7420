import typing as t

from .channel import Channel
from .emoji import Emoji
from .member import Member, Role, VoiceState
from .snowflake import Snowflake


class UnavailableGuild(t.TypedDict, total=False):
    id: Snowflake
    unavailable: bool


class _OptionalGuild(t.TypedDict, total=False):
    icon: t.Optional[str]
    owner_id: Snowflake
    unavailable: bool
    member_count: int
    large: bool
    roles: t.List[Role]
    emojis: t.List[Emoji]
    members: t.List[Member]
    channels: t.List[Channel]
    voice_states: t.List[VoiceState]


class Guild(_OptionalGuild):
    id: Snowflake
    name: str
