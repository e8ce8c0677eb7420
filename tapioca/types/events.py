import typing as t

from .emoji import Emoji, PartialEmoji
from .member import Member, Role
from .snowflake import Snowflake
from .user import PartialUser, User
from .gateway import Activity, Status


class _GuildData(t.TypedDict):
    guild_id: Snowflake


class _OptionalChannelPins(t.TypedDict, total=False):
    guild_id: Snowflake
    last_pin_timestamp: t.Optional[str]


class ChannelPinsUpdate(_OptionalChannelPins):
    channel_id: Snowflake


class GuildBan(_GuildData):
    user: User


class GuildEmojisUpdate(_GuildData):
    emojis: t.List[Emoji]


GuildIntegrationsUpdate = _GuildData


class GuildMemberAdd(_GuildData, Member):
    pass


class GuildMemberRemove(_GuildData):
    user: User


class _OptionalGuildMemberUpdate(t.TypedDict, total=False):
    nick: t.Optional[str]
    premium_since: t.Optional[str]


class GuildMemberUpdate(_GuildData, _OptionalGuildMemberUpdate):
    roles: t.List[Snowflake]
    user: User
    joined_at: t.Optional[str]


class _OptionalMembersChunk(t.TypedDict, total=False):
    not_found: t.List[Snowflake]
    presences: t.List["PresenceUpdate"]
    nonce: str


class GuildMembersChunk(_GuildData, _OptionalMembersChunk):
    members: t.List[Member]
    chunk_index: int
    chunk_count: int


class GuildRole(_GuildData):
    role: Role


class GuildRoleDelete(_GuildData):
    role_id: Snowflake


class _OptionalInviteCreate(t.TypedDict, total=False):
    guild_id: Snowflake
    inviter: User
    target_user: PartialUser
    target_type: int


class InviteCreate(_OptionalInviteCreate):
    channel_id: Snowflake
    code: str
    created_at: str
    max_age: int
    max_uses: int
    temporary: bool
    uses: int


class _OptionalGuildId(t.TypedDict, total=False):
    guild_id: Snowflake


class InviteDelete(_OptionalGuildId):
    channel_id: Snowflake
    code: str


class MessageDelete(_OptionalGuildId):
    id: Snowflake
    channel_id: Snowflake


class MessageDeleteBulk(_OptionalGuildId):
    ids: t.List[Snowflake]
    channel_id: Snowflake


class MessageReaction(_OptionalGuildId):
    channel_id: Snowflake
    message_id: Snowflake


class _OptionalMember(t.TypedDict, total=False):
    member: Member


class MessageReactionAdd(MessageReaction, _OptionalMember):
    user_id: Snowflake
    emoji: PartialEmoji


class MessageReactionRemove(MessageReaction):
    user_id: Snowflake
    emoji: PartialEmoji


class MessageReactionRemoveEmoji(MessageReaction):
    emoji: PartialEmoji


class ClientStatus(t.TypedDict, total=False):
    desktop: str
    mobile: str
    web: str


class PresenceUpdate(_GuildData):
    user: PartialUser
    status: Status
    activities: t.List[Activity]
    client_status: ClientStatus


class TypingStart(_OptionalGuildId, _OptionalMember):
    channel_id: Snowflake
    user_id: Snowflake
    timestamp: int


class VoiceServerUpdate(_GuildData):
    token: str
    endpoint: t.Optional[str]


class WebhooksUpdate(_GuildData):
    channel_id: Snowflake


class _OptionalInteraction(t.TypedDict, total=False):
    guild_id: Snowflake
    channel_id: Snowflake
    member: Member
    user: User
    data: t.Dict[str, t.Any]


class Interaction(_OptionalInteraction):
    """The payload body is opaque beyond the routing fields."""

    id: Snowflake
    application_id: Snowflake
    type: int
    token: str
    version: int
