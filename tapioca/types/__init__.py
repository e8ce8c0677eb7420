from .snowflake import Snowflake, SnowflakeList
from .user import PartialUser, User
from .emoji import Emoji, PartialEmoji
from .channel import Channel
from .member import Member, Role, VoiceState
from .guild import Guild, UnavailableGuild
from .message import Message, PartialMessage
from .gateway import (
    Activity,
    ConnectionProperties,
    GatewayBotPayload,
    GatewayPayload,
    Hello,
    Identify,
    Payload,
    Ready,
    RequestGuildMembers,
    Resume,
    SessionStartLimit,
    Status,
    UpdatePresence,
    UpdateVoiceState,
)
from .events import (
    ChannelPinsUpdate,
    ClientStatus,
    GuildBan,
    GuildEmojisUpdate,
    GuildIntegrationsUpdate,
    GuildMemberAdd,
    GuildMemberRemove,
    GuildMembersChunk,
    GuildMemberUpdate,
    GuildRole,
    GuildRoleDelete,
    Interaction,
    InviteCreate,
    InviteDelete,
    MessageDelete,
    MessageDeleteBulk,
    MessageReaction,
    MessageReactionAdd,
    MessageReactionRemove,
    MessageReactionRemoveEmoji,
    PresenceUpdate,
    TypingStart,
    VoiceServerUpdate,
    WebhooksUpdate,
)
