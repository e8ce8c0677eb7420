import typing as t

from .member import Member
from .snowflake import Snowflake
from .user import User


class _MessageReference(t.TypedDict):
    id: Snowflake
    channel_id: Snowflake


class _OptionalMessage(t.TypedDict, total=False):
    guild_id: Snowflake
    member: Member
    edited_timestamp: t.Optional[str]
    tts: bool
    mention_everyone: bool
    mentions: t.List[User]
    pinned: bool
    type: int


class PartialMessage(_MessageReference, _OptionalMessage, total=False):
    """MESSAGE_UPDATE only guarantees the ids."""

    author: User
    content: str
    timestamp: str


class Message(_MessageReference, _OptionalMessage):
    author: User
    content: str
    timestamp: str
