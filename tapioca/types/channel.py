import typing as t
from .snowflake import Snowflake


class _OptionalChannel(t.TypedDict, total=False):
    guild_id: Snowflake
    name: t.Optional[str]
    position: int
    topic: t.Optional[str]
    nsfw: bool
    last_message_id: t.Optional[Snowflake]
    parent_id: t.Optional[Snowflake]


class Channel(_OptionalChannel):
    id: Snowflake
    type: int
