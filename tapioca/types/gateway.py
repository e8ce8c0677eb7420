import typing as t

from .snowflake import Snowflake
from .user import PartialUser
from .guild import UnavailableGuild

Status = t.Literal["online", "dnd", "idle", "invisible", "offline"]


class SessionStartLimit(t.TypedDict):
    total: int
    remaining: int
    reset_after: int
    max_concurrency: int


class GatewayPayload(t.TypedDict):
    url: str


class GatewayBotPayload(GatewayPayload):
    shards: int
    session_start_limit: SessionStartLimit


class Payload(t.TypedDict):
    op: int
    d: t.Any
    s: t.Optional[int]
    t: t.Optional[str]


# Receive


class Hello(t.TypedDict):
    heartbeat_interval: int


class _OptionalReady(t.TypedDict, total=False):
    shard: t.Tuple[int, int]
    resume_gateway_url: str
    application: t.Dict[str, t.Any]


class Ready(_OptionalReady):
    v: int
    user: PartialUser
    guilds: t.List[UnavailableGuild]
    session_id: str


# Send


class Activity(t.TypedDict, total=False):
    name: str
    type: int
    url: t.Optional[str]


class UpdatePresence(t.TypedDict):
    since: t.Optional[int]
    activities: t.List[Activity]
    status: Status
    afk: bool


class ConnectionProperties(t.TypedDict):
    os: str
    browser: str
    device: str


class _OptionalIdentify(t.TypedDict, total=False):
    compress: bool
    large_threshold: int
    shard: t.Tuple[int, int]
    presence: UpdatePresence


class Identify(_OptionalIdentify):
    token: str
    properties: ConnectionProperties
    intents: int


class Resume(t.TypedDict):
    token: str
    session_id: str
    seq: t.Optional[int]


class UpdateVoiceState(t.TypedDict):
    guild_id: Snowflake
    channel_id: t.Optional[Snowflake]
    self_mute: bool
    self_deaf: bool


class _OptionalRequestGuildMembers(t.TypedDict, total=False):
    query: str
    presences: bool
    user_ids: t.Union[Snowflake, t.List[Snowflake]]
    nonce: str


class RequestGuildMembers(_OptionalRequestGuildMembers):
    guild_id: Snowflake
    limit: int
