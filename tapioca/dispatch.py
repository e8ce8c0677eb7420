import asyncio
import enum
import inspect
import logging
import typing as t

from . import errors, types
from .intents import Intents

__all__ = (
    "DispatchEvent",
    "DispatchRouter",
    "EventName",
    "EVENT_INTENTS",
)

_log = logging.getLogger(__name__)

Listener = t.Callable[["DispatchEvent"], t.Any]


class EventName(str, enum.Enum):
    READY                           = "READY"
    RESUMED                         = "RESUMED"
    CHANNEL_CREATE                  = "CHANNEL_CREATE"
    CHANNEL_UPDATE                  = "CHANNEL_UPDATE"
    CHANNEL_DELETE                  = "CHANNEL_DELETE"
    CHANNEL_PINS_UPDATE             = "CHANNEL_PINS_UPDATE"
    GUILD_CREATE                    = "GUILD_CREATE"
    GUILD_UPDATE                    = "GUILD_UPDATE"
    GUILD_DELETE                    = "GUILD_DELETE"
    GUILD_BAN_ADD                   = "GUILD_BAN_ADD"
    GUILD_BAN_REMOVE                = "GUILD_BAN_REMOVE"
    GUILD_EMOJIS_UPDATE             = "GUILD_EMOJIS_UPDATE"
    GUILD_INTEGRATIONS_UPDATE       = "GUILD_INTEGRATIONS_UPDATE"
    GUILD_MEMBER_ADD                = "GUILD_MEMBER_ADD"
    GUILD_MEMBER_REMOVE             = "GUILD_MEMBER_REMOVE"
    GUILD_MEMBER_UPDATE             = "GUILD_MEMBER_UPDATE"
    GUILD_MEMBERS_CHUNK             = "GUILD_MEMBERS_CHUNK"
    GUILD_ROLE_CREATE               = "GUILD_ROLE_CREATE"
    GUILD_ROLE_UPDATE               = "GUILD_ROLE_UPDATE"
    GUILD_ROLE_DELETE               = "GUILD_ROLE_DELETE"
    INTERACTION_CREATE              = "INTERACTION_CREATE"
    INVITE_CREATE                   = "INVITE_CREATE"
    INVITE_DELETE                   = "INVITE_DELETE"
    MESSAGE_CREATE                  = "MESSAGE_CREATE"
    MESSAGE_UPDATE                  = "MESSAGE_UPDATE"
    MESSAGE_DELETE                  = "MESSAGE_DELETE"
    MESSAGE_DELETE_BULK             = "MESSAGE_DELETE_BULK"
    MESSAGE_REACTION_ADD            = "MESSAGE_REACTION_ADD"
    MESSAGE_REACTION_REMOVE         = "MESSAGE_REACTION_REMOVE"
    MESSAGE_REACTION_REMOVE_ALL     = "MESSAGE_REACTION_REMOVE_ALL"
    MESSAGE_REACTION_REMOVE_EMOJI   = "MESSAGE_REACTION_REMOVE_EMOJI"
    PRESENCE_UPDATE                 = "PRESENCE_UPDATE"
    TYPING_START                    = "TYPING_START"
    USER_UPDATE                     = "USER_UPDATE"
    VOICE_STATE_UPDATE              = "VOICE_STATE_UPDATE"
    VOICE_SERVER_UPDATE             = "VOICE_SERVER_UPDATE"
    WEBHOOKS_UPDATE                 = "WEBHOOKS_UPDATE"


_E = EventName
_I = Intents

# An event is delivered when any of its intents was negotiated; events
# missing from this table are never filtered.
EVENT_INTENTS: t.Dict[EventName, Intents] = {
    _E.GUILD_CREATE: _I.GUILDS,
    _E.GUILD_UPDATE: _I.GUILDS,
    _E.GUILD_DELETE: _I.GUILDS,
    _E.GUILD_ROLE_CREATE: _I.GUILDS,
    _E.GUILD_ROLE_UPDATE: _I.GUILDS,
    _E.GUILD_ROLE_DELETE: _I.GUILDS,
    _E.CHANNEL_CREATE: _I.GUILDS,
    _E.CHANNEL_UPDATE: _I.GUILDS,
    _E.CHANNEL_DELETE: _I.GUILDS,
    _E.CHANNEL_PINS_UPDATE: _I.GUILDS | _I.DIRECT_MESSAGES,
    _E.GUILD_MEMBER_ADD: _I.GUILD_MEMBERS,
    _E.GUILD_MEMBER_UPDATE: _I.GUILD_MEMBERS,
    _E.GUILD_MEMBER_REMOVE: _I.GUILD_MEMBERS,
    _E.GUILD_BAN_ADD: _I.GUILD_BANS,
    _E.GUILD_BAN_REMOVE: _I.GUILD_BANS,
    _E.GUILD_EMOJIS_UPDATE: _I.GUILD_EMOJIS,
    _E.GUILD_INTEGRATIONS_UPDATE: _I.GUILD_INTEGRATIONS,
    _E.WEBHOOKS_UPDATE: _I.GUILD_WEBHOOKS,
    _E.INVITE_CREATE: _I.GUILD_INVITES,
    _E.INVITE_DELETE: _I.GUILD_INVITES,
    _E.VOICE_STATE_UPDATE: _I.GUILD_VOICE_STATES,
    _E.PRESENCE_UPDATE: _I.GUILD_PRESENCES,
    _E.MESSAGE_CREATE: _I.GUILD_MESSAGES | _I.DIRECT_MESSAGES,
    _E.MESSAGE_UPDATE: _I.GUILD_MESSAGES | _I.DIRECT_MESSAGES,
    _E.MESSAGE_DELETE: _I.GUILD_MESSAGES | _I.DIRECT_MESSAGES,
    _E.MESSAGE_DELETE_BULK: _I.GUILD_MESSAGES,
    _E.MESSAGE_REACTION_ADD: _I.GUILD_MESSAGE_REACTIONS | _I.DIRECT_MESSAGE_REACTIONS,
    _E.MESSAGE_REACTION_REMOVE: _I.GUILD_MESSAGE_REACTIONS | _I.DIRECT_MESSAGE_REACTIONS,
    _E.MESSAGE_REACTION_REMOVE_ALL: _I.GUILD_MESSAGE_REACTIONS | _I.DIRECT_MESSAGE_REACTIONS,
    _E.MESSAGE_REACTION_REMOVE_EMOJI: _I.GUILD_MESSAGE_REACTIONS | _I.DIRECT_MESSAGE_REACTIONS,
    _E.TYPING_START: _I.GUILD_MESSAGE_TYPING | _I.DIRECT_MESSAGE_TYPING,
}


def _typed(cls: t.Any) -> t.Callable[[t.Any], t.Any]:
    required = cls.__required_keys__

    def decode(data: t.Any) -> t.Any:
        if not isinstance(data, dict):
            raise errors.DecodeError(f"{cls.__name__} expects an object, got {type(data).__name__}")

        missing = required.difference(data)
        if missing:
            raise errors.DecodeError(
                f"{cls.__name__} is missing {', '.join(sorted(missing))}"
            )

        return data

    decode.__qualname__ = f"decode_{cls.__name__}"
    return decode


def _nothing(data: t.Any) -> None:
    return None


DECODERS: t.Dict[EventName, t.Callable[[t.Any], t.Any]] = {
    _E.READY: _typed(types.Ready),
    _E.RESUMED: _nothing,
    _E.CHANNEL_CREATE: _typed(types.Channel),
    _E.CHANNEL_UPDATE: _typed(types.Channel),
    _E.CHANNEL_DELETE: _typed(types.Channel),
    _E.CHANNEL_PINS_UPDATE: _typed(types.ChannelPinsUpdate),
    _E.GUILD_CREATE: _typed(types.Guild),
    _E.GUILD_UPDATE: _typed(types.Guild),
    _E.GUILD_DELETE: _typed(types.UnavailableGuild),
    _E.GUILD_BAN_ADD: _typed(types.GuildBan),
    _E.GUILD_BAN_REMOVE: _typed(types.GuildBan),
    _E.GUILD_EMOJIS_UPDATE: _typed(types.GuildEmojisUpdate),
    _E.GUILD_INTEGRATIONS_UPDATE: _typed(types.GuildIntegrationsUpdate),
    _E.GUILD_MEMBER_ADD: _typed(types.GuildMemberAdd),
    _E.GUILD_MEMBER_REMOVE: _typed(types.GuildMemberRemove),
    _E.GUILD_MEMBER_UPDATE: _typed(types.GuildMemberUpdate),
    _E.GUILD_MEMBERS_CHUNK: _typed(types.GuildMembersChunk),
    _E.GUILD_ROLE_CREATE: _typed(types.GuildRole),
    _E.GUILD_ROLE_UPDATE: _typed(types.GuildRole),
    _E.GUILD_ROLE_DELETE: _typed(types.GuildRoleDelete),
    _E.INTERACTION_CREATE: _typed(types.Interaction),
    _E.INVITE_CREATE: _typed(types.InviteCreate),
    _E.INVITE_DELETE: _typed(types.InviteDelete),
    _E.MESSAGE_CREATE: _typed(types.Message),
    _E.MESSAGE_UPDATE: _typed(types.PartialMessage),
    _E.MESSAGE_DELETE: _typed(types.MessageDelete),
    _E.MESSAGE_DELETE_BULK: _typed(types.MessageDeleteBulk),
    _E.MESSAGE_REACTION_ADD: _typed(types.MessageReactionAdd),
    _E.MESSAGE_REACTION_REMOVE: _typed(types.MessageReactionRemove),
    _E.MESSAGE_REACTION_REMOVE_ALL: _typed(types.MessageReaction),
    _E.MESSAGE_REACTION_REMOVE_EMOJI: _typed(types.MessageReactionRemoveEmoji),
    _E.PRESENCE_UPDATE: _typed(types.PresenceUpdate),
    _E.TYPING_START: _typed(types.TypingStart),
    _E.USER_UPDATE: _typed(types.User),
    _E.VOICE_STATE_UPDATE: _typed(types.VoiceState),
    _E.VOICE_SERVER_UPDATE: _typed(types.VoiceServerUpdate),
    _E.WEBHOOKS_UPDATE: _typed(types.WebhooksUpdate),
}

del _E, _I


class DispatchEvent(t.NamedTuple):
    name: str
    # None for event names this version does not know about
    event: t.Optional[EventName]
    data: t.Any
    shard_id: t.Optional[int] = None

    @property
    def guild_id(self) -> t.Optional[int]:
        if isinstance(self.data, dict) and self.data.get("guild_id") is not None:
            return int(self.data["guild_id"])
        return None


class DispatchRouter:
    """Turns dispatch payloads into :class:`DispatchEvent` objects and hands
    them to listeners, in the order they arrived.

    Listeners may be plain callables or coroutine functions; coroutines are
    scheduled as tasks so a slow listener never stalls the gateway read loop.
    """

    __slots__ = (
        "intents",

        "_listeners",
        "_tasks",
    )

    WILDCARD: t.ClassVar[str] = "*"

    def __init__(self, intents: t.Optional[int] = None) -> None:
        self.intents = None if intents is None else Intents(intents)

        self._listeners: t.Dict[str, t.List[Listener]] = {}
        self._tasks: t.Set[asyncio.Task] = set()

    def add_listener(self, name: t.Union[str, EventName], listener: Listener) -> None:
        key = name.value if isinstance(name, EventName) else name.upper()
        if key == "*":
            key = self.WILDCARD

        self._listeners.setdefault(key, []).append(listener)

    def remove_listener(self, name: t.Union[str, EventName], listener: Listener) -> None:
        key = name.value if isinstance(name, EventName) else name.upper()

        try:
            self._listeners[key].remove(listener)
        except (KeyError, ValueError):
            pass

    def listen(self, name: t.Union[str, EventName] = "*") -> t.Callable[[Listener], Listener]:
        def decorator(listener: Listener) -> Listener:
            self.add_listener(name, listener)
            return listener

        return decorator

    def is_allowed(self, event: t.Optional[EventName]) -> bool:
        if self.intents is None or event is None:
            return True

        required = EVENT_INTENTS.get(event)
        if required is None:
            return True

        return bool(self.intents & required)

    @staticmethod
    def lookup(name: str) -> t.Optional[EventName]:
        try:
            return EventName(name)
        except ValueError:
            return None

    def decode(self, name: str, data: t.Any, shard_id: t.Optional[int] = None) -> DispatchEvent:
        event = self.lookup(name)
        if event is None:
            _log.debug("forwarding unknown event %s", name)
            return DispatchEvent(name, None, data, shard_id)

        return DispatchEvent(name, event, DECODERS[event](data), shard_id)

    def route(
        self,
        name: str,
        data: t.Any,
        shard_id: t.Optional[int] = None,
    ) -> t.Optional[DispatchEvent]:
        """Decodes and delivers one dispatch.

        Returns ``None`` when the event is filtered out by the intents.
        """
        if not self.is_allowed(self.lookup(name)):
            _log.debug("dropping %s, its intents were not requested", name)
            return None

        event = self.decode(name, data, shard_id)

        for listener in [*self._listeners.get(name, ()), *self._listeners.get(self.WILDCARD, ())]:
            self._call(listener, event)

        return event

    def __call__(self, name: str, data: t.Any, shard_id: t.Optional[int] = None) -> None:
        self.route(name, data, shard_id)

    def _call(self, listener: Listener, event: DispatchEvent) -> None:
        try:
            result = listener(event)
        except Exception:
            _log.exception("listener %r failed on %s", listener, event.name)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)

        if task.cancelled():
            return

        exc = task.exception()
        if exc is not None:
            _log.error("listener task failed", exc_info=exc)

    async def wait_idle(self) -> None:
        """Waits for the listener tasks scheduled so far."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def cancel_pending(self) -> None:
        for task in list(self._tasks):
            task.cancel()
