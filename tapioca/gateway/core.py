import asyncio
import logging
import random
import sys
import time
import typing as t
from urllib.parse import urlencode

import aiohttp
from aiohttp import WSMsgType as MType

from .. import errors, utils
from ..types import Payload, UpdatePresence
from .close_codes import CloseAction, classify
from .codec import Codec, ZlibInflator, get_codec
from .keep_alive import KeepAlive
from .opcodes import OpCode
from .ratelimit import CommandRateLimiter, IdentifyLimiter
from .session import Session, SessionState

__all__ = ("GatewayWebSocket",)

_log = logging.getLogger(__name__)

DEFAULT_GATEWAY = "wss://gateway.discord.gg/"
_DEFAULT_INTERVAL = 41.25

# Sent when the session should survive the close
RESUMABLE_CLOSE = 4000
# Sent on a corrupt stream; the session is dropped anyway
ERROR_CLOSE = 1011
# A connection that lived this long resets the reconnect backoff
STABLE_CONNECTION = 60.0

Dispatcher = t.Callable[[str, t.Any, int], t.Any]


class GatewayWebSocket:
    """One shard's gateway connection and the session it carries.

    ``connect`` performs a single handshake, ``poll_event`` reads one frame and
    ``run`` ties both into the reconnect loop: it keeps the shard connected,
    resuming whenever the session allows it, until :meth:`shutdown` is called
    or the gateway rejects the configuration.
    """

    __slots__ = (
        "token",
        "intents",
        "shard_id",
        "shard_count",
        "url",
        "version",
        "codec",
        "compress",
        "dispatcher",
        "limiter",
        "before_identify",
        "ratelimiter",
        "presence",
        "large_threshold",
        "hello_timeout",
        "max_retries",
        "backoff",
        "session",
        "http_session",
        "properties",

        "state",
        "socket",
        "keep_alive",
        "_closed",
        "_stopping",
        "_zombied",
        "_inflator",
        "_owns_http_session",
        "_ready",
        "_connected_at",
    )

    def __init__(
        self,
        token: str,
        *,
        intents: int = 0,
        shard_id: int = 0,
        shard_count: int = 1,
        url: str = DEFAULT_GATEWAY,
        version: int = 10,
        encoding: t.Union[str, Codec] = "json",
        compress: bool = False,
        dispatcher: t.Optional[Dispatcher] = None,
        limiter: t.Optional[IdentifyLimiter] = None,
        before_identify: t.Optional[t.Callable[[], t.Awaitable[t.Any]]] = None,
        ratelimiter: t.Optional[CommandRateLimiter] = None,
        presence: t.Optional[UpdatePresence] = None,
        large_threshold: t.Optional[int] = None,
        hello_timeout: float = 20.0,
        max_retries: int = 5,
        backoff: t.Optional[utils.ExponentialBackoff] = None,
        http_session: t.Optional[aiohttp.ClientSession] = None,
    ) -> None:
        if not token:
            raise ValueError("token expected")

        if not 0 <= shard_id < shard_count:
            raise ValueError(f"shard {shard_id} is out of range for {shard_count} shards")

        self.token = token
        self.intents = int(intents)
        self.shard_id = shard_id
        self.shard_count = shard_count
        self.url = url
        self.version = version
        self.codec = encoding if isinstance(encoding, Codec) else get_codec(encoding)
        self.compress = compress
        self.dispatcher = dispatcher
        self.limiter = limiter
        self.before_identify = before_identify
        self.ratelimiter = ratelimiter or CommandRateLimiter()
        self.presence = presence
        self.large_threshold = large_threshold
        self.hello_timeout = hello_timeout
        self.max_retries = max_retries
        self.backoff = backoff or utils.ExponentialBackoff()
        self.session = Session()
        self.http_session = http_session
        self.properties = {
            "os": sys.platform,
            "browser": "tapioca",
            "device": "tapioca",
        }

        self.state = SessionState.CLOSED
        self.socket: t.Optional[aiohttp.ClientWebSocketResponse] = None
        self.keep_alive: t.Optional[KeepAlive] = None
        self._closed = True
        self._stopping = False
        self._zombied = False
        self._inflator: t.Optional[ZlibInflator] = None
        self._owns_http_session = False
        self._ready = False
        self._connected_at = 0.0

    def __repr__(self) -> str:
        return (
            f"<GatewayWebSocket shard={self.shard_id}/{self.shard_count} "
            f"state={self.state.value} session={self.session!r}>"
        )

    @property
    def latency(self) -> t.Optional[float]:
        if self.keep_alive:
            return self.keep_alive.latency
        return None

    def is_closed(self) -> bool:
        return self._closed

    def is_ready(self) -> bool:
        return self.state is SessionState.CONNECTED

    def gateway_url(self, base: t.Optional[str] = None) -> str:
        params: t.Dict[str, t.Any] = {"v": self.version, "encoding": self.codec.encoding}
        if self.compress:
            params["compress"] = "zlib-stream"

        base = (base or self.url).split('?', 1)[0]
        return base.rstrip('/') + '/?' + urlencode(params)

    # Lifecycle

    async def connect(self) -> None:
        """Opens a connection and sends either IDENTIFY or RESUME."""
        self.state = SessionState.CONNECTING
        self._zombied = False
        self._ready = False

        resume = self.session.can_resume()
        reserved = False

        if not resume:
            # Taken before the socket opens: nobody reads acks while we wait.
            self.session.reset()
            if self.before_identify is not None:
                await self.before_identify()

            if self.limiter is not None:
                await self.limiter.acquire(self.shard_id)
                reserved = True

        try:
            await self._open(self.session.resume_url if resume else None)

            self.state = SessionState.AWAITING_HELLO
            try:
                await asyncio.wait_for(self._receive_hello(), timeout=self.hello_timeout)
            except asyncio.TimeoutError:
                _log.warning("shard %s got no HELLO within %.1fs", self.shard_id, self.hello_timeout)
                await self.close(RESUMABLE_CLOSE)
                raise errors.ReconnectWebSocket(resume=resume) from None

            if resume:
                self.state = SessionState.RESUMING
                await self.resume()
            else:
                self.state = SessionState.IDENTIFYING
                await self.identify()
        finally:
            if reserved:
                self.limiter.release(self.shard_id)

    async def _open(self, url: t.Optional[str]) -> None:
        if self.http_session is None or self.http_session.closed:
            self.http_session = aiohttp.ClientSession()
            self._owns_http_session = True

        wss = self.gateway_url(url)
        _log.debug("shard %s connecting to %s", self.shard_id, wss)

        try:
            self.socket = await self.http_session.ws_connect(wss, max_msg_size=0)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            self.state = SessionState.CLOSED
            raise errors.ReconnectWebSocket(resume=self.session.can_resume()) from exc

        self._closed = False
        self._inflator = ZlibInflator() if self.compress else None

    async def _receive_hello(self) -> None:
        while self.keep_alive is None:
            await self.poll_event()

    async def run(self) -> None:
        """Keeps the shard connected until shut down.

        Raises :class:`~tapioca.errors.ConfigurationError` when the gateway
        rejects the token, shard or intents and
        :class:`~tapioca.errors.SessionFailed` after ``max_retries`` attempts in
        a row that never got to READY or RESUMED.
        """
        failures = 0
        self._stopping = False

        try:
            while not self._stopping:
                try:
                    await self._connect_and_poll()
                except errors.ReconnectWebSocket as exc:
                    if self._stopping:
                        break

                    if self._ready:
                        failures = 0
                        if time.monotonic() - self._connected_at >= STABLE_CONNECTION:
                            self.backoff.reset()
                            delay = exc.delay
                        else:
                            # dropped soon after READY or RESUMED
                            delay = max(exc.delay, self.backoff.delay())
                    else:
                        failures += 1
                        if failures >= self.max_retries:
                            self.state = SessionState.CLOSED
                            raise errors.SessionFailed(self.shard_id, failures) from exc
                        delay = max(exc.delay, self.backoff.delay())

                    _log.info(
                        "shard %s reconnecting in %.2fs (resume=%s, code=%s)",
                        self.shard_id, delay, self.session.can_resume(), exc.code,
                    )
                    await asyncio.sleep(delay)
        finally:
            await self.close(RESUMABLE_CLOSE)
            self.state = SessionState.CLOSED

    async def _connect_and_poll(self) -> t.NoReturn:
        try:
            await self.connect()
            while True:
                await self.poll_event()
        except (ConnectionError, aiohttp.ClientError) as exc:
            _log.warning("shard %s lost its connection: %r", self.shard_id, exc)
            await self.close(RESUMABLE_CLOSE)
            raise errors.ReconnectWebSocket(resume=self.session.can_resume()) from exc

    async def close(self, code: int = RESUMABLE_CLOSE) -> None:
        """Closes the transport. The session is kept for a later resume."""
        if self._closed:
            return

        self._closed = True
        self.state = SessionState.CLOSING

        if self.keep_alive:
            self.keep_alive.stop()
            self.keep_alive = None

        socket, self.socket = self.socket, None
        self._inflator = None

        try:
            if socket is not None and not socket.closed:
                await socket.close(code=code)
        finally:
            # a reconnect may already be under way
            if self.socket is None:
                self.state = SessionState.CLOSED

    async def shutdown(self) -> None:
        """Ends the session for good and releases what this connection owns."""
        self._stopping = True
        await self.close(1000)
        self.session.reset()

        if self._owns_http_session and self.http_session is not None:
            with utils.suppress_all():
                await self.http_session.close()

            self.http_session = None
            self._owns_http_session = False

    async def zombied(self) -> None:
        _log.warning("shard %s connection zombied, reconnecting", self.shard_id)
        self._zombied = True
        self.session.resumable = self.session.session_id is not None
        await self.close(RESUMABLE_CLOSE)

    # Reading

    def _receive_timeout(self) -> float:
        interval = _DEFAULT_INTERVAL
        if self.session.heartbeat_interval_ms:
            interval = self.session.heartbeat_interval_ms / 1000
        return interval * 2 + 20

    async def poll_event(self) -> None:
        """Reads and handles one message from the socket."""
        socket = self.socket
        if socket is None:
            raise errors.ReconnectWebSocket(resume=self.session.can_resume(), code=None)

        try:
            message = await socket.receive(timeout=self._receive_timeout())
        except asyncio.TimeoutError:
            _log.warning("shard %s read timed out", self.shard_id)
            await self.close(RESUMABLE_CLOSE)
            raise errors.ReconnectWebSocket(resume=self.session.can_resume()) from None

        type_: MType = message.type

        if type_ in (MType.TEXT, MType.BINARY):
            if self.keep_alive:
                self.keep_alive.recv()

            try:
                payload = self.parse_raw_message(message.data)
                if payload is None:
                    return

                return await self.handle_payload(payload)
            except errors.DecodeError:
                _log.exception("shard %s received an undecodable frame", self.shard_id)
                self.session.reset()
                await self.close(ERROR_CLOSE)
                raise errors.ReconnectWebSocket(resume=False, code=ERROR_CLOSE) from None

        if type_ is MType.CLOSE:
            return await self._handle_close(message.data, message.extra)

        if type_ in (MType.CLOSING, MType.CLOSED, MType.ERROR):
            if type_ is MType.ERROR:
                _log.warning("shard %s transport error: %r", self.shard_id, message.data)

            return await self._handle_close(socket.close_code, None)

        await self._unknown_message(message)

    async def _unknown_message(self, message: aiohttp.WSMessage, /) -> None:
        _log.debug("shard %s ignoring %s frame", self.shard_id, message.type)

    async def _handle_close(self, code: t.Optional[int], reason: t.Optional[str]) -> t.NoReturn:
        await self.close(RESUMABLE_CLOSE)

        if self._zombied:
            raise errors.ReconnectWebSocket(resume=self.session.can_resume(), code=code)

        action = classify(code)
        _log.info("shard %s closed with %s (%s): %s", self.shard_id, code, action.value, reason)

        if action is CloseAction.FATAL:
            self._stopping = True
            raise errors.ConfigurationError(code, reason)

        if action is CloseAction.IDENTIFY:
            self.session.reset()
            raise errors.ReconnectWebSocket(resume=False, code=code)

        self.session.resumable = self.session.session_id is not None
        raise errors.ReconnectWebSocket(resume=self.session.can_resume(), code=code)

    def parse_raw_message(self, data: t.Union[str, bytes]) -> t.Optional[Payload]:
        if isinstance(data, bytes) and self._inflator is not None:
            data = self._inflator.feed(data)
            if data is None:
                return None

        return self.codec.decode(data)

    async def handle_payload(self, payload: Payload) -> None:
        op = payload["op"]
        d = payload["d"]

        if op is OpCode.HELLO:
            if not isinstance(d, dict) or not d.get("heartbeat_interval"):
                raise errors.DecodeError(f"HELLO without a heartbeat interval: {d!r}")

            self.session.heartbeat_interval_ms = d["heartbeat_interval"]

            interval = self.session.heartbeat_interval_ms / 1000
            self.keep_alive = KeepAlive(self, interval)
            return self.keep_alive.start()

        if op is OpCode.HEARTBEAT_ACK:
            if self.keep_alive:
                self.keep_alive.ack()
            return

        if op is OpCode.HEARTBEAT:
            if self.keep_alive:
                return await self.keep_alive.beat_now()
            return await self.heartbeat()

        if op is OpCode.INVALID_SESSION:
            if d is True:
                _log.warning("shard %s session invalidated, resuming", self.shard_id)
                self.session.resumable = True
                await self.close(RESUMABLE_CLOSE)
                raise errors.ReconnectWebSocket(resume=self.session.can_resume())

            _log.warning("shard %s session invalidated, identifying again", self.shard_id)
            self.session.reset()
            await self.close(1000)
            raise errors.ReconnectWebSocket(resume=False, delay=random.uniform(1, 5))

        if op is OpCode.RECONNECT:
            _log.info("shard %s asked to reconnect", self.shard_id)
            self.session.resumable = True
            await self.close(RESUMABLE_CLOSE)
            raise errors.ReconnectWebSocket(resume=self.session.can_resume())

        if op is OpCode.DISPATCH:
            s = payload["s"]
            t = payload["t"]

            self.session.sequence.observe(s)

            if t == "READY":
                if not isinstance(d, dict) or not d.get("session_id"):
                    raise errors.DecodeError("READY without a session id")

                self.session.session_id = d["session_id"]
                self.session.resume_url = d.get("resume_gateway_url")
                self.session.resumable = True
                self._connected()
                _log.info("shard %s ready (session %s)", self.shard_id, self.session.session_id)

            elif t == "RESUMED":
                self._connected()
                _log.info("shard %s resumed at seq %s", self.shard_id, s)

            if self.dispatcher:
                try:
                    self.dispatcher(t, d, self.shard_id)
                except errors.DecodeError:
                    _log.exception("shard %s dropped a malformed %s", self.shard_id, t)

            return

        await self._unknown_payload(payload)

    def _connected(self) -> None:
        self.state = SessionState.CONNECTED
        self._ready = True
        self._connected_at = time.monotonic()

    async def _unknown_payload(self, payload: Payload, /) -> None:
        _log.debug("shard %s ignoring op %s", self.shard_id, payload["op"])

    # Writing

    async def send(self, op: int, d: t.Any = None, *, limited: bool = True) -> None:
        socket = self.socket
        if socket is None or socket.closed:
            raise ConnectionResetError(f"shard {self.shard_id} is not connected")

        if limited:
            await self.ratelimiter.acquire()

        data = self.codec.encode(op, d)
        if isinstance(data, bytes):
            await socket.send_bytes(data)
        else:
            await socket.send_str(data)

    async def identify(self) -> None:
        payload: t.Dict[str, t.Any] = {
            "token": self.token,
            "intents": self.intents,
            "properties": self.properties,
            "shard": [self.shard_id, self.shard_count],
            "compress": False,
        }

        if self.presence is not None:
            payload["presence"] = self.presence

        if self.large_threshold is not None:
            payload["large_threshold"] = self.large_threshold

        _log.debug("shard %s identifying", self.shard_id)
        await self.send(OpCode.IDENTIFY, payload)

    async def resume(self) -> None:
        payload = {
            "token": self.token,
            "session_id": self.session.session_id,
            "seq": self.session.sequence.current(),
        }

        _log.debug("shard %s resuming session %s", self.shard_id, self.session.session_id)
        await self.send(OpCode.RESUME, payload)

    async def heartbeat(self) -> None:
        # heartbeats never wait behind the command limit
        await self.send(OpCode.HEARTBEAT, self.session.sequence.current(), limited=False)

    async def change_presence(
        self,
        *,
        status: str = "online",
        activities: t.Optional[t.List[t.Dict[str, t.Any]]] = None,
        since: t.Optional[int] = None,
        afk: bool = False,
    ) -> None:
        presence: UpdatePresence = {
            "since": since,
            "activities": activities or [],
            "status": status,  # type: ignore[typeddict-item]
            "afk": afk,
        }

        self.presence = presence
        await self.send(OpCode.PRESENCE_UPDATE, presence)

    async def update_voice_state(
        self,
        guild_id: t.Union[int, str],
        channel_id: t.Optional[t.Union[int, str]],
        *,
        self_mute: bool = False,
        self_deaf: bool = False,
    ) -> None:
        await self.send(OpCode.VOICE_STATE_UPDATE, {
            "guild_id": str(guild_id),
            "channel_id": None if channel_id is None else str(channel_id),
            "self_mute": self_mute,
            "self_deaf": self_deaf,
        })

    async def request_guild_members(
        self,
        guild_id: t.Union[int, str],
        *,
        query: t.Optional[str] = None,
        limit: int = 0,
        presences: t.Optional[bool] = None,
        user_ids: t.Optional[t.List[t.Union[int, str]]] = None,
        nonce: t.Optional[str] = None,
    ) -> None:
        if query is None and not user_ids:
            query = ""

        payload: t.Dict[str, t.Any] = {"guild_id": str(guild_id), "limit": limit}

        if query is not None:
            payload["query"] = query

        if presences is not None:
            payload["presences"] = presences

        if user_ids:
            payload["user_ids"] = [str(id) for id in user_ids]

        if nonce is not None:
            payload["nonce"] = nonce

        await self.send(OpCode.REQUEST_GUILD_MEMBERS, payload)
