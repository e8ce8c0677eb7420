import asyncio
import logging
import time
import typing as t

import aiohttp

from .. import errors
from ..types import GatewayBotPayload
from .core import Dispatcher, GatewayWebSocket
from .ratelimit import IdentifyLimiter

if t.TYPE_CHECKING:
    from ..http import HTTPClient

__all__ = ("ShardCoordinator", "shard_id_for")

_log = logging.getLogger(__name__)


def shard_id_for(guild_id: t.Union[int, str], num_shards: int) -> int:
    """Returns the shard a guild's events arrive on."""
    if num_shards < 1:
        raise ValueError("num_shards must be positive")

    return (int(guild_id) >> 22) % num_shards


class ShardCoordinator:
    """Runs one :class:`GatewayWebSocket` per shard.

    The shards share nothing but the :class:`IdentifyLimiter`; each runs in its
    own task and can be stopped without touching the others.
    """

    __slots__ = (
        "http",
        "token",
        "intents",
        "dispatcher",
        "shard_count",
        "shard_ids",
        "refresh_after",
        "options",

        "limiter",
        "shards",
        "gateway",
        "_tasks",
        "_fetched_at",
        "_refresh_lock",
        "_http_session",
        "_owns_http_session",
    )

    def __init__(
        self,
        http: "HTTPClient",
        token: str,
        *,
        intents: int = 0,
        dispatcher: t.Optional[Dispatcher] = None,
        shard_count: t.Optional[int] = None,
        shard_ids: t.Optional[t.Sequence[int]] = None,
        refresh_after: float = 60.0,
        http_session: t.Optional[aiohttp.ClientSession] = None,
        **options: t.Any,
    ) -> None:
        self.http = http
        self.token = token
        self.intents = intents
        self.dispatcher = dispatcher
        self.shard_count = shard_count
        self.shard_ids = list(shard_ids) if shard_ids is not None else None
        self.refresh_after = refresh_after
        self.options = options

        self.limiter: t.Optional[IdentifyLimiter] = None
        self.shards: t.Dict[int, GatewayWebSocket] = {}
        self.gateway: t.Optional[GatewayBotPayload] = None
        self._tasks: t.Dict[int, asyncio.Task] = {}
        self._fetched_at: t.Optional[float] = None
        self._refresh_lock = asyncio.Lock()
        self._http_session = http_session
        self._owns_http_session = http_session is None

    def __repr__(self) -> str:
        return f"<ShardCoordinator shards={sorted(self.shards)} count={self.shard_count}>"

    def __len__(self) -> int:
        return len(self.shards)

    @property
    def latencies(self) -> t.Dict[int, t.Optional[float]]:
        return {id: shard.latency for id, shard in self.shards.items()}

    async def refresh_limits(self, *, force: bool = False) -> GatewayBotPayload:
        """Fetches ``/gateway/bot`` again unless the last answer is still fresh."""
        async with self._refresh_lock:
            stale = (
                self._fetched_at is None
                or time.monotonic() - self._fetched_at >= self.refresh_after
            )

            if self.gateway is None or stale or force:
                self.gateway = await self.http.get_bot_gateway()
                self._fetched_at = time.monotonic()

                limit = self.gateway["session_start_limit"]
                if self.limiter is None:
                    self.limiter = IdentifyLimiter.from_payload(limit)
                else:
                    self.limiter.update(limit)

                _log.debug("session start limit: %s", self.limiter)

            return self.gateway

    def shard_for(self, guild_id: t.Union[int, str]) -> GatewayWebSocket:
        if not self.shard_count:
            raise errors.GatewayError("shards have not been created yet")

        id = shard_id_for(guild_id, self.shard_count)
        try:
            return self.shards[id]
        except KeyError:
            raise errors.GatewayError(f"shard {id} is not run by this process") from None

    def create_shards(self) -> t.Dict[int, GatewayWebSocket]:
        if self.gateway is None or self.limiter is None:
            raise errors.GatewayError("call refresh_limits() first")

        if self.shard_count is None:
            self.shard_count = self.gateway["shards"]

        ids = self.shard_ids if self.shard_ids is not None else range(self.shard_count)

        for id in ids:
            if id in self.shards:
                continue

            self.shards[id] = GatewayWebSocket(
                self.token,
                intents=self.intents,
                shard_id=id,
                shard_count=self.shard_count,
                url=self.gateway["url"],
                dispatcher=self.dispatcher,
                limiter=self.limiter,
                before_identify=self._before_identify,
                http_session=self._http_session,
                **self.options,
            )

        return self.shards

    async def start(self) -> None:
        """Connects every shard and waits until they all stop.

        A configuration error or a shard that keeps failing stops the others
        and is raised here.
        """
        await self.refresh_limits(force=True)

        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession()
            self._owns_http_session = True

        self.create_shards()
        _log.info("starting %d of %d shards", len(self.shards), self.shard_count)

        for id, shard in self.shards.items():
            self._tasks[id] = asyncio.ensure_future(self._run_shard(shard))

        try:
            while self._tasks:
                done, _ = await asyncio.wait(
                    list(self._tasks.values()), return_when=asyncio.FIRST_COMPLETED
                )

                for task in done:
                    self._forget(task)
                    if not task.cancelled() and task.exception() is not None:
                        raise task.exception()  # type: ignore[misc]
        finally:
            await self.close()

    async def _run_shard(self, shard: GatewayWebSocket) -> None:
        try:
            await shard.run()
        except errors.SessionFailed:
            _log.error("shard %s keeps failing, giving up", shard.shard_id)
            raise

    async def _before_identify(self) -> None:
        # a burst of fresh identifies needs an up to date quota
        try:
            await self.refresh_limits()
        except (errors.HTTPException, aiohttp.ClientError) as exc:
            _log.warning("could not refresh the session start limit: %r", exc)

    def _forget(self, task: asyncio.Task) -> None:
        for id, value in list(self._tasks.items()):
            if value is task:
                del self._tasks[id]

    async def stop_shard(self, shard_id: int) -> None:
        """Stops one shard; the others keep running."""
        shard = self.shards.pop(shard_id, None)
        task = self._tasks.pop(shard_id, None)

        if shard is not None:
            await shard.shutdown()

        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def close(self) -> None:
        for id in list(self.shards):
            await self.stop_shard(id)

        self._tasks.clear()

        if self._owns_http_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    async def change_presence(self, **kwargs: t.Any) -> None:
        for shard in self.shards.values():
            if shard.is_ready():
                await shard.change_presence(**kwargs)
