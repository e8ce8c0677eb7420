import asyncio
import logging
import typing as t

from .config import Config, load_config
from .dispatch import DispatchEvent, DispatchRouter, EventName
from .gateway import ShardCoordinator
from .http import HTTPClient
from .intents import Intents
from . import utils

__all__ = ("Bot",)

_log = logging.getLogger(__name__)


class Bot:
    __slots__ = (
        "intents",
        "shard_count",
        "shard_ids",
        "options",

        "http",
        "router",
        "shards",
        "token",

        "_closed",
    )

    def __init__(
        self,
        intents: t.Optional[int] = None,
        *,
        shard_count: t.Optional[int] = None,
        shard_ids: t.Optional[t.Sequence[int]] = None,
        **options: t.Any,
    ) -> None:
        self.intents = Intents.default() if intents is None else Intents(intents)
        self.shard_count = shard_count
        self.shard_ids = shard_ids
        # forwarded to every GatewayWebSocket (encoding, compress, presence, ...)
        self.options = options

        self.http = HTTPClient()
        self.router = DispatchRouter(self.intents)
        self.shards: t.Optional[ShardCoordinator] = None
        self.token: t.Optional[str] = None

        self._closed = False

    @classmethod
    def from_config(cls, config: t.Optional[Config] = None, **options: t.Any) -> "Bot":
        config = config or load_config()

        bot = cls(
            config.intents,
            shard_count=config.shard_count,
            encoding=config.encoding,
            compress=config.compress,
            version=config.version,
            hello_timeout=config.hello_timeout,
            max_retries=config.max_retries,
            **options,
        )
        bot.token = config.token
        return bot

    def is_closed(self) -> bool:
        return self._closed

    def event(
        self,
        name: t.Union[str, EventName] = "*",
    ) -> t.Callable[[t.Callable[[DispatchEvent], t.Any]], t.Callable[[DispatchEvent], t.Any]]:
        """Registers a listener for one event name, or for every event."""
        return self.router.listen(name)

    def run(self, token: t.Optional[str] = None) -> None:
        if token is not None:
            self.token = token

        async def runner() -> None:
            try:
                await self.start()
                await self.connect()
            finally:
                if not self.is_closed():
                    await self.close()

        try:
            asyncio.run(runner())
        except KeyboardInterrupt:
            _log.info("interrupted, shutting down")

    async def start(self) -> None:
        """Creates the :class:`HTTPClient` used to bootstrap the gateway."""
        if not self.token:
            raise ValueError("token expected")

        self.http = HTTPClient(self.token)

    async def connect(self) -> None:
        """Runs every shard until closed or a fatal error occurs."""
        self.shards = ShardCoordinator(
            self.http,
            self.token,
            intents=self.intents,
            dispatcher=self.router,
            shard_count=self.shard_count,
            shard_ids=self.shard_ids,
            **self.options,
        )

        await self.shards.start()

    @property
    def latencies(self) -> t.Dict[int, t.Optional[float]]:
        if self.shards is None:
            return {}
        return self.shards.latencies

    async def change_presence(self, **kwargs: t.Any) -> None:
        if self.shards is not None:
            await self.shards.change_presence(**kwargs)

    async def close(self) -> None:
        if self._closed:
            return

        if self.shards is not None:
            await self.shards.close()

        self.router.cancel_pending()

        with utils.suppress_all():
            await self.http.close()

        self._closed = True
