import json
import logging
import typing as t

from aiohttp import ClientSession

from . import errors, utils
from .types import GatewayBotPayload, GatewayPayload

__all__ = ("HTTPClient", "Route")

_log = logging.getLogger(__name__)

DEFAULT_BASE = "https://discord.com/api/v10"


class Route:
    __slots__ = ("_method", "_path", "auth")

    def __init__(self, method: str, path: str, *, auth: bool = True, **params: t.Any) -> None:
        path = path.format_map(params)

        self._method = method
        self._path = path
        self.auth = auth

    def __repr__(self) -> str:
        return "Route({0.method!r}, {0.path!r}, auth={0.auth})".format(self)

    @property
    def method(self) -> str:
        return self._method.upper()

    @property
    def path(self) -> str:
        return '/' + self._path.lstrip('/')


class HTTPClient:
    """The slice of the REST API the gateway needs."""

    __slots__ = (
        "token",
        "base",

        "session",
        "_closed",
        "_owns_session",
        "_user_agent",
    )

    def __init__(
        self,
        token: t.Optional[str] = None,
        *,
        base: str = DEFAULT_BASE,
        session: t.Optional[ClientSession] = None,
    ) -> None:
        self.token = token
        self.base = base.rstrip('/')

        self.session = session
        self._closed = False
        self._owns_session = session is None
        self._user_agent = "DiscordBot (tapioca)"

    def is_closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return

        if self._owns_session and self.session is not None:
            with utils.suppress_all():
                await self.session.close()

        self.session = None
        self._closed = True

    def url(self, route: Route) -> str:
        return self.base + route.path

    async def request(self, route: Route, **kwargs: t.Any) -> t.Any:
        if self._closed:
            raise errors.TapiocaError("the HTTP client is closed")

        if self.session is None:
            self.session = ClientSession()
            self._owns_session = True

        headers: t.Dict[str, str] = {
            "User-Agent": self._user_agent,
        }

        if route.auth:
            if not self.token:
                raise errors.Unauthorized(401, "no token was given")

            headers["Authorization"] = "Bot " + self.token

        kwargs["url"] = self.url(route)
        kwargs["method"] = route.method
        kwargs["headers"] = headers

        async with self.session.request(**kwargs) as response:
            data: t.Any = await response.text()

            if response.content_type == "application/json":
                data = json.loads(data)

            _log.debug("%s %s -> %d", route.method, route.path, response.status)

            if 300 > response.status >= 200:
                return data

            message = data.get("message") if isinstance(data, dict) else data

            if response.status == 401:
                raise errors.Unauthorized(response.status, message)

            if response.status == 404:
                raise errors.NotFound(response.status, message)

            raise errors.HTTPException(response.status, message)

    # Gateway

    async def get_gateway(self) -> GatewayPayload:
        r = Route("GET", "/gateway", auth=False)
        return await self.request(r)

    async def get_bot_gateway(self) -> GatewayBotPayload:
        r = Route("GET", "/gateway/bot")
        return await self.request(r)
