import asyncio
import json
import typing as t

import aiohttp
import msgpack
import pytest
from aiohttp import WSMsgType as MType

from tapioca.gateway import GatewayWebSocket, OpCode, get_codec
from tapioca.utils import ExponentialBackoff

READY = {
    "v": 10,
    "user": {"id": "80351110224678912", "username": "tapioca", "discriminator": "0001", "avatar": None},
    "guilds": [{"id": "41771983423143937", "unavailable": True}],
    "session_id": "abc123",
    "resume_gateway_url": "wss://resume.example",
    "shard": [0, 1],
}


class FakeSocket:
    """Stands in for an ``aiohttp.ClientWebSocketResponse``.

    The test plays the server: ``push`` queues frames for the client to read
    and ``expect`` returns what the client sent.
    """

    def __init__(self, encoding: str = "json") -> None:
        self.codec = get_codec(encoding)

        self.closed = False
        self.close_code: t.Optional[int] = None
        self.client_close_code: t.Optional[int] = None
        self.payloads: t.List[t.Dict[str, t.Any]] = []

        self._incoming: asyncio.Queue = asyncio.Queue()
        self._sent: asyncio.Queue = asyncio.Queue()

    # Server side

    def push(self, op: int, d: t.Any = None, *, s: t.Optional[int] = None, t: t.Optional[str] = None) -> None:
        self.push_raw(self.codec.encode(op, d, s, t))

    def dispatch(self, name: str, d: t.Any, s: int) -> None:
        self.push(OpCode.DISPATCH, d, s=s, t=name)

    def push_raw(self, data: t.Union[str, bytes]) -> None:
        type_ = MType.BINARY if isinstance(data, bytes) else MType.TEXT
        self._incoming.put_nowait(aiohttp.WSMessage(type_, data, None))

    def server_close(self, code: int, reason: str = "") -> None:
        self._incoming.put_nowait(aiohttp.WSMessage(MType.CLOSE, code, reason))

    def drop(self, code: int = 1006) -> None:
        """Loses the transport without a close frame."""
        self.closed = True
        self.close_code = code
        self._incoming.put_nowait(aiohttp.WSMessage(MType.CLOSED, None, None))

    async def expect(self, op: int, timeout: float = 1.0) -> t.Dict[str, t.Any]:
        """Returns the next payload with ``op`` the client sent, skipping others."""
        async def next_match() -> t.Dict[str, t.Any]:
            while True:
                payload = await self._sent.get()
                if payload["op"] == op:
                    return payload

        return await asyncio.wait_for(next_match(), timeout)

    def sent_ops(self) -> t.List[int]:
        return [payload["op"] for payload in self.payloads]

    # Client side

    async def receive(self, timeout: t.Optional[float] = None) -> aiohttp.WSMessage:
        message = await asyncio.wait_for(self._incoming.get(), timeout)

        if message.type is MType.CLOSE:
            self.closed = True
            self.close_code = message.data

        return message

    async def send_str(self, data: str) -> None:
        self._record(json.loads(data))

    async def send_bytes(self, data: bytes) -> None:
        self._record(msgpack.unpackb(data, raw=False))

    async def close(self, *, code: int = 1000, message: bytes = b"") -> bool:
        if self.closed:
            return False

        self.closed = True
        self.close_code = code
        self.client_close_code = code
        self._incoming.put_nowait(aiohttp.WSMessage(MType.CLOSED, None, None))
        return True

    def _record(self, payload: t.Dict[str, t.Any]) -> None:
        self.payloads.append(payload)
        self._sent.put_nowait(payload)


class FakeGateway:
    """Stands in for the ``aiohttp.ClientSession`` a shard connects with."""

    def __init__(self, encoding: str = "json") -> None:
        self.encoding = encoding
        self.urls: t.List[str] = []
        self.refuse = False
        self.closed = False

        self._sockets: asyncio.Queue = asyncio.Queue()

    async def ws_connect(self, url: str, **kwargs: t.Any) -> FakeSocket:
        self.urls.append(url)

        if self.refuse:
            raise aiohttp.ClientConnectionError("connection refused")

        socket = FakeSocket(self.encoding)
        self._sockets.put_nowait(socket)
        return socket

    async def next_socket(self, timeout: float = 1.0) -> FakeSocket:
        return await asyncio.wait_for(self._sockets.get(), timeout)

    async def close(self) -> None:
        self.closed = True


class FakeHTTP:
    def __init__(self, shards: int = 2, remaining: int = 1000, max_concurrency: int = 1) -> None:
        self.calls = 0
        self.payload = {
            "url": "wss://gateway.example",
            "shards": shards,
            "session_start_limit": {
                "total": 1000,
                "remaining": remaining,
                "reset_after": 0,
                "max_concurrency": max_concurrency,
            },
        }

    async def get_bot_gateway(self) -> t.Dict[str, t.Any]:
        self.calls += 1
        return self.payload

    async def close(self) -> None:
        pass


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
async def make_ws(gateway: FakeGateway):
    created: t.List[GatewayWebSocket] = []

    def factory(**kwargs: t.Any) -> GatewayWebSocket:
        kwargs.setdefault("http_session", gateway)
        kwargs.setdefault("hello_timeout", 1.0)
        kwargs.setdefault("backoff", ExponentialBackoff(0.001, 0.001))

        ws = GatewayWebSocket("test-token", **kwargs)
        created.append(ws)
        return ws

    yield factory

    for ws in created:
        await ws.close()


@pytest.fixture
def handshake():
    async def handshake(ws: GatewayWebSocket, interval: int = 41250) -> FakeSocket:
        """Connects ``ws`` and answers with HELLO; returns the server side."""
        task = asyncio.ensure_future(ws.connect())

        socket = await ws.http_session.next_socket()  # type: ignore[union-attr]
        socket.push(OpCode.HELLO, {"heartbeat_interval": interval})

        await asyncio.wait_for(task, 1.0)
        return socket

    return handshake


@pytest.fixture
def eventually():
    async def eventually(predicate: t.Callable[[], bool], timeout: float = 1.0) -> None:
        async def poll() -> None:
            while not predicate():
                await asyncio.sleep(0.005)

        await asyncio.wait_for(poll(), timeout)

    return eventually
