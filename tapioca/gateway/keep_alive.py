import asyncio
import logging
import random
import time
import typing as t

if t.TYPE_CHECKING:
    from .core import GatewayWebSocket

__all__ = ("KeepAlive",)

_log = logging.getLogger(__name__)


class KeepAlive:
    """Heartbeats a gateway connection.

    The first beat is sent after a random fraction of the interval so shards
    started together do not beat in lockstep. If a beat is still unacknowledged
    when the next one is due the connection is a zombie: the keep alive stops
    and tells the websocket once.
    """

    __slots__ = (
        "ws",
        "interval",

        "latency",
        "_task",
        "_stopped",
        "_first_delay",
        "_last_ack",
        "_last_send",
        "_last_recv",
    )

    def __init__(
        self,
        ws: "GatewayWebSocket",
        interval: float,
        *,
        first_delay: t.Optional[float] = None,
    ) -> None:
        self.ws = ws
        self.interval = interval

        self.latency: t.Optional[float] = None
        self._task: t.Optional[asyncio.Task] = None
        self._stopped = False
        self._first_delay = first_delay
        self._last_ack = time.perf_counter()
        self._last_send = time.perf_counter()
        self._last_recv = time.perf_counter()

    @property
    def acked(self) -> bool:
        return self.ws.session.last_heartbeat_acked

    def is_stopped(self) -> bool:
        return self._stopped

    def start(self) -> None:
        if self._task is not None or self._stopped:
            return

        self.ws.session.last_heartbeat_acked = True
        self._task = asyncio.ensure_future(self.run())

    async def run(self) -> None:
        delay = self._first_delay
        if delay is None:
            delay = random.random() * self.interval

        await asyncio.sleep(delay)

        while not self._stopped:
            if not self.acked:
                _log.warning(
                    "shard %s missed a heartbeat ack after %.2fs, closing zombied connection",
                    self.ws.shard_id,
                    time.perf_counter() - self._last_send,
                )
                self._stopped = True
                await self.ws.zombied()
                return

            try:
                await self.send_heartbeat()
            except Exception:
                _log.exception("shard %s failed to send a heartbeat", self.ws.shard_id)
                self._stopped = True
                return

            await asyncio.sleep(self.interval)

    async def send_heartbeat(self) -> None:
        # Unacked before the write: the ack can arrive while it is in flight.
        self.send()
        await self.ws.heartbeat()

    async def beat_now(self) -> None:
        """Answers a heartbeat request from the server without moving the timer."""
        if self._stopped:
            return

        await self.send_heartbeat()

    def stop(self) -> None:
        if self._stopped and self._task is None:
            return

        self._stopped = True
        task, self._task = self._task, None

        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None

            if task is not current:
                task.cancel()

    def ack(self) -> None:
        now = time.perf_counter()
        self.latency = now - self._last_send
        self._last_ack = now
        self.ws.session.last_heartbeat_acked = True
        _log.debug("shard %s heartbeat acked (%.1fms)", self.ws.shard_id, self.latency * 1000)

    def recv(self) -> None:
        self._last_recv = time.perf_counter()

    def send(self) -> None:
        self._last_send = time.perf_counter()
        self.ws.session.last_heartbeat_sent_at = time.time()
        self.ws.session.last_heartbeat_acked = False
