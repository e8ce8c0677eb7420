import asyncio
import collections
import logging
import time
import typing as t

from ..types import SessionStartLimit

__all__ = ("CommandRateLimiter", "IdentifyLimiter")

_log = logging.getLogger(__name__)

# Identifies within one concurrency bucket must be this far apart
IDENTIFY_COOLDOWN = 5.0
# The session start quota refills once a day
SESSION_START_WINDOW = 24 * 60 * 60.0


class IdentifyLimiter:
    """The session start limit shared by every shard of an application.

    ``remaining`` identifies are allowed until ``reset_after`` elapses, and
    within each of the ``max_concurrency`` buckets only one identify may be in
    flight, followed by a cooldown before the next.
    """

    __slots__ = (
        "total",
        "remaining",
        "max_concurrency",
        "cooldown",
        "_reset_at",
        "_quota_lock",
        "_locks",
        "_next_allowed",
        "_held",
    )

    def __init__(
        self,
        total: int = 1000,
        remaining: t.Optional[int] = None,
        reset_after: float = 0,
        max_concurrency: int = 1,
        *,
        cooldown: float = IDENTIFY_COOLDOWN,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.total = total
        self.remaining = total if remaining is None else remaining
        self.max_concurrency = max_concurrency
        self.cooldown = cooldown

        self._reset_at = self._now() + reset_after / 1000
        self._quota_lock = asyncio.Lock()
        self._locks: t.Dict[int, asyncio.Lock] = collections.defaultdict(asyncio.Lock)
        self._next_allowed: t.Dict[int, float] = {}
        # shard id -> bucket it locked, which survives a max_concurrency change
        self._held: t.Dict[int, int] = {}

    @classmethod
    def from_payload(cls, limit: SessionStartLimit, **kwargs: t.Any) -> "IdentifyLimiter":
        return cls(
            total=limit["total"],
            remaining=limit["remaining"],
            reset_after=limit["reset_after"],
            max_concurrency=limit.get("max_concurrency", 1),
            **kwargs,
        )

    def __repr__(self) -> str:
        return (
            f"<IdentifyLimiter remaining={self.remaining}/{self.total} "
            f"max_concurrency={self.max_concurrency}>"
        )

    @staticmethod
    def _now() -> float:
        return time.monotonic()

    def bucket_for(self, shard_id: int) -> int:
        return shard_id % self.max_concurrency

    def update(self, limit: SessionStartLimit) -> None:
        """Replaces the quota with a freshly fetched one."""
        self.total = limit["total"]
        self.remaining = limit["remaining"]
        self._reset_at = self._now() + limit["reset_after"] / 1000

        concurrency = limit.get("max_concurrency", self.max_concurrency)
        if concurrency != self.max_concurrency:
            _log.info("max_concurrency changed from %d to %d", self.max_concurrency, concurrency)
            self.max_concurrency = concurrency

    async def acquire(self, shard_id: int) -> None:
        """Waits until ``shard_id`` may identify and takes one identify from the quota.

        The bucket stays locked until :meth:`release` is called.
        """
        bucket = self.bucket_for(shard_id)
        lock = self._locks[bucket]
        await lock.acquire()

        try:
            delay = self._next_allowed.get(bucket, 0) - self._now()
            if delay > 0:
                _log.debug("shard %d waiting %.2fs for identify bucket %d", shard_id, delay, bucket)
                await asyncio.sleep(delay)

            await self._take_quota(shard_id)
        except BaseException:
            lock.release()
            raise

        self._held[shard_id] = bucket

    def release(self, shard_id: int) -> None:
        bucket = self._held.pop(shard_id, None)
        if bucket is None:
            return

        self._next_allowed[bucket] = self._now() + self.cooldown

        lock = self._locks[bucket]
        if lock.locked():
            lock.release()

    async def _take_quota(self, shard_id: int) -> None:
        async with self._quota_lock:
            now = self._now()

            if self.remaining <= 0 and now < self._reset_at:
                delay = self._reset_at - now
                _log.warning(
                    "session start limit exhausted, shard %d waiting %.2fs", shard_id, delay
                )
                await asyncio.sleep(delay)
                now = self._now()

            if now >= self._reset_at and self.remaining < self.total:
                self.remaining = self.total
                self._reset_at = now + SESSION_START_WINDOW

            self.remaining -= 1


class CommandRateLimiter:
    """Sliding window limit on commands sent over one connection."""

    __slots__ = ("rate", "per", "_sent", "_lock")

    def __init__(self, rate: int = 120, per: float = 60.0) -> None:
        self.rate = rate
        self.per = per

        self._sent: t.Deque[float] = collections.deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()

            while self._sent and now - self._sent[0] >= self.per:
                self._sent.popleft()

            if len(self._sent) >= self.rate:
                delay = self.per - (now - self._sent[0])
                _log.debug("gateway command limit reached, waiting %.2fs", delay)
                await asyncio.sleep(delay)
                self._sent.popleft()

            self._sent.append(time.monotonic())
