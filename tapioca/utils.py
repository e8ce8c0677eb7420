import random
import typing as t


class suppress_all:
    __slots__ = "exc"

    def __init__(self, exc: t.Type[BaseException] = Exception) -> None:
        self.exc = exc

    def __enter__(self) -> None:
        return

    def __exit__(self, t: t.Type[BaseException], *_: t.Any) -> bool:
        if not t:
            return False

        return issubclass(t, self.exc)


class ExponentialBackoff:
    """Exponential backoff with full jitter.

    Every call to :meth:`delay` doubles the ceiling, up to ``maximum``, and
    returns a random value below it.
    """

    __slots__ = ("base", "maximum", "_exp", "_random")

    def __init__(
        self,
        base: float = 1.0,
        maximum: float = 60.0,
        *,
        rng: t.Optional[random.Random] = None,
    ) -> None:
        self.base = base
        self.maximum = maximum

        self._exp = 0
        self._random = rng or random.Random()

    def delay(self) -> float:
        ceiling = min(self.base * (2 ** self._exp), self.maximum)

        if ceiling < self.maximum:
            self._exp += 1

        return self._random.uniform(0, ceiling)

    def reset(self) -> None:
        self._exp = 0
