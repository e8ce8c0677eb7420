from os import environ
import typing as t

from dotenv import find_dotenv, load_dotenv

from .intents import Intents

__all__ = ("Config", "load_config")


def _flag(value: t.Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _optional_int(value: t.Optional[str]) -> t.Optional[int]:
    if value is None or value.strip() == "":
        return None
    return int(value)


class Config:
    __slots__ = (
        "token",
        "intents",
        "shard_count",
        "encoding",
        "compress",
        "version",
        "hello_timeout",
        "max_retries",
    )

    def __init__(
        self,
        token: str,
        intents: t.Union[int, Intents] = Intents.default(),
        shard_count: t.Optional[int] = None,
        encoding: str = "json",
        compress: bool = False,
        version: int = 10,
        hello_timeout: float = 20.0,
        max_retries: int = 5,
    ) -> None:
        if not token:
            raise ValueError("a token is required")

        if encoding not in ("json", "msgpack"):
            raise ValueError(f"unsupported encoding {encoding!r}")

        if shard_count is not None and shard_count < 1:
            raise ValueError("shard_count must be positive")

        self.token = token
        self.intents = Intents(intents)
        self.shard_count = shard_count
        self.encoding = encoding
        self.compress = compress
        self.version = version
        self.hello_timeout = hello_timeout
        self.max_retries = max_retries

    def __repr__(self) -> str:
        # never show the token
        return (
            f"Config(intents={int(self.intents)}, shard_count={self.shard_count}, "
            f"encoding={self.encoding!r}, compress={self.compress}, version={self.version})"
        )


_config: t.Optional[Config] = None


def load_config(*, reload: bool = False) -> Config:
    """Reads the configuration from the environment (and a ``.env`` file)."""
    global _config
    if _config is None or reload:
        load_dotenv(find_dotenv(usecwd=True))

        _config = Config(
            token=environ.get("TAPIOCA_TOKEN", ""),
            intents=Intents.parse(environ.get("TAPIOCA_INTENTS")),
            shard_count=_optional_int(environ.get("TAPIOCA_SHARD_COUNT")),
            encoding=environ.get("TAPIOCA_ENCODING", "json"),
            compress=_flag(environ.get("TAPIOCA_COMPRESS")),
            version=int(environ.get("TAPIOCA_API_VERSION", 10)),
            hello_timeout=float(environ.get("TAPIOCA_HELLO_TIMEOUT", 20.0)),
            max_retries=int(environ.get("TAPIOCA_MAX_RETRIES", 5)),
        )

    return _config
