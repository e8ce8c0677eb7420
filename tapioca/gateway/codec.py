import json
import logging
import typing as t
import zlib

import msgpack

from .. import errors
from ..types import Payload
from .opcodes import OpCode

__all__ = (
    "Codec",
    "JSONCodec",
    "MsgpackCodec",
    "ZlibInflator",
    "get_codec",
)

_log = logging.getLogger(__name__)

_ZLIB_SUFFIX = b'\x00\x00\xff\xff'


def _envelope(op: int, d: t.Any, s: t.Optional[int], t_: t.Optional[str]) -> Payload:
    op = OpCode(op)

    if op is OpCode.DISPATCH:
        if s is None or t_ is None:
            raise ValueError("dispatch payloads need both a sequence and an event name")
    elif s is not None or t_ is not None:
        raise ValueError(f"{op.name} payloads cannot carry a sequence or an event name")

    return {"op": int(op), "d": d, "s": s, "t": t_}


def _validate(data: t.Any) -> Payload:
    if not isinstance(data, dict) or "op" not in data:
        raise errors.DecodeError(f"not a payload envelope: {data!r:.100}")

    try:
        op = OpCode(data["op"])
    except (TypeError, ValueError):
        raise errors.DecodeError(f"unknown opcode {data['op']!r}") from None

    s = data.get("s")
    t_ = data.get("t")

    if op is OpCode.DISPATCH:
        if type(s) is not int or not isinstance(t_, str):
            raise errors.DecodeError("dispatch payload without a sequence or event name")
    elif s is not None or t_ is not None:
        raise errors.DecodeError(f"{op.name} payload carries a sequence or event name")

    return {"op": op, "d": data.get("d"), "s": s, "t": t_}


class Codec:
    """Turns payload envelopes into websocket frames and back.

    Codecs hold no state and can be shared between connections.
    """

    __slots__ = ()

    encoding: t.ClassVar[str]
    binary: t.ClassVar[bool]

    def encode(
        self,
        op: int,
        d: t.Any = None,
        s: t.Optional[int] = None,
        t: t.Optional[str] = None,
    ) -> t.Union[str, bytes]:
        return self.dumps(_envelope(op, d, s, t))

    def decode(self, data: t.Union[str, bytes]) -> Payload:
        return _validate(self.loads(data))

    def dumps(self, payload: Payload) -> t.Union[str, bytes]:
        raise NotImplementedError

    def loads(self, data: t.Union[str, bytes]) -> t.Any:
        raise NotImplementedError


class JSONCodec(Codec):
    __slots__ = ()

    encoding = "json"
    binary = False

    def dumps(self, payload: Payload) -> str:
        return json.dumps(payload, separators=(',', ':'), ensure_ascii=True)

    def loads(self, data: t.Union[str, bytes]) -> t.Any:
        try:
            return json.loads(data)
        except (UnicodeDecodeError, ValueError) as exc:
            raise errors.DecodeError(f"invalid JSON frame: {exc}") from exc


class MsgpackCodec(Codec):
    __slots__ = ()

    encoding = "msgpack"
    binary = True

    def dumps(self, payload: Payload) -> bytes:
        return msgpack.packb(payload, use_bin_type=True)

    def loads(self, data: t.Union[str, bytes]) -> t.Any:
        if isinstance(data, str):
            raise errors.DecodeError("msgpack frames must be binary")

        try:
            return msgpack.unpackb(data, raw=False, strict_map_key=False)
        except (msgpack.UnpackException, ValueError, TypeError) as exc:
            raise errors.DecodeError(f"invalid msgpack frame: {exc}") from exc


_CODECS: t.Dict[str, t.Type[Codec]] = {
    JSONCodec.encoding: JSONCodec,
    MsgpackCodec.encoding: MsgpackCodec,
}


def get_codec(encoding: str) -> Codec:
    try:
        return _CODECS[encoding]()
    except KeyError:
        raise ValueError(f"unsupported encoding {encoding!r}") from None


class ZlibInflator:
    """Inflates a ``zlib-stream`` compressed connection.

    One inflator lives as long as one websocket connection; frames are
    buffered until the flush suffix arrives.
    """

    __slots__ = ("_buffer", "_inflator")

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._inflator = zlib.decompressobj()

    def feed(self, data: bytes) -> t.Optional[bytes]:
        self._buffer.extend(data)

        if len(data) < 4 or data[-4:] != _ZLIB_SUFFIX:
            _log.debug("buffering partial zlib frame (%d bytes)", len(self._buffer))
            return None

        try:
            return self._inflator.decompress(self._buffer)
        except zlib.error as exc:
            raise errors.DecodeError(f"corrupt zlib stream: {exc}") from exc
        finally:
            self._buffer.clear()
