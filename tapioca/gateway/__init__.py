from .close_codes import CloseAction, CloseCode, classify
from .codec import Codec, JSONCodec, MsgpackCodec, ZlibInflator, get_codec
from .core import GatewayWebSocket
from .keep_alive import KeepAlive
from .opcodes import OpCode
from .ratelimit import CommandRateLimiter, IdentifyLimiter
from .session import SequenceTracker, Session, SessionState
from .shard import ShardCoordinator, shard_id_for

__all__ = (
    "CloseAction",
    "CloseCode",
    "Codec",
    "CommandRateLimiter",
    "GatewayWebSocket",
    "IdentifyLimiter",
    "JSONCodec",
    "KeepAlive",
    "MsgpackCodec",
    "OpCode",
    "SequenceTracker",
    "Session",
    "SessionState",
    "ShardCoordinator",
    "ZlibInflator",
    "classify",
    "get_codec",
    "shard_id_for",
)
