import enum
import typing as t

__all__ = ("CloseAction", "CloseCode", "classify")


class CloseCode(enum.IntEnum):
    UNKNOWN_ERROR           = 4000
    UNKNOWN_OPCODE          = 4001
    DECODE_ERROR            = 4002
    NOT_AUTHENTICATED       = 4003
    AUTHENTICATION_FAILED   = 4004
    ALREADY_AUTHENTICATED   = 4005
    INVALID_SEQ             = 4007
    RATE_LIMITED            = 4008
    SESSION_TIMED_OUT       = 4009
    INVALID_SHARD           = 4010
    SHARDING_REQUIRED       = 4011
    INVALID_API_VERSION     = 4012
    INVALID_INTENTS         = 4013
    DISALLOWED_INTENTS      = 4014


class CloseAction(enum.Enum):
    RESUME = "resume"
    IDENTIFY = "identify"
    FATAL = "fatal"


_FATAL = frozenset({
    CloseCode.AUTHENTICATION_FAILED,
    CloseCode.INVALID_SHARD,
    CloseCode.SHARDING_REQUIRED,
    CloseCode.INVALID_API_VERSION,
    CloseCode.INVALID_INTENTS,
    CloseCode.DISALLOWED_INTENTS,
})

# 1000 from the server ends the session the same way it does from the client
_IDENTIFY = frozenset({
    1000,
    CloseCode.DECODE_ERROR,
    CloseCode.NOT_AUTHENTICATED,
    CloseCode.ALREADY_AUTHENTICATED,
    CloseCode.INVALID_SEQ,
})


def classify(code: t.Optional[int]) -> CloseAction:
    """Decides what a close code means for the session that was open."""
    if code in _FATAL:
        return CloseAction.FATAL

    if code in _IDENTIFY:
        return CloseAction.IDENTIFY

    return CloseAction.RESUME
