import enum
import typing as t

__all__ = ("SequenceTracker", "Session", "SessionState")


class SessionState(enum.Enum):
    CONNECTING = "connecting"
    AWAITING_HELLO = "awaiting_hello"
    IDENTIFYING = "identifying"
    RESUMING = "resuming"
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"


class SequenceTracker:
    """Latches the highest dispatch sequence number seen."""

    __slots__ = ("_value",)

    def __init__(self) -> None:
        self._value: t.Optional[int] = None

    def __repr__(self) -> str:
        return f"<SequenceTracker value={self._value}>"

    def observe(self, seq: int) -> None:
        # Late or duplicated sequences are ignored.
        if self._value is None or seq > self._value:
            self._value = seq

    def current(self) -> t.Optional[int]:
        return self._value

    def reset(self) -> None:
        self._value = None


class Session:
    """Server side identity of one logical gateway connection.

    A session outlives single websocket connections: it is kept across
    reconnects so it can be resumed and only reset when the server says it is
    gone or a fresh identify is wanted.
    """

    __slots__ = (
        "session_id",
        "sequence",
        "resumable",
        "resume_url",
        "heartbeat_interval_ms",
        "last_heartbeat_sent_at",
        "last_heartbeat_acked",
    )

    def __init__(self) -> None:
        self.session_id: t.Optional[str] = None
        self.sequence = SequenceTracker()
        self.resumable = False
        self.resume_url: t.Optional[str] = None
        self.heartbeat_interval_ms: t.Optional[int] = None
        self.last_heartbeat_sent_at: t.Optional[float] = None
        self.last_heartbeat_acked = True

    def __repr__(self) -> str:
        return (
            f"<Session id={self.session_id!r} seq={self.sequence.current()} "
            f"resumable={self.resumable}>"
        )

    def can_resume(self) -> bool:
        return self.resumable and self.session_id is not None

    def reset(self) -> None:
        self.session_id = None
        self.sequence.reset()
        self.resumable = False
        self.resume_url = None
