import typing as t


class TapiocaError(Exception):
    pass


class HTTPException(TapiocaError):
    def __init__(self, status: int, message: t.Any = None) -> None:
        self.status = status
        self.message = message

        super().__init__(f"{status}: {message}")


class Unauthorized(HTTPException):
    pass


class NotFound(HTTPException):
    pass


class GatewayError(TapiocaError):
    pass


class DecodeError(GatewayError):
    """A frame could not be turned into a valid payload envelope."""


class ReconnectWebSocket(GatewayError):
    """Raised when the current connection is gone and a new one should be made.

    ``resume`` tells whether the retained session is worth resuming, ``delay``
    is the minimum time to wait before reconnecting.
    """

    def __init__(
        self,
        *,
        resume: bool = True,
        code: t.Optional[int] = None,
        delay: float = 0.0,
    ) -> None:
        self.resume = resume
        self.code = code
        self.delay = delay

        super().__init__(f"reconnect requested (resume={resume}, code={code})")


class GatewayConnection(GatewayError):
    def __init__(self, code: int, message: t.Optional[str] = None) -> None:
        self.code = code
        self.message = message

        super().__init__(f"Gateway closed {code}: {message}")


class ConfigurationError(GatewayConnection):
    """The gateway refused the current token, shard or intents.

    Retrying with the same configuration would fail again.
    """


class SessionFailed(GatewayError):
    def __init__(self, shard_id: int, attempts: int) -> None:
        self.shard_id = shard_id
        self.attempts = attempts

        super().__init__(
            f"shard {shard_id} failed to connect {attempts} times in a row"
        )
