from .bot import Bot
from . import types, errors
from .config import Config, load_config
from .dispatch import DispatchEvent, DispatchRouter, EventName
from .http import HTTPClient
from .intents import Intents
from .gateway import GatewayWebSocket, ShardCoordinator

__all__ = (
    "Bot",
    "Config",
    "DispatchEvent",
    "DispatchRouter",
    "EventName",
    "GatewayWebSocket",
    "HTTPClient",
    "Intents",
    "ShardCoordinator",
    "errors",
    "load_config",
    "types",
)
