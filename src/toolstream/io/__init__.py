"""I/O contracts and schemas for toolstream collaborators."""

from .interfaces import ConversationLog, SessionTransport, ToolRuntime
from .schema import ExchangeRecord, JSONValue, SessionPayload

__all__ = [
    "ConversationLog",
    "ExchangeRecord",
    "JSONValue",
    "SessionPayload",
    "SessionTransport",
    "ToolRuntime",
]
