"""Concrete transport, tool runtime and conversation log adapters."""

from .http import HttpSessionTransport, McpToolRuntime, iter_sse_data
from .local import LocalConversationLog, McpConversationLog

__all__ = [
    "HttpSessionTransport",
    "LocalConversationLog",
    "McpConversationLog",
    "McpToolRuntime",
    "iter_sse_data",
]
