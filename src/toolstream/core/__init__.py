"""Core data structures and adapter interfaces for toolstream."""

from __future__ import annotations

from .errors import (
    AdapterError,
    ArgumentParseError,
    OrchestrationCancelled,
    ToolExecutionError,
    TransportError,
    VendorError,
)
from .message import (
    ERROR_PREFIX,
    AssistantText,
    AssistantToolCalls,
    ConversationTurn,
    ToolCallRecord,
    ToolResultRecord,
    ToolResults,
    UserText,
    Vendor,
    VendorMode,
)
from .adapters.toolbridge import ToolDescriptor

__all__ = [
    "ERROR_PREFIX",
    "AdapterError",
    "ArgumentParseError",
    "AssistantText",
    "AssistantToolCalls",
    "ConversationTurn",
    "OrchestrationCancelled",
    "ToolCallRecord",
    "ToolDescriptor",
    "ToolExecutionError",
    "ToolResultRecord",
    "ToolResults",
    "TransportError",
    "UserText",
    "Vendor",
    "VendorError",
    "VendorMode",
]
