"""Vendor adapters, stream normalization and wire-format conversion."""

from __future__ import annotations

from .anthropic import AnthropicAdapter, AnthropicStreamNormalizer
from .base import VendorAdapter
from .format import adapter_for, build_tool_turns, from_wire_messages, to_wire_messages
from .openai import OpenAIAdapter, OpenAIStreamNormalizer
from .stream import (
    BaseStreamIterator,
    StreamError,
    StreamEvent,
    StreamNormalizer,
    TextDelta,
    ToolCallComplete,
    ToolCallStart,
    ToolInputDelta,
    TurnDone,
    VendorStreamIterator,
)
from .toolbridge import ToolDescriptor, filter_by_modes

__all__ = [
    "AnthropicAdapter",
    "AnthropicStreamNormalizer",
    "BaseStreamIterator",
    "OpenAIAdapter",
    "OpenAIStreamNormalizer",
    "StreamError",
    "StreamEvent",
    "StreamNormalizer",
    "TextDelta",
    "ToolCallComplete",
    "ToolCallStart",
    "ToolDescriptor",
    "ToolInputDelta",
    "TurnDone",
    "VendorAdapter",
    "VendorStreamIterator",
    "adapter_for",
    "build_tool_turns",
    "filter_by_modes",
    "from_wire_messages",
    "to_wire_messages",
]
