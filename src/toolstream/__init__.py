"""Streaming tool-call orchestration for an AI gamemaster client.

The package normalizes the Anthropic Messages and OpenAI Responses streaming
protocols into one event model, reassembles fragmented tool-call arguments,
and drives a bounded ask, call, execute, resume loop against an MCP tool
runtime.
"""

from __future__ import annotations

from .config import OrchestratorConfig, TransportConfig
from .core import (
    AssistantText,
    AssistantToolCalls,
    ToolCallRecord,
    ToolDescriptor,
    ToolResultRecord,
    ToolResults,
    UserText,
    Vendor,
    VendorMode,
)
from .runtime import CancellationToken, OrchestrationResult, Orchestrator, Termination, ToolCatalog

__all__ = [
    "AssistantText",
    "AssistantToolCalls",
    "CancellationToken",
    "OrchestrationResult",
    "Orchestrator",
    "OrchestratorConfig",
    "Termination",
    "ToolCallRecord",
    "ToolCatalog",
    "ToolDescriptor",
    "ToolResultRecord",
    "ToolResults",
    "TransportConfig",
    "UserText",
    "Vendor",
    "VendorMode",
]

__version__ = "0.1.0"
