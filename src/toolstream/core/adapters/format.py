"""Vendor-neutral entry points for converting conversations to wire messages."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from ..errors import AdapterError
from ..message import (
    AssistantToolCalls,
    ConversationTurn,
    ToolCallRecord,
    ToolResultRecord,
    ToolResults,
    Vendor,
)
from .anthropic import AnthropicAdapter
from .base import VendorAdapter
from .openai import OpenAIAdapter

_ADAPTERS: dict[Vendor, VendorAdapter] = {
    Vendor.ANTHROPIC: AnthropicAdapter(),
    Vendor.OPENAI: OpenAIAdapter(),
}


def adapter_for(vendor: Vendor | str) -> VendorAdapter:
    """Return the adapter registered for ``vendor``."""

    try:
        return _ADAPTERS[Vendor(vendor)]
    except ValueError as exc:
        msg = f"unsupported vendor {vendor!r}"
        raise AdapterError(msg) from exc


def to_wire_messages(turns: Sequence[ConversationTurn], vendor: Vendor | str) -> list[dict[str, Any]]:
    return adapter_for(vendor).to_wire(turns)


def from_wire_messages(messages: Sequence[Mapping[str, Any]], vendor: Vendor | str) -> list[ConversationTurn]:
    return adapter_for(vendor).from_wire(messages)


def build_tool_turns(
    text: str,
    calls: Sequence[ToolCallRecord],
    results: Sequence[ToolResultRecord],
) -> tuple[AssistantToolCalls, ToolResults]:
    """Pair one iteration's calls with their results as two conversation turns.

    Every call needs exactly one result and no result may point at a call
    outside ``calls``; results are reordered to follow the calls.
    """

    by_call: dict[str, ToolResultRecord] = {}
    for result in results:
        if result.call_id in by_call:
            msg = f"duplicate result for tool call '{result.call_id}'"
            raise AdapterError(msg)
        by_call[result.call_id] = result

    call_ids = [call.id for call in calls]
    if len(set(call_ids)) != len(call_ids):
        msg = "tool call ids must be unique within one turn"
        raise AdapterError(msg)

    orphaned = set(by_call) - set(call_ids)
    if orphaned:
        joined = ", ".join(sorted(orphaned))
        msg = f"results reference unknown tool calls: {joined}"
        raise AdapterError(msg)

    missing = [call_id for call_id in call_ids if call_id not in by_call]
    if missing:
        msg = f"tool calls without results: {', '.join(missing)}"
        raise AdapterError(msg)

    return (
        AssistantToolCalls(text=text, calls=tuple(calls)),
        ToolResults(results=tuple(by_call[call_id] for call_id in call_ids)),
    )
