"""Anthropic Messages API adapter (vendor A)."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from ..errors import AdapterError
from ..message import (
    AssistantText,
    AssistantToolCalls,
    ConversationTurn,
    ToolCallRecord,
    ToolResultRecord,
    ToolResults,
    UserText,
    Vendor,
)
from .base import VendorAdapter
from .stream import (
    StreamError,
    StreamEvent,
    StreamNormalizer,
    TextDelta,
    ToolCallComplete,
    ToolCallStart,
    ToolInputDelta,
    TurnDone,
    decode_frame,
)
from .toolbridge import ToolDescriptor, descriptors_to_anthropic

if TYPE_CHECKING:
    from ...io.schema import SessionPayload

LOGGER = logging.getLogger(__name__)


class AnthropicStreamNormalizer(StreamNormalizer):
    """Normalize Messages API server-sent events into canonical events.

    Tool calls are announced up front by ``content_block_start`` with their id
    and name, so the block index is mapped to the call id and every later
    ``input_json_delta`` is tagged with it.
    """

    def __init__(self) -> None:
        self._tool_blocks: dict[int, str] = {}

    async def normalize_chunk(self, chunk: Any) -> list[StreamEvent]:
        frame = decode_frame(chunk)
        if frame is None:
            return []

        kind = frame.get("type")
        if kind == "content_block_start":
            return self._block_start(frame)
        if kind == "content_block_delta":
            return self._block_delta(frame)
        if kind == "content_block_stop":
            index = frame.get("index")
            if isinstance(index, int) and self._tool_blocks.pop(index, None) is not None:
                return [ToolCallComplete()]
            return []
        if kind == "message_stop":
            return [TurnDone()]
        if kind == "error":
            error = frame.get("error")
            if not isinstance(error, Mapping):
                error = {}
            return [
                StreamError(
                    code=str(error.get("type") or "provider_error"),
                    message=str(error.get("message") or "unknown provider error"),
                )
            ]

        LOGGER.debug("ignoring anthropic frame type=%s", kind)
        return []

    def _block_start(self, frame: Mapping[str, Any]) -> list[StreamEvent]:
        block = frame.get("content_block")
        if not isinstance(block, Mapping) or block.get("type") != "tool_use":
            return []

        call_id = block.get("id")
        name = block.get("name")
        if not isinstance(call_id, str) or not call_id or not isinstance(name, str) or not name:
            LOGGER.debug("ignoring tool_use block without id or name: %r", block)
            return []

        index = frame.get("index")
        if isinstance(index, int):
            self._tool_blocks[index] = call_id

        initial_input = block.get("input")
        partial = json.dumps(initial_input) if isinstance(initial_input, Mapping) and initial_input else ""
        return [ToolCallStart(id=call_id, name=name, partial_input=partial)]

    def _block_delta(self, frame: Mapping[str, Any]) -> list[StreamEvent]:
        delta = frame.get("delta")
        if not isinstance(delta, Mapping):
            return []

        delta_type = delta.get("type")
        if delta_type == "text_delta":
            text = delta.get("text")
            if isinstance(text, str) and text:
                return [TextDelta(text=text)]
            return []

        if delta_type == "input_json_delta":
            fragment = delta.get("partial_json")
            if not isinstance(fragment, str) or not fragment:
                return []
            index = frame.get("index")
            hint = self._tool_blocks.get(index) if isinstance(index, int) else None
            return [ToolInputDelta(fragment=fragment, target_hint=hint)]

        return []


def turns_to_anthropic(turns: Sequence[ConversationTurn]) -> list[dict[str, Any]]:
    """Serialize turns into Messages API ``messages``."""

    converted: list[dict[str, Any]] = []
    for turn in turns:
        if isinstance(turn, UserText):
            converted.append({"role": "user", "content": turn.text})
        elif isinstance(turn, AssistantText):
            converted.append({"role": "assistant", "content": turn.text})
        elif isinstance(turn, AssistantToolCalls):
            blocks: list[dict[str, Any]] = []
            if turn.text:
                blocks.append({"type": "text", "text": turn.text})
            for call in turn.calls:
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.name,
                        # tool_use input must be an object; unparsed arguments degrade to {}
                        "input": dict(call.arguments) if isinstance(call.arguments, Mapping) else {},
                    }
                )
            converted.append({"role": "assistant", "content": blocks})
        elif isinstance(turn, ToolResults):
            converted.append(
                {
                    "role": "user",
                    "content": [
                        {"type": "tool_result", "tool_use_id": result.call_id, "content": result.content}
                        for result in turn.results
                    ],
                }
            )
        else:
            msg = f"unsupported conversation turn {type(turn).__name__}"
            raise AdapterError(msg)
    return converted


def anthropic_to_turns(messages: Sequence[Mapping[str, Any]]) -> list[ConversationTurn]:
    """Parse Messages API ``messages`` back into conversation turns."""

    turns: list[ConversationTurn] = []
    for index, message in enumerate(messages):
        if not isinstance(message, Mapping):
            msg = f"messages[{index}] must be a mapping"
            raise AdapterError(msg)

        role = message.get("role")
        content = message.get("content")
        if role not in {"user", "assistant"}:
            msg = f"messages[{index}] has unsupported role {role!r}"
            raise AdapterError(msg)

        if isinstance(content, str):
            turns.append(UserText(content) if role == "user" else AssistantText(content))
            continue

        if not isinstance(content, Sequence):
            msg = f"messages[{index}].content must be a string or a list of blocks"
            raise AdapterError(msg)

        text = "".join(
            block.get("text", "") for block in content if isinstance(block, Mapping) and block.get("type") == "text"
        )
        if role == "assistant":
            calls = [
                ToolCallRecord(id=block.get("id"), name=block.get("name"), arguments=dict(block.get("input") or {}))
                for block in content
                if isinstance(block, Mapping) and block.get("type") == "tool_use"
            ]
            turns.append(AssistantToolCalls(text=text, calls=tuple(calls)) if calls else AssistantText(text))
            continue

        results = [
            ToolResultRecord(call_id=block.get("tool_use_id"), content=_result_text(block.get("content")))
            for block in content
            if isinstance(block, Mapping) and block.get("type") == "tool_result"
        ]
        turns.append(ToolResults(results=tuple(results)) if results else UserText(text))
    return turns


def _result_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, Sequence):
        return "".join(
            block.get("text", "") for block in content if isinstance(block, Mapping) and block.get("type") == "text"
        )
    return ""


class AnthropicAdapter(VendorAdapter):
    """Vendor A: Messages API with ``tool_use`` / ``tool_result`` content blocks."""

    vendor = Vendor.ANTHROPIC
    endpoint_path = "/messages"

    def normalizer(self) -> AnthropicStreamNormalizer:
        return AnthropicStreamNormalizer()

    def to_wire(self, turns: Sequence[ConversationTurn]) -> list[dict[str, Any]]:
        return turns_to_anthropic(turns)

    def from_wire(self, messages: Sequence[Mapping[str, Any]]) -> list[ConversationTurn]:
        return anthropic_to_turns(messages)

    def tools_to_wire(self, descriptors: Sequence[ToolDescriptor]) -> list[dict[str, Any]]:
        return descriptors_to_anthropic(descriptors)

    def build_request_body(self, payload: SessionPayload) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": payload.model,
            "messages": list(payload.messages),
            "stream": True,
            "temperature": payload.temperature,
            "max_tokens": payload.max_tokens,
        }
        if payload.system_prompt:
            body["system"] = payload.system_prompt
        if payload.tools:
            body["tools"] = list(payload.tools)
        return body
