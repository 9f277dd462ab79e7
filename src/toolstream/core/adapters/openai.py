"""OpenAI Responses API adapter (vendor B)."""

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
    parse_arguments,
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
from .toolbridge import ToolDescriptor, descriptors_to_openai

if TYPE_CHECKING:
    from ...io.schema import SessionPayload

LOGGER = logging.getLogger(__name__)

_TEXT_DELTAS = {"response.output_text.delta", "response.refusal.delta"}
_TURN_END = {"response.completed", "response.incomplete"}
_ERRORS = {"error", "response.error", "response.failed"}


class OpenAIStreamNormalizer(StreamNormalizer):
    """Normalize Responses API server-sent events into canonical events.

    Argument deltas only carry a positional ``output_index``. They are
    buffered per position, and the call is announced retroactively once a
    summary (``response.output_item.done`` or ``response.completed``) names
    its ``call_id``. Each position is resolved once.
    """

    def __init__(self) -> None:
        self._fragments: dict[int, list[str]] = {}
        self._final_arguments: dict[int, str] = {}
        self._resolved: set[int] = set()

    async def normalize_chunk(self, chunk: Any) -> list[StreamEvent]:
        frame = decode_frame(chunk)
        if frame is None:
            return []

        kind = frame.get("type")
        if kind in _TEXT_DELTAS:
            delta = frame.get("delta")
            if isinstance(delta, str) and delta:
                return [TextDelta(text=delta)]
            return []

        if kind == "response.function_call_arguments.delta":
            position = frame.get("output_index")
            delta = frame.get("delta")
            if isinstance(position, int) and isinstance(delta, str):
                self._fragments.setdefault(position, []).append(delta)
            return []

        if kind == "response.function_call_arguments.done":
            position = frame.get("output_index")
            arguments = frame.get("arguments")
            if isinstance(position, int) and isinstance(arguments, str):
                self._final_arguments[position] = arguments
            return []

        if kind == "response.output_item.done":
            position = frame.get("output_index")
            item = frame.get("item")
            if isinstance(position, int) and isinstance(item, Mapping):
                return self._resolve(position, item)
            return []

        if kind in _TURN_END:
            events: list[StreamEvent] = []
            response = frame.get("response")
            output = response.get("output") if isinstance(response, Mapping) else None
            if isinstance(output, Sequence):
                for position, item in enumerate(output):
                    if isinstance(item, Mapping):
                        events.extend(self._resolve(position, item))
            events.append(TurnDone())
            return events

        if kind in _ERRORS:
            return [self._error(frame)]

        LOGGER.debug("ignoring openai frame type=%s", kind)
        return []

    def _resolve(self, position: int, item: Mapping[str, Any]) -> list[StreamEvent]:
        if item.get("type") != "function_call" or position in self._resolved:
            return []

        call_id = item.get("call_id")
        name = item.get("name")
        if not isinstance(call_id, str) or not call_id or not isinstance(name, str) or not name:
            LOGGER.debug("ignoring function_call summary without call_id or name: %r", item)
            return []

        self._resolved.add(position)
        arguments = item.get("arguments")
        if not isinstance(arguments, str) or not arguments:
            arguments = self._final_arguments.get(position) or "".join(self._fragments.get(position, ()))

        item_id = item.get("id")
        events: list[StreamEvent] = [
            ToolCallStart(id=call_id, name=name, item_id=item_id if isinstance(item_id, str) else None)
        ]
        if arguments:
            events.append(ToolInputDelta(fragment=arguments, target_hint=call_id))
        events.append(ToolCallComplete())
        return events

    def _error(self, frame: Mapping[str, Any]) -> StreamError:
        error: Any = frame.get("error")
        if not isinstance(error, Mapping):
            response = frame.get("response")
            error = response.get("error") if isinstance(response, Mapping) else None
        if not isinstance(error, Mapping):
            error = frame
        return StreamError(
            code=str(error.get("code") or error.get("type") or "provider_error"),
            message=str(error.get("message") or "unknown provider error"),
        )


def turns_to_openai(turns: Sequence[ConversationTurn]) -> list[dict[str, Any]]:
    """Serialize turns into the Responses API ``input`` list."""

    converted: list[dict[str, Any]] = []
    for turn in turns:
        if isinstance(turn, UserText):
            converted.append({"role": "user", "content": turn.text})
        elif isinstance(turn, AssistantText):
            converted.append({"role": "assistant", "content": turn.text})
        elif isinstance(turn, AssistantToolCalls):
            if turn.text:
                converted.append({"role": "assistant", "content": turn.text})
            for call in turn.calls:
                record: dict[str, Any] = {"type": "function_call"}
                if call.item_id:
                    record["id"] = call.item_id
                record["call_id"] = call.id
                record["name"] = call.name
                record["arguments"] = _raw_arguments(call)
                converted.append(record)
        elif isinstance(turn, ToolResults):
            for result in turn.results:
                converted.append(
                    {"type": "function_call_output", "call_id": result.call_id, "output": result.content}
                )
        else:
            msg = f"unsupported conversation turn {type(turn).__name__}"
            raise AdapterError(msg)
    return converted


def openai_to_turns(items: Sequence[Mapping[str, Any]]) -> list[ConversationTurn]:
    """Parse a Responses API ``input`` list back into conversation turns.

    Consecutive ``function_call`` records form one tool-call turn, absorbing
    an assistant text message directly in front of them; consecutive
    ``function_call_output`` records form one results turn.
    """

    kinds = [_item_kind(item, index) for index, item in enumerate(items)]
    turns: list[ConversationTurn] = []
    index = 0
    while index < len(items):
        kind = kinds[index]
        start = index
        while index < len(items) and kinds[index] == kind and kind in {"function_call", "function_call_output"}:
            index += 1

        if kind == "function_call":
            text = ""
            if start > 0 and kinds[start - 1] == "assistant":
                text = turns.pop().text
            calls = tuple(_call_from_item(item) for item in items[start:index])
            turns.append(AssistantToolCalls(text=text, calls=calls))
        elif kind == "function_call_output":
            results = tuple(
                ToolResultRecord(
                    call_id=item.get("call_id"),
                    content=item["output"] if isinstance(item.get("output"), str) else "",
                )
                for item in items[start:index]
            )
            turns.append(ToolResults(results=results))
        else:
            text = _message_text(items[index].get("content"))
            turns.append(UserText(text) if kind == "user" else AssistantText(text))
            index += 1
    return turns


def _item_kind(item: Any, index: int) -> str:
    if not isinstance(item, Mapping):
        msg = f"input[{index}] must be a mapping"
        raise AdapterError(msg)

    kind = item.get("type", "message")
    if kind in {"function_call", "function_call_output"}:
        return kind
    if kind != "message":
        msg = f"input[{index}] has unsupported type {kind!r}"
        raise AdapterError(msg)

    role = item.get("role")
    if role not in {"user", "assistant"}:
        msg = f"input[{index}] has unsupported role {role!r}"
        raise AdapterError(msg)
    return role


def _call_from_item(item: Mapping[str, Any]) -> ToolCallRecord:
    raw = item.get("arguments")
    if not isinstance(raw, str):
        raw = "{}"
    try:
        arguments: Any = parse_arguments(raw) if raw else {}
    except ValueError:
        arguments = raw
    item_id = item.get("id")
    return ToolCallRecord(
        id=item.get("call_id"),
        name=item.get("name"),
        arguments=arguments,
        raw_arguments=raw,
        item_id=item_id if isinstance(item_id, str) else None,
    )


def _raw_arguments(call: ToolCallRecord) -> str:
    if call.raw_arguments is not None:
        return call.raw_arguments
    if isinstance(call.arguments, str):
        return call.arguments
    return json.dumps(call.arguments)


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, Sequence):
        return "".join(
            part.get("text", "")
            for part in content
            if isinstance(part, Mapping) and part.get("type") in {"input_text", "output_text", "text"}
        )
    return ""


class OpenAIAdapter(VendorAdapter):
    """Vendor B: Responses API with sibling ``function_call`` records."""

    vendor = Vendor.OPENAI
    endpoint_path = "/responses"

    def normalizer(self) -> OpenAIStreamNormalizer:
        return OpenAIStreamNormalizer()

    def to_wire(self, turns: Sequence[ConversationTurn]) -> list[dict[str, Any]]:
        return turns_to_openai(turns)

    def from_wire(self, messages: Sequence[Mapping[str, Any]]) -> list[ConversationTurn]:
        return openai_to_turns(messages)

    def tools_to_wire(self, descriptors: Sequence[ToolDescriptor]) -> list[dict[str, Any]]:
        return descriptors_to_openai(descriptors)

    def build_request_body(self, payload: SessionPayload) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": payload.model,
            "input": list(payload.messages),
            "stream": True,
            "temperature": payload.temperature,
            "max_output_tokens": payload.max_tokens,
        }
        if payload.system_prompt:
            body["instructions"] = payload.system_prompt
        if payload.tools:
            body["tools"] = list(payload.tools)
        return body
