"""Conversation model shared by the normalizers, the assembler and the loop."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
import json
import math
from typing import Any, Union

ERROR_PREFIX = "Error"


class Vendor(str, Enum):
    """Upstream model providers with their own streaming wire format."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


class VendorMode(str, Enum):
    """Provider selection plus where tool calls are executed."""

    ANTHROPIC_CLIENT_MCP = "anthropic-client-mcp"
    ANTHROPIC_SERVER_MCP = "anthropic-server-mcp"
    OPENAI_CLIENT_MCP = "openai-client-mcp"

    @property
    def vendor(self) -> Vendor:
        return Vendor(self.value.split("-", 1)[0])

    @property
    def client_tools(self) -> bool:
        """Whether tools are attached to the payload and executed locally."""

        return self.value.endswith("-client-mcp")


@dataclass(frozen=True, slots=True)
class ToolCallRecord:
    """A fully assembled tool invocation requested by the assistant."""

    id: str
    name: str
    arguments: Any
    raw_arguments: str | None = None
    item_id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id:
            msg = "tool call id must be a non-empty string"
            raise ValueError(msg)
        if not isinstance(self.name, str) or not self.name:
            msg = "tool call name must be a non-empty string"
            raise ValueError(msg)
        _ensure_json_compatible(self.arguments, path="ToolCallRecord.arguments")

    @property
    def signature(self) -> tuple[str, str]:
        return call_signature(self.name, self.arguments)


@dataclass(frozen=True, slots=True)
class ToolResultRecord:
    """Outcome of one tool call, joined to the call through ``call_id``."""

    call_id: str
    content: str

    def __post_init__(self) -> None:
        if not isinstance(self.call_id, str) or not self.call_id:
            msg = "tool result call_id must be a non-empty string"
            raise ValueError(msg)
        if not isinstance(self.content, str):
            msg = "tool result content must be a string"
            raise TypeError(msg)

    @property
    def is_error(self) -> bool:
        return self.content.startswith(ERROR_PREFIX)


@dataclass(frozen=True, slots=True)
class UserText:
    text: str


@dataclass(frozen=True, slots=True)
class AssistantText:
    text: str


@dataclass(frozen=True, slots=True)
class AssistantToolCalls:
    """Assistant turn that requested one or more tool calls."""

    text: str
    calls: tuple[ToolCallRecord, ...]

    def __post_init__(self) -> None:
        if isinstance(self.calls, (str, bytes, bytearray)) or not isinstance(self.calls, Sequence):
            msg = "calls must be a sequence of ToolCallRecord instances"
            raise TypeError(msg)
        candidates = tuple(self.calls)
        if not candidates:
            msg = "calls cannot be empty"
            raise ValueError(msg)
        for call in candidates:
            if not isinstance(call, ToolCallRecord):
                msg = "calls must contain ToolCallRecord instances"
                raise TypeError(msg)
        object.__setattr__(self, "calls", candidates)


@dataclass(frozen=True, slots=True)
class ToolResults:
    """Tool outputs answering the preceding :class:`AssistantToolCalls` turn."""

    results: tuple[ToolResultRecord, ...]

    def __post_init__(self) -> None:
        if isinstance(self.results, (str, bytes, bytearray)) or not isinstance(self.results, Sequence):
            msg = "results must be a sequence of ToolResultRecord instances"
            raise TypeError(msg)
        candidates = tuple(self.results)
        if not candidates:
            msg = "results cannot be empty"
            raise ValueError(msg)
        for result in candidates:
            if not isinstance(result, ToolResultRecord):
                msg = "results must contain ToolResultRecord instances"
                raise TypeError(msg)
        object.__setattr__(self, "results", candidates)


ConversationTurn = Union[UserText, AssistantText, AssistantToolCalls, ToolResults]


def call_signature(name: str, arguments: Any) -> tuple[str, str]:
    """Return the ``(name, serialized arguments)`` pair used for failure tracking."""

    if isinstance(arguments, str):
        return name, arguments
    return name, json.dumps(arguments, sort_keys=True, separators=(",", ":"))


def parse_arguments(raw: str) -> Any:
    """Decode tool-call arguments, rejecting ``NaN`` and infinite numbers.

    Raises ``ValueError`` (``json.JSONDecodeError`` included) on any failure.
    """

    return json.loads(raw, parse_constant=_reject_constant, parse_float=_finite_float)


def _reject_constant(token: str) -> Any:
    msg = f"non-finite number {token} in arguments"
    raise ValueError(msg)


def _finite_float(token: str) -> float:
    value = float(token)
    if not math.isfinite(value):
        msg = f"non-finite number {token} in arguments"
        raise ValueError(msg)
    return value


def last_user_text(turns: Sequence[ConversationTurn]) -> str:
    for turn in reversed(turns):
        if isinstance(turn, UserText):
            return turn.text
    return ""


def _ensure_json_compatible(value: Any, *, path: str) -> None:
    if isinstance(value, Mapping):
        for key, inner in value.items():
            if not isinstance(key, str):
                msg = f"{path} keys must be strings"
                raise TypeError(msg)
            _ensure_json_compatible(inner, path=f"{path}.{key}")
        return

    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        for index, item in enumerate(value):
            _ensure_json_compatible(item, path=f"{path}[{index}]")
        return

    if isinstance(value, (bool, type(None), str)):
        return

    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            msg = f"{path} contains non-finite float values"
            raise ValueError(msg)
        return

    msg = f"{path} contains unsupported value type {type(value).__name__}"
    raise TypeError(msg)
