"""Mapping helpers between tool runtime descriptors and provider schemas."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
import json
import re
from typing import Any

from ..errors import AdapterError

_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")
MODE_TAG_PREFIX = "mode:"
ANY_MODE_TAG = "mode:any"


@dataclass(frozen=True, slots=True)
class ToolDescriptor:
    """A tool advertised by the tool runtime."""

    name: str
    description: str
    input_schema: Mapping[str, Any]
    tags: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not _NAME_PATTERN.fullmatch(self.name):
            msg = "tool name must match ^[a-zA-Z0-9_-]{1,64}$"
            raise AdapterError(msg)

        if not isinstance(self.description, str) or not self.description.strip():
            msg = "tool description must be a non-empty string"
            raise AdapterError(msg)
        object.__setattr__(self, "description", self.description.strip())

        if not isinstance(self.input_schema, Mapping):
            msg = "tool input schema must be a mapping"
            raise AdapterError(msg)

        try:
            sanitized = json.loads(json.dumps(dict(self.input_schema), allow_nan=False))
        except (TypeError, ValueError) as exc:
            msg = f"input schema of '{self.name}' must be JSON serializable"
            raise AdapterError(msg) from exc

        if sanitized.get("type", "object") != "object":
            msg = "tool input schema must describe a JSON object"
            raise AdapterError(msg)

        properties = sanitized.get("properties", {})
        if not isinstance(properties, dict):
            msg = "tool input schema 'properties' must be a mapping"
            raise AdapterError(msg)

        required = sanitized.get("required", [])
        if not isinstance(required, list) or not all(isinstance(item, str) for item in required):
            msg = "tool input schema 'required' must be a list of strings"
            raise AdapterError(msg)

        object.__setattr__(
            self,
            "input_schema",
            {"type": "object", "properties": properties, "required": required},
        )

        if isinstance(self.tags, str) or not isinstance(self.tags, Iterable):
            msg = "tool tags must be a sequence of strings"
            raise AdapterError(msg)
        tags = tuple(self.tags)
        for tag in tags:
            if not isinstance(tag, str):
                msg = "tool tags must be strings"
                raise AdapterError(msg)
        object.__setattr__(self, "tags", tags)

    @classmethod
    def from_mcp(cls, payload: Mapping[str, Any]) -> ToolDescriptor:
        """Build a descriptor from an MCP ``tools/list`` entry."""

        if not isinstance(payload, Mapping):
            msg = "MCP tool entries must be mappings"
            raise AdapterError(msg)

        name = payload.get("name")
        if not isinstance(name, str):
            msg = "MCP tool entry is missing a name"
            raise AdapterError(msg)

        description = payload.get("description") or f"MCP tool: {name}"
        schema = payload.get("inputSchema") or {}
        if not isinstance(schema, Mapping):
            msg = f"MCP tool '{name}' has a non-mapping inputSchema"
            raise AdapterError(msg)

        meta = payload.get("_meta") or {}
        fastmcp = meta.get("_fastmcp") if isinstance(meta, Mapping) else None
        tags = (fastmcp or {}).get("tags") if isinstance(fastmcp, Mapping) else None
        if tags is None:
            tags = payload.get("tags") or ()

        return cls(
            name=name,
            description=description,
            input_schema={
                "type": "object",
                "properties": schema.get("properties") or {},
                "required": schema.get("required") or [],
            },
            tags=tuple(tags),
        )


def filter_by_modes(
    descriptors: Sequence[ToolDescriptor],
    active_modes: Sequence[str],
) -> list[ToolDescriptor]:
    """Keep the tools tagged for one of the active game modes.

    With no active modes every tool is kept. Otherwise a tool needs either
    ``mode:any`` or ``mode:<active mode>`` among its tags; untagged tools are
    dropped.
    """

    if not active_modes:
        return list(descriptors)

    wanted = {ANY_MODE_TAG, *(f"{MODE_TAG_PREFIX}{mode}" for mode in active_modes)}
    return [descriptor for descriptor in descriptors if wanted.intersection(descriptor.tags)]


def descriptors_to_anthropic(descriptors: Sequence[ToolDescriptor]) -> list[dict[str, Any]]:
    """Convert descriptors to the Messages API ``tools`` array."""

    return [
        {
            "name": descriptor.name,
            "description": descriptor.description,
            "input_schema": _copy_schema(descriptor.input_schema),
        }
        for descriptor in _unique(descriptors)
    ]


def descriptors_to_openai(descriptors: Sequence[ToolDescriptor]) -> list[dict[str, Any]]:
    """Convert descriptors to the Responses API ``tools`` array."""

    return [
        {
            "type": "function",
            "name": descriptor.name,
            "description": descriptor.description,
            "parameters": _copy_schema(descriptor.input_schema),
        }
        for descriptor in _unique(descriptors)
    ]


def _unique(descriptors: Sequence[ToolDescriptor]) -> list[ToolDescriptor]:
    if isinstance(descriptors, (str, bytes, bytearray)):
        msg = "tools must be provided as a sequence of ToolDescriptor instances"
        raise AdapterError(msg)

    seen: set[str] = set()
    unique: list[ToolDescriptor] = []
    for index, descriptor in enumerate(descriptors):
        if not isinstance(descriptor, ToolDescriptor):
            msg = f"tools[{index}] must be a ToolDescriptor"
            raise AdapterError(msg)
        if descriptor.name in seen:
            msg = f"duplicate tool name '{descriptor.name}'"
            raise AdapterError(msg)
        seen.add(descriptor.name)
        unique.append(descriptor)
    return unique


def _copy_schema(schema: Mapping[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(dict(schema)))
