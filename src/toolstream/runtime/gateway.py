"""Dispatch assembled tool calls to the tool runtime."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from toolstream.core.errors import ToolExecutionError
from toolstream.core.message import ERROR_PREFIX, ToolCallRecord, ToolResultRecord, parse_arguments
from toolstream.io.interfaces import ToolRuntime

from .cancellation import CancellationToken

LOGGER = logging.getLogger(__name__)


class ToolExecutionGateway:
    """Run tool calls and turn every outcome into a :class:`ToolResultRecord`.

    One failing call never prevents the others from completing; failures are
    encoded in the result content with the reserved ``Error`` prefix. There is
    no retry policy here, retries are decided by the orchestration loop.
    """

    def __init__(self, runtime: ToolRuntime, *, concurrent: bool = True) -> None:
        self._runtime = runtime
        self._concurrent = concurrent

    async def execute(
        self,
        calls: Sequence[ToolCallRecord],
        *,
        cancel_token: CancellationToken | None = None,
    ) -> list[ToolResultRecord]:
        if self._concurrent and len(calls) > 1:
            results = await asyncio.gather(*(self._execute_one(call, cancel_token) for call in calls))
            return list(results)

        results = []
        for call in calls:
            results.append(await self._execute_one(call, cancel_token))
        return results

    async def _execute_one(
        self,
        call: ToolCallRecord,
        cancel_token: CancellationToken | None,
    ) -> ToolResultRecord:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        try:
            arguments = validate_arguments(call.arguments)
        except ValueError as exc:
            LOGGER.warning("invalid arguments for %s (%s): %s", call.name, call.id, exc)
            return ToolResultRecord(call_id=call.id, content=f"{ERROR_PREFIX} parsing tool arguments: {exc}")

        LOGGER.info("calling tool %s (%s)", call.name, call.id)
        try:
            raw_result = await self._runtime.call_tool(call.name, arguments)
        except asyncio.CancelledError:
            raise
        except ToolExecutionError as exc:
            LOGGER.warning("tool %s failed: %s", call.name, exc.message)
            return ToolResultRecord(call_id=call.id, content=f"{ERROR_PREFIX} executing tool {call.name}: {exc.message}")
        except Exception as exc:
            LOGGER.warning("tool %s raised %s: %s", call.name, type(exc).__name__, exc)
            return ToolResultRecord(call_id=call.id, content=f"{ERROR_PREFIX} executing tool {call.name}: {exc}")

        return ToolResultRecord(call_id=call.id, content=result_to_text(raw_result))


def validate_arguments(arguments: Any) -> dict[str, Any]:
    """Return the call arguments as a JSON object or raise ``ValueError``."""

    if isinstance(arguments, str):
        arguments = parse_arguments(arguments)

    if not isinstance(arguments, Mapping):
        msg = f"expected a JSON object, got {type(arguments).__name__}"
        raise ValueError(msg)
    return dict(arguments)


def result_to_text(result: Any) -> str:
    """Flatten the common MCP ``tools/call`` result shapes into text."""

    if isinstance(result, str):
        return result
    if result is None:
        return ""

    if isinstance(result, Mapping):
        content = result.get("content", result)
        text: str | None = None
        if isinstance(content, Sequence) and not isinstance(content, str) and content:
            first = content[0]
            if isinstance(first, Mapping) and isinstance(first.get("text"), str) and first["text"]:
                text = first["text"]
        elif isinstance(content, Mapping) and isinstance(content.get("text"), str):
            text = content["text"]

        if text is None:
            text = json.dumps(result, indent=2, default=str)
        if result.get("isError") is True and not text.startswith(ERROR_PREFIX):
            return f"{ERROR_PREFIX}: {text}"
        return text

    return str(result)
