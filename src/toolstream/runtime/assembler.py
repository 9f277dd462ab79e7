"""Reassemble streamed tool-call argument fragments into complete calls."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from itertools import count
from typing import Any

from toolstream.core.adapters.stream import (
    StreamEvent,
    ToolCallComplete,
    ToolCallStart,
    ToolInputDelta,
    TurnDone,
)
from toolstream.core.errors import ArgumentParseError
from toolstream.core.message import ToolCallRecord, parse_arguments

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PendingToolCall:
    """Mutable state of one tool call while its arguments stream in."""

    id: str
    name: str
    started_at: int
    raw_argument_fragments: str = ""
    parsed_arguments: Any = None
    arguments_complete: bool = False
    call_complete: bool = False
    item_id: str | None = None

    def append(self, fragment: str) -> None:
        self.raw_argument_fragments += fragment
        opens, closes = self.brace_counts()
        self.arguments_complete = opens >= 1 and opens == closes

    def brace_counts(self) -> tuple[int, int]:
        raw = self.raw_argument_fragments
        return raw.count("{"), raw.count("}")

    def finalize(self) -> ArgumentParseError | None:
        """Mark the call complete and parse its buffer.

        On failure the previously parsed value is kept and the error is
        returned instead of raised.
        """

        if self.call_complete:
            return None
        self.call_complete = True

        raw = self.raw_argument_fragments
        if not raw.strip():
            if self.parsed_arguments is None:
                self.parsed_arguments = {}
            return None

        try:
            self.parsed_arguments = parse_arguments(raw)
        except ValueError as exc:
            opens, closes = self.brace_counts()
            if opens != closes:
                return ArgumentParseError(self.id, f"unterminated arguments ({opens} '{{' vs {closes} '}}')")
            return ArgumentParseError(self.id, f"invalid JSON arguments: {exc}")
        return None

    def to_record(self) -> ToolCallRecord:
        raw = self.raw_argument_fragments or None
        arguments = self.parsed_arguments
        if arguments is None:
            arguments = raw if raw is not None else {}
        return ToolCallRecord(
            id=self.id,
            name=self.name,
            arguments=arguments,
            raw_arguments=raw,
            item_id=self.item_id,
        )


class ToolCallAssembler:
    """Collect the tool calls of one loop iteration.

    A fresh assembler is created per iteration and discarded afterwards.
    Events must be fed in delivery order: fragment routing depends on which
    calls are still open when each fragment arrives.
    """

    def __init__(self) -> None:
        self._pending: dict[str, PendingToolCall] = {}
        self._sequence = count()
        self.errors: list[ArgumentParseError] = []

    def feed(self, event: StreamEvent) -> None:
        if isinstance(event, ToolCallStart):
            self._start(event)
        elif isinstance(event, ToolInputDelta):
            self._append(event)
        elif isinstance(event, (ToolCallComplete, TurnDone)):
            self._finalize_open()

    def finish(self) -> list[ToolCallRecord]:
        """Finalize anything still open and return calls in start order."""

        self._finalize_open()
        return [pending.to_record() for pending in self._pending.values()]

    def _start(self, event: ToolCallStart) -> None:
        if event.id in self._pending:
            LOGGER.warning("duplicate tool call start id=%s ignored", event.id)
            return

        pending = PendingToolCall(
            id=event.id,
            name=event.name,
            started_at=next(self._sequence),
            item_id=event.item_id,
        )
        if event.partial_input:
            pending.append(event.partial_input)
        self._pending[event.id] = pending
        LOGGER.debug("tool call started id=%s name=%s", event.id, event.name)

    def _append(self, event: ToolInputDelta) -> None:
        target = self._select_target(event.target_hint)
        if target is None:
            LOGGER.warning("dropping argument fragment with no open tool call: %r", event.fragment[:200])
            return
        target.append(event.fragment)

    def _select_target(self, hint: str | None) -> PendingToolCall | None:
        if hint is not None:
            hinted = self._pending.get(hint)
            if hinted is not None and not hinted.call_complete:
                return hinted

        open_calls = [pending for pending in self._pending.values() if not pending.call_complete]
        for pending in reversed(open_calls):
            if not pending.arguments_complete:
                return pending
        return open_calls[-1] if open_calls else None

    def _finalize_open(self) -> None:
        for pending in self._pending.values():
            error = pending.finalize()
            if error is None:
                continue
            self.errors.append(error)
            LOGGER.warning(
                "argument parse error for %s (%s): %s",
                pending.name,
                pending.id,
                error.message,
            )
