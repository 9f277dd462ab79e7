"""State primitives tracked while one orchestration run is in flight."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

LOGGER = logging.getLogger(__name__)


class LoopState(str, Enum):
    SENDING = "sending"
    STREAMING = "streaming"
    EXECUTING = "executing"
    APPENDING = "appending"
    DONE = "done"


class Termination(str, Enum):
    """How an orchestration run ended."""

    COMPLETED = "completed"
    LOOP_BREAK = "loop_break"
    TRUNCATED = "truncated"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def persisted(self) -> bool:
        """Whether the exchange is handed to the conversation log."""

        return self in (Termination.COMPLETED, Termination.LOOP_BREAK, Termination.TRUNCATED)


_TRANSITIONS: dict[LoopState, frozenset[LoopState]] = {
    LoopState.SENDING: frozenset({LoopState.STREAMING, LoopState.DONE}),
    LoopState.STREAMING: frozenset({LoopState.EXECUTING, LoopState.DONE}),
    LoopState.EXECUTING: frozenset({LoopState.APPENDING, LoopState.DONE}),
    LoopState.APPENDING: frozenset({LoopState.SENDING, LoopState.DONE}),
    LoopState.DONE: frozenset(),
}


@dataclass(slots=True)
class RunState:
    """Aggregated state for a single orchestration run.

    ``failure_signatures`` only ever grows during a run; ``text_fragments``
    collects every assistant text delta streamed across all iterations.
    """

    state: LoopState = LoopState.SENDING
    iteration: int = 0
    failure_signatures: set[tuple[str, str]] = field(default_factory=set)
    text_fragments: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def transition(self, target: LoopState) -> None:
        if target not in _TRANSITIONS[self.state]:
            msg = f"invalid loop transition {self.state.value} -> {target.value}"
            raise RuntimeError(msg)
        LOGGER.debug("loop state %s -> %s (iteration %s)", self.state.value, target.value, self.iteration)
        self.state = target

    def warn(self, message: str) -> None:
        LOGGER.warning(message)
        self.warnings.append(message)

    @property
    def text(self) -> str:
        return "".join(self.text_fragments)
