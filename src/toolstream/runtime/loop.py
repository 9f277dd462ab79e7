"""Async orchestration loop: stream, assemble tool calls, execute, resume."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from toolstream.config import OrchestratorConfig
from toolstream.core.adapters import VendorAdapter, adapter_for, build_tool_turns
from toolstream.core.adapters.stream import StreamError, TextDelta, VendorStreamIterator
from toolstream.core.errors import AdapterError, OrchestrationCancelled, TransportError, VendorError
from toolstream.core.message import (
    ERROR_PREFIX,
    AssistantText,
    ConversationTurn,
    ToolCallRecord,
    ToolResultRecord,
    last_user_text,
)
from toolstream.io.interfaces import ConversationLog, SessionTransport, ToolRuntime
from toolstream.io.schema import ExchangeRecord, SessionPayload

from .assembler import ToolCallAssembler
from .cancellation import CancellationToken
from .catalog import ToolCatalog
from .gateway import ToolExecutionGateway
from .state import LoopState, RunState, Termination

LOGGER = logging.getLogger(__name__)

TextCallback = Callable[[str], Any]
ErrorCallback = Callable[[AdapterError], Any]
ToolResultCallback = Callable[[ToolCallRecord, ToolResultRecord], Any]


@dataclass(frozen=True, slots=True)
class OrchestrationResult:
    """Outcome of one :meth:`Orchestrator.run` call."""

    termination: Termination
    text: str
    iterations: int
    turns: list[ConversationTurn]
    warnings: tuple[str, ...] = ()
    error: AdapterError | None = None

    @property
    def ok(self) -> bool:
        return self.termination.persisted


class Orchestrator:
    """Drive a conversation through the ask, call, execute, resume cycle.

    One orchestrator handles one conversation at a time: starting a new
    :meth:`run` cancels the run in flight. The caller owns the ``turns`` list
    passed to :meth:`run`; the orchestrator only appends to it, and only at the
    end of an iteration, so a cancelled or failed iteration leaves no trace.
    """

    def __init__(
        self,
        transport: SessionTransport,
        config: OrchestratorConfig,
        /,
        *,
        tool_runtime: ToolRuntime | None = None,
        catalog: ToolCatalog | None = None,
        conversation_log: ConversationLog | None = None,
    ) -> None:
        self._transport = transport
        self._config = config
        self._adapter: VendorAdapter = adapter_for(config.vendor)
        self._gateway = (
            ToolExecutionGateway(tool_runtime, concurrent=config.parallel_tool_calls)
            if tool_runtime is not None
            else None
        )
        if catalog is None and tool_runtime is not None:
            catalog = ToolCatalog(tool_runtime, ttl=config.tool_cache_ttl)
        self._catalog = catalog
        self._conversation_log = conversation_log
        self._token: CancellationToken | None = None

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    def cancel(self, reason: str = "cancelled by caller") -> None:
        """Cooperatively cancel the run in flight, if any."""

        if self._token is not None:
            self._token.cancel(reason)

    async def run(
        self,
        turns: list[ConversationTurn],
        /,
        *,
        on_text: TextCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_tool_result: ToolResultCallback | None = None,
        active_modes: Sequence[str] = (),
    ) -> OrchestrationResult:
        if not isinstance(turns, list):
            msg = "turns must be a list owned by the caller"
            raise TypeError(msg)

        if self._token is not None:
            self._token.cancel("superseded by a new run")
        token = CancellationToken()
        self._token = token

        state = RunState()
        error: AdapterError | None = None
        try:
            termination = await self._drive(turns, state, token, on_text, on_tool_result, active_modes)
        except OrchestrationCancelled as exc:
            LOGGER.info("run cancelled during iteration %s: %s", state.iteration, exc)
            termination = Termination.CANCELLED
        except (TransportError, VendorError) as exc:
            LOGGER.error("run failed during iteration %s: [%s] %s", state.iteration, exc.code, exc.message)
            termination = Termination.FAILED
            error = exc
            if on_error is not None:
                await _invoke(on_error, exc)
        finally:
            if self._token is token:
                self._token = None

        if state.state is not LoopState.DONE:
            state.transition(LoopState.DONE)
        LOGGER.info("run finished %s after %s iteration(s)", termination.value, state.iteration)

        if termination.persisted:
            await self._persist(turns, state, termination)

        return OrchestrationResult(
            termination=termination,
            text=state.text,
            iterations=state.iteration,
            turns=turns,
            warnings=tuple(state.warnings),
            error=error,
        )

    async def _drive(
        self,
        turns: list[ConversationTurn],
        state: RunState,
        token: CancellationToken,
        on_text: TextCallback | None,
        on_tool_result: ToolResultCallback | None,
        active_modes: Sequence[str],
    ) -> Termination:
        tools = await self._wire_tools(state, active_modes)

        while True:
            state.iteration += 1
            LOGGER.info("iteration %s: sending %s turn(s)", state.iteration, len(turns))
            text, calls = await self._stream_iteration(turns, tools, state, token, on_text)

            if not calls:
                state.transition(LoopState.DONE)
                if text:
                    turns.append(AssistantText(text=text))
                return Termination.COMPLETED

            fresh = [call for call in calls if call.signature not in state.failure_signatures]
            if not fresh:
                state.transition(LoopState.DONE)
                names = ", ".join(sorted({call.name for call in calls}))
                state.warn(f"loop break: model repeated failing tool call(s) {names}")
                return Termination.LOOP_BREAK
            if len(fresh) < len(calls):
                LOGGER.info("skipping %s repeated failing tool call(s)", len(calls) - len(fresh))

            state.transition(LoopState.EXECUTING)
            results = await self._execute(fresh, token)
            for call, result in zip(fresh, results):
                if result.is_error:
                    state.failure_signatures.add(call.signature)
                if on_tool_result is not None:
                    await _invoke(on_tool_result, call, result)

            token.raise_if_cancelled()
            state.transition(LoopState.APPENDING)
            turns.extend(build_tool_turns(text, fresh, results))

            if state.iteration >= self._config.max_iterations:
                state.transition(LoopState.DONE)
                state.warn(f"truncated: reached the limit of {self._config.max_iterations} iterations")
                return Termination.TRUNCATED
            state.transition(LoopState.SENDING)

    async def _stream_iteration(
        self,
        turns: Sequence[ConversationTurn],
        tools: list[dict[str, Any]],
        state: RunState,
        token: CancellationToken,
        on_text: TextCallback | None,
    ) -> tuple[str, list[ToolCallRecord]]:
        config = self._config
        payload = SessionPayload(
            vendor_mode=config.vendor_mode,
            model=config.model,
            system_prompt=config.system_prompt,
            messages=self._adapter.to_wire(turns),
            tools=tools,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )

        token.raise_if_cancelled()
        stream = VendorStreamIterator(self._transport.open_session(payload), self._adapter.normalizer())
        state.transition(LoopState.STREAMING)

        assembler = ToolCallAssembler()
        fragments: list[str] = []
        try:
            async for event in stream:
                token.raise_if_cancelled()
                LOGGER.debug("event %s", type(event).__name__)
                if isinstance(event, TextDelta):
                    fragments.append(event.text)
                    state.text_fragments.append(event.text)
                    if on_text is not None:
                        await _invoke(on_text, event.text)
                elif isinstance(event, StreamError):
                    raise VendorError(event.code, event.message)
                else:
                    assembler.feed(event)
        finally:
            await stream.close()

        calls = assembler.finish()
        for parse_error in assembler.errors:
            state.warn(f"tool call {parse_error.call_id}: {parse_error.message}")
        return "".join(fragments), calls

    async def _execute(self, calls: list[ToolCallRecord], token: CancellationToken) -> list[ToolResultRecord]:
        if self._gateway is None:
            token.raise_if_cancelled()
            return [
                ToolResultRecord(call_id=call.id, content=f"{ERROR_PREFIX} executing tool {call.name}: no tool runtime configured")
                for call in calls
            ]
        return await self._gateway.execute(calls, cancel_token=token)

    async def _wire_tools(self, state: RunState, active_modes: Sequence[str]) -> list[dict[str, Any]]:
        if not self._config.vendor_mode.client_tools or self._catalog is None:
            return []
        try:
            descriptors = await self._catalog.descriptors(active_modes)
        except Exception as exc:
            state.warn(f"tool listing unavailable, continuing without tools: {exc}")
            return []
        return self._adapter.tools_to_wire(descriptors)

    async def _persist(self, turns: Sequence[ConversationTurn], state: RunState, termination: Termination) -> None:
        if self._conversation_log is None:
            return
        exchange = ExchangeRecord(
            user_text=last_user_text(turns),
            assistant_text=state.text,
            termination=termination.value,
            metadata={
                "iterations": state.iteration,
                "vendor_mode": self._config.vendor_mode.value,
                "model": self._config.model,
            },
        )
        try:
            await self._conversation_log.record(exchange)
        except Exception as exc:
            state.warn(f"failed to persist exchange: {exc}")


async def _invoke(callback: Callable[..., Any], *args: Any) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result
