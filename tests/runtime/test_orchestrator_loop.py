from __future__ import annotations

import asyncio
from typing import Any, Mapping

import pytest

from toolstream.config import OrchestratorConfig
from toolstream.core.errors import AdapterError, ToolExecutionError, TransportError, VendorError
from toolstream.core.message import (
    AssistantText,
    AssistantToolCalls,
    ConversationTurn,
    ToolCallRecord,
    ToolResultRecord,
    ToolResults,
    UserText,
)
from toolstream.runtime.loop import Orchestrator
from toolstream.runtime.state import Termination

from tests.fixtures.vendor_fake import (
    FakeToolRuntime,
    MemoryConversationLog,
    ScriptedTransport,
    anthropic_block_stop,
    anthropic_error,
    anthropic_message_stop,
    anthropic_text,
    anthropic_text_reply,
    anthropic_tool_json,
    anthropic_tool_start,
    anthropic_tool_call,
    mcp_tool,
    openai_arguments_delta,
    openai_completed,
    openai_function_item,
    openai_item_done,
    openai_text,
)


def _config(mode: str = "anthropic-client-mcp", **overrides: Any) -> OrchestratorConfig:
    return OrchestratorConfig.from_mode(mode, **overrides)


def _tool_session(call_id: str, name: str, arguments: Mapping[str, Any], text: str = "") -> list[str]:
    frames: list[str] = []
    if text:
        frames.extend([anthropic_text(text), anthropic_block_stop(0)])
    frames.extend(anthropic_tool_call(1, call_id, name, arguments))
    frames.append(anthropic_message_stop())
    return frames


def _roll(arguments: Mapping[str, Any]) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": f"d{arguments['sides']} -> 17"}]}


def _fail(arguments: Mapping[str, Any]) -> Any:
    raise ToolExecutionError("roll_dice", "dice bag is empty")


def _dice_runtime(handler: Any = _roll) -> FakeToolRuntime:
    return FakeToolRuntime(
        {"roll_dice": handler},
        tools=[mcp_tool("roll_dice", properties={"sides": {"type": "integer"}})],
    )


def test_plain_text_reply_completes_and_streams_deltas_in_order() -> None:
    transport = ScriptedTransport([anthropic_text_reply("Roll", "ing the ", "dice…")])
    orchestrator = Orchestrator(transport, _config())
    received: list[str] = []
    turns: list[ConversationTurn] = [UserText(text="Roll for me")]

    result = asyncio.run(orchestrator.run(turns, on_text=received.append))

    assert received == ["Roll", "ing the ", "dice…"]
    assert result.termination is Termination.COMPLETED
    assert result.text == "Rolling the dice…"
    assert result.iterations == 1
    assert turns == [UserText(text="Roll for me"), AssistantText(text="Rolling the dice…")]
    assert result.turns is turns
    assert transport.streams[0].closed


def test_tool_iteration_appends_calls_and_results_then_completes() -> None:
    transport = ScriptedTransport(
        [
            _tool_session("t1", "roll_dice", {"sides": 20}, text="Let me roll."),
            anthropic_text_reply("You rolled 17."),
        ]
    )
    runtime = _dice_runtime()
    shown: list[tuple[ToolCallRecord, ToolResultRecord]] = []
    orchestrator = Orchestrator(transport, _config(), tool_runtime=runtime)
    turns: list[ConversationTurn] = [UserText(text="Attack the goblin")]

    result = asyncio.run(orchestrator.run(turns, on_tool_result=lambda call, res: shown.append((call, res))))

    assert result.termination is Termination.COMPLETED
    assert result.iterations == 2
    assert result.text == "Let me roll.You rolled 17."
    assert runtime.calls == [("roll_dice", {"sides": 20})]
    assert turns[1] == AssistantToolCalls(
        text="Let me roll.",
        calls=(ToolCallRecord(id="t1", name="roll_dice", arguments={"sides": 20}, raw_arguments='{"sides": 20}'),),
    )
    assert turns[2] == ToolResults(results=(ToolResultRecord(call_id="t1", content="d20 -> 17"),))
    assert turns[3] == AssistantText(text="You rolled 17.")
    assert [(call.id, res.content) for call, res in shown] == [("t1", "d20 -> 17")]

    first, second = transport.payloads
    assert first.tools == [
        {
            "name": "roll_dice",
            "description": "roll_dice tool",
            "input_schema": {"type": "object", "properties": {"sides": {"type": "integer"}}, "required": []},
        }
    ]
    assert second.messages[-1] == {
        "role": "user",
        "content": [{"type": "tool_result", "tool_use_id": "t1", "content": "d20 -> 17"}],
    }


def test_repeated_failing_call_breaks_the_loop_on_second_occurrence() -> None:
    transport = ScriptedTransport(
        [
            _tool_session("t1", "roll_dice", {"sides": 20}),
            _tool_session("t2", "roll_dice", {"sides": 20}),
            _tool_session("t3", "roll_dice", {"sides": 20}),
        ]
    )
    runtime = _dice_runtime(_fail)
    orchestrator = Orchestrator(transport, _config(), tool_runtime=runtime)
    turns: list[ConversationTurn] = [UserText(text="Roll")]

    result = asyncio.run(orchestrator.run(turns))

    assert result.termination is Termination.LOOP_BREAK
    assert result.iterations == 2
    assert len(runtime.calls) == 1
    assert len(transport.payloads) == 2
    assert any("loop break" in warning for warning in result.warnings)
    assert turns[2] == ToolResults(
        results=(ToolResultRecord(call_id="t1", content="Error executing tool roll_dice: dice bag is empty"),)
    )
    assert len(turns) == 3


def test_fresh_calls_still_run_when_a_repeated_failure_is_dropped() -> None:
    second_session = (
        anthropic_tool_call(0, "t2", "roll_dice", {"sides": 20})
        + anthropic_tool_call(1, "t3", "roll_dice", {"sides": 6})
        + [anthropic_message_stop()]
    )

    def _only_d6(arguments: Mapping[str, Any]) -> str:
        if arguments["sides"] != 6:
            raise ToolExecutionError("roll_dice", "no d20 left")
        return "4"

    transport = ScriptedTransport(
        [_tool_session("t1", "roll_dice", {"sides": 20}), second_session, anthropic_text_reply("Done.")]
    )
    runtime = _dice_runtime(_only_d6)
    turns: list[ConversationTurn] = [UserText(text="Roll")]

    result = asyncio.run(Orchestrator(transport, _config(), tool_runtime=runtime).run(turns))

    assert result.termination is Termination.COMPLETED
    assert runtime.calls == [("roll_dice", {"sides": 20}), ("roll_dice", {"sides": 6})]
    assert [call.id for call in turns[3].calls] == ["t3"]
    assert turns[4] == ToolResults(results=(ToolResultRecord(call_id="t3", content="4"),))


def test_hitting_the_iteration_ceiling_truncates_with_all_turns_present() -> None:
    sessions = [_tool_session(f"t{index}", "roll_dice", {"sides": index}) for index in range(1, 22)]
    transport = ScriptedTransport(sessions)
    runtime = _dice_runtime()
    log = MemoryConversationLog()
    orchestrator = Orchestrator(transport, _config(), tool_runtime=runtime, conversation_log=log)
    turns: list[ConversationTurn] = [UserText(text="Keep rolling")]

    result = asyncio.run(orchestrator.run(turns))

    assert result.termination is Termination.TRUNCATED
    assert result.iterations == 20
    assert len(transport.payloads) == 20
    assert len(turns) == 1 + 2 * 20
    assert [turn.calls[0].id for turn in turns if isinstance(turn, AssistantToolCalls)] == [
        f"t{index}" for index in range(1, 21)
    ]
    assert any("truncated" in warning for warning in result.warnings)
    assert [record.termination for record in log.records] == ["truncated"]


def test_custom_iteration_ceiling() -> None:
    transport = ScriptedTransport([_tool_session(f"t{i}", "roll_dice", {"sides": i}) for i in range(1, 4)])
    result = asyncio.run(
        Orchestrator(transport, _config(max_iterations=2), tool_runtime=_dice_runtime()).run([UserText(text="go")])
    )

    assert result.termination is Termination.TRUNCATED
    assert result.iterations == 2


def test_vendor_error_fails_the_exchange_without_appending() -> None:
    transport = ScriptedTransport([[anthropic_text("Hm"), anthropic_error("Overloaded")]])
    log = MemoryConversationLog()
    errors: list[AdapterError] = []
    orchestrator = Orchestrator(transport, _config(), conversation_log=log)
    turns: list[ConversationTurn] = [UserText(text="Hello")]

    result = asyncio.run(orchestrator.run(turns, on_error=errors.append))

    assert result.termination is Termination.FAILED
    assert isinstance(result.error, VendorError)
    assert result.error.code == "overloaded_error"
    assert errors == [result.error]
    assert turns == [UserText(text="Hello")]
    assert log.records == []
    assert not result.ok


def test_transport_error_fails_the_exchange() -> None:
    transport = ScriptedTransport([[TransportError("upstream_non_2xx", "upstream returned 529: overloaded")]])

    async def _on_error(error: AdapterError) -> None:
        await asyncio.sleep(0)
        seen.append(error)

    seen: list[AdapterError] = []
    result = asyncio.run(Orchestrator(transport, _config()).run([UserText(text="Hello")], on_error=_on_error))

    assert result.termination is Termination.FAILED
    assert isinstance(result.error, TransportError)
    assert result.error.code == "upstream_non_2xx"
    assert seen == [result.error]


def test_interrupted_stream_is_reported_as_transport_error() -> None:
    transport = ScriptedTransport([[anthropic_text("Par"), ConnectionResetError("reset by peer")]])

    result = asyncio.run(Orchestrator(transport, _config()).run([UserText(text="Hello")]))

    assert result.termination is Termination.FAILED
    assert result.error.code == "stream_interrupted"
    assert result.text == "Par"


def test_cancel_discards_partial_iteration() -> None:
    transport = ScriptedTransport([anthropic_text_reply("one", "two", "three")])
    orchestrator = Orchestrator(transport, _config())
    received: list[str] = []
    turns: list[ConversationTurn] = [UserText(text="Hello")]

    def _on_text(text: str) -> None:
        received.append(text)
        orchestrator.cancel()

    result = asyncio.run(orchestrator.run(turns, on_text=_on_text))

    assert result.termination is Termination.CANCELLED
    assert received == ["one"]
    assert turns == [UserText(text="Hello")]
    assert transport.streams[0].closed


def test_new_run_cancels_the_run_in_flight() -> None:
    transport = ScriptedTransport([anthropic_text_reply("old", "reply"), anthropic_text_reply("new reply")])
    orchestrator = Orchestrator(transport, _config())
    first_turns: list[ConversationTurn] = [UserText(text="first")]
    second_turns: list[ConversationTurn] = [UserText(text="second")]

    async def _scenario() -> tuple[Any, Any]:
        first = asyncio.create_task(orchestrator.run(first_turns))
        await asyncio.sleep(0)
        second = asyncio.create_task(orchestrator.run(second_turns))
        return await asyncio.gather(first, second)

    first_result, second_result = asyncio.run(_scenario())

    assert first_result.termination is Termination.CANCELLED
    assert second_result.termination is Termination.COMPLETED
    assert first_turns == [UserText(text="first")]
    assert second_turns[-1] == AssistantText(text="new reply")


def test_completed_exchange_is_persisted_once() -> None:
    transport = ScriptedTransport(
        [_tool_session("t1", "roll_dice", {"sides": 8}, text="Rolling. "), anthropic_text_reply("Seventeen!")]
    )
    log = MemoryConversationLog()
    orchestrator = Orchestrator(transport, _config(), tool_runtime=_dice_runtime(), conversation_log=log)

    asyncio.run(orchestrator.run([UserText(text="Roll a d8")]))

    assert len(log.records) == 1
    record = log.records[0]
    assert record.user_text == "Roll a d8"
    assert record.assistant_text == "Rolling. Seventeen!"
    assert record.termination == "completed"
    assert record.metadata["iterations"] == 2


def test_persistence_failure_is_a_warning() -> None:
    transport = ScriptedTransport([anthropic_text_reply("Hi")])
    orchestrator = Orchestrator(transport, _config(), conversation_log=MemoryConversationLog(fail=True))

    result = asyncio.run(orchestrator.run([UserText(text="Hello")]))

    assert result.termination is Termination.COMPLETED
    assert any("failed to persist exchange" in warning for warning in result.warnings)


def test_openai_tool_iteration_resolves_positional_fragments() -> None:
    item = openai_function_item("call_abc", "roll_dice", '{"sides":20}', item_id="fc_1")
    transport = ScriptedTransport(
        [
            [
                openai_text("Rolling"),
                openai_arguments_delta(1, '{"si'),
                openai_arguments_delta(1, 'des"'),
                openai_arguments_delta(1, ":20}"),
                openai_item_done(1, item),
                openai_completed([{"type": "message"}, item]),
            ],
            [openai_text("17!"), openai_completed()],
        ]
    )
    runtime = _dice_runtime()
    turns: list[ConversationTurn] = [UserText(text="Roll")]

    result = asyncio.run(Orchestrator(transport, _config("openai-client-mcp"), tool_runtime=runtime).run(turns))

    assert result.termination is Termination.COMPLETED
    assert runtime.calls == [("roll_dice", {"sides": 20})]
    assert [call.id for call in turns[1].calls] == ["call_abc"]
    assert transport.payloads[0].tools[0]["type"] == "function"
    assert transport.payloads[1].messages[1:] == [
        {"role": "assistant", "content": "Rolling"},
        {"type": "function_call", "id": "fc_1", "call_id": "call_abc", "name": "roll_dice", "arguments": '{"sides":20}'},
        {"type": "function_call_output", "call_id": "call_abc", "output": "d20 -> 17"},
    ]


def test_server_mode_does_not_attach_tools() -> None:
    transport = ScriptedTransport([anthropic_text_reply("The server rolled.")])
    runtime = _dice_runtime()

    asyncio.run(Orchestrator(transport, _config("anthropic-server-mcp"), tool_runtime=runtime).run([UserText(text="x")]))

    assert transport.payloads[0].tools == []
    assert runtime.list_count == 0


def test_tool_listing_failure_continues_without_tools() -> None:
    class _Broken(FakeToolRuntime):
        async def list_tools(self) -> list[Mapping[str, Any]]:
            raise ToolExecutionError("tools/list", "connection refused")

    transport = ScriptedTransport([anthropic_text_reply("Fine.")])
    result = asyncio.run(Orchestrator(transport, _config(), tool_runtime=_Broken()).run([UserText(text="x")]))

    assert result.termination is Termination.COMPLETED
    assert transport.payloads[0].tools == []
    assert any("tool listing unavailable" in warning for warning in result.warnings)


def test_calls_without_a_runtime_become_error_results() -> None:
    transport = ScriptedTransport([_tool_session("t1", "roll_dice", {"sides": 4}), anthropic_text_reply("Sorry.")])
    turns: list[ConversationTurn] = [UserText(text="Roll")]

    result = asyncio.run(Orchestrator(transport, _config()).run(turns))

    assert result.termination is Termination.COMPLETED
    assert turns[2].results[0].content.startswith("Error executing tool roll_dice")


def test_payload_carries_config_values() -> None:
    transport = ScriptedTransport([anthropic_text_reply("ok")])
    config = _config(system_prompt="You are the GM.", temperature=0.2, max_tokens=256, model="claude-test")

    asyncio.run(Orchestrator(transport, config).run([UserText(text="x")]))

    payload = transport.payloads[0]
    assert payload.system_prompt == "You are the GM."
    assert payload.temperature == 0.2
    assert payload.max_tokens == 256
    assert payload.model == "claude-test"
    assert payload.messages == [{"role": "user", "content": "x"}]


def test_run_requires_a_caller_owned_list() -> None:
    orchestrator = Orchestrator(ScriptedTransport(), _config())

    with pytest.raises(TypeError):
        asyncio.run(orchestrator.run((UserText(text="x"),)))  # type: ignore[arg-type]


def test_non_finite_arguments_become_an_error_result_not_a_crash() -> None:
    nan_session = [
        anthropic_tool_start(0, "t1", "roll_dice"),
        anthropic_tool_json(0, '{"sides": Na'),
        anthropic_tool_json(0, "N}"),
        anthropic_block_stop(0),
        anthropic_message_stop(),
    ]
    transport = ScriptedTransport([nan_session, anthropic_text_reply("The dice fall off the table.")])
    runtime = _dice_runtime()
    turns: list[ConversationTurn] = [UserText(text="Roll")]

    result = asyncio.run(Orchestrator(transport, _config(), tool_runtime=runtime).run(turns))

    assert result.termination is Termination.COMPLETED
    assert runtime.calls == []
    assert turns[1].calls[0].arguments == '{"sides": NaN}'
    assert turns[2].results[0].content.startswith("Error parsing tool arguments: ")
    assert any("non-finite" in warning for warning in result.warnings)


def test_literal_brace_in_arguments_round_trips_to_the_next_request() -> None:
    transport = ScriptedTransport(
        [_tool_session("t1", "narrate", {"text": "the glyph { glows"}), anthropic_text_reply("It glows.")]
    )
    runtime = FakeToolRuntime({"narrate": lambda arguments: "ok"})

    result = asyncio.run(Orchestrator(transport, _config(), tool_runtime=runtime).run([UserText(text="Look")]))

    assert result.termination is Termination.COMPLETED
    assert runtime.calls == [("narrate", {"text": "the glyph { glows"})]
    tool_use = transport.payloads[1].messages[1]["content"][0]
    assert tool_use["input"] == {"text": "the glyph { glows"}
    assert result.warnings == ()
