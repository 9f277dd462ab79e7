from __future__ import annotations

import asyncio
from dataclasses import is_dataclass
from typing import Any, Dict, Iterable, List

import pytest

from toolstream.core.adapters.stream import (
    BaseStreamIterator,
    StreamError,
    StreamEvent,
    StreamNormalizer,
    TextDelta,
    ToolCallComplete,
    ToolCallStart,
    ToolInputDelta,
    TurnDone,
    VendorStreamIterator,
    decode_frame,
    replay_stream,
)
from toolstream.core.errors import AdapterError, TransportError

from tests.fixtures.vendor_fake import FakeFrameStream


def test_event_dataclasses_are_slot_based() -> None:
    for cls, expected_slots in (
        (TextDelta, {"text"}),
        (ToolCallStart, {"id", "name", "partial_input", "item_id"}),
        (ToolInputDelta, {"fragment", "target_hint"}),
        (StreamError, {"code", "message"}),
    ):
        assert is_dataclass(cls)
        assert set(getattr(cls, "__slots__")) == expected_slots


class DummyNormalizer(StreamNormalizer):
    def __init__(self, responses: Iterable[List[StreamEvent]]) -> None:
        self._responses = iter(responses)
        self.seen_chunks: List[Dict[str, Any]] = []

    async def normalize_chunk(self, chunk: Dict[str, Any]) -> List[StreamEvent]:
        self.seen_chunks.append(chunk)
        try:
            return next(self._responses)
        except StopIteration:
            return []


class DummyStream(BaseStreamIterator):
    def __init__(self, *, chunks: Iterable[Dict[str, Any]], normalizer: StreamNormalizer) -> None:
        super().__init__(normalizer)
        self._chunks = iter(chunks)
        self.close_count = 0

    async def _get_next_chunk(self) -> Dict[str, Any]:
        try:
            return next(self._chunks)
        except StopIteration as exc:
            raise StopAsyncIteration from exc

    async def _on_close(self) -> None:
        self.close_count += 1


def test_iterator_streams_normalized_events_in_order() -> None:
    chunks = [{"id": 1}, {"id": 2}, {"id": 3}]
    normalizer = DummyNormalizer(
        responses=[
            [TextDelta(text="Hel"), TextDelta(text="lo")],
            [
                ToolCallStart(id="call-1", name="do"),
                ToolInputDelta(fragment='{"x":', target_hint="call-1"),
                ToolInputDelta(fragment="1}", target_hint="call-1"),
                ToolCallComplete(),
            ],
            [TurnDone()],
        ]
    )
    stream = DummyStream(chunks=chunks, normalizer=normalizer)

    events = asyncio.run(replay_stream(stream))

    assert events == [
        TextDelta(text="Hel"),
        TextDelta(text="lo"),
        ToolCallStart(id="call-1", name="do"),
        ToolInputDelta(fragment='{"x":', target_hint="call-1"),
        ToolInputDelta(fragment="1}", target_hint="call-1"),
        ToolCallComplete(),
        TurnDone(),
    ]
    assert stream.close_count == 1
    assert stream.closed
    assert normalizer.seen_chunks == chunks


def test_iterator_skips_empty_batches_and_stops_after_turn_done() -> None:
    chunks = [{"id": "empty"}, {"id": "payload"}, {"id": "ignored"}]
    normalizer = DummyNormalizer(
        responses=[
            [],
            [TextDelta(text="A"), TurnDone(), TextDelta(text="after")],
            [TextDelta(text="extra")],
        ]
    )
    stream = DummyStream(chunks=chunks, normalizer=normalizer)

    events = asyncio.run(replay_stream(stream))

    assert events == [TextDelta(text="A"), TurnDone()]
    assert stream.close_count == 1
    assert normalizer.seen_chunks == chunks[:2]


def test_iterator_surfaces_stream_error_once_and_stops() -> None:
    normalizer = DummyNormalizer(
        responses=[[StreamError(code="overloaded", message="busy")], [TextDelta(text="never")]]
    )
    stream = DummyStream(chunks=[{"id": 1}, {"id": 2}], normalizer=normalizer)

    events = asyncio.run(replay_stream(stream))

    assert events == [StreamError(code="overloaded", message="busy")]
    assert stream.closed


def test_close_is_idempotent_and_prevents_additional_reads() -> None:
    normalizer = DummyNormalizer(responses=[[TextDelta(text="x")]])
    stream = DummyStream(chunks=[{"id": 1}], normalizer=normalizer)

    asyncio.run(stream.close())
    asyncio.run(stream.close())

    assert stream.close_count == 1
    assert stream.closed

    async def _anext() -> StreamEvent:
        return await stream.__anext__()

    with pytest.raises(StopAsyncIteration):
        asyncio.run(_anext())


class _PassthroughNormalizer:
    async def normalize_chunk(self, chunk: Any) -> list[StreamEvent]:
        frame = decode_frame(chunk)
        if frame is None:
            return []
        if frame.get("done"):
            return [TurnDone()]
        return [TextDelta(text=frame["text"])]


def test_vendor_iterator_closes_transport_stream_after_turn_done() -> None:
    frames = FakeFrameStream(['{"text": "a"}', "", "[DONE]", '{"done": true}', '{"text": "late"}'])
    stream = VendorStreamIterator(frames, _PassthroughNormalizer())

    events = asyncio.run(replay_stream(stream))

    assert events == [TextDelta(text="a"), TurnDone()]
    assert frames.closed


def test_vendor_iterator_wraps_unexpected_failures_as_transport_errors() -> None:
    frames = FakeFrameStream(['{"text": "a"}', ConnectionResetError("peer reset")])
    stream = VendorStreamIterator(frames, _PassthroughNormalizer())

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(replay_stream(stream))

    assert excinfo.value.code == "stream_interrupted"
    assert "peer reset" in excinfo.value.message
    assert frames.closed


def test_vendor_iterator_passes_transport_errors_through() -> None:
    frames = FakeFrameStream([TransportError("upstream_non_2xx", "upstream returned 529")])
    stream = VendorStreamIterator(frames, _PassthroughNormalizer())

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(replay_stream(stream))

    assert excinfo.value.code == "upstream_non_2xx"


def test_vendor_iterator_requires_async_iterable() -> None:
    with pytest.raises(AdapterError):
        VendorStreamIterator(["not", "async"], _PassthroughNormalizer())


@pytest.mark.parametrize(
    "chunk",
    ["", "   ", "[DONE]", "not json", "[1, 2]", b"", 42],
)
def test_decode_frame_ignores_noise(chunk: Any) -> None:
    assert decode_frame(chunk) is None


def test_decode_frame_accepts_bytes_strings_and_mappings() -> None:
    assert decode_frame(b'{"type": "ping"}') == {"type": "ping"}
    assert decode_frame(' {"type": "ping"}\n') == {"type": "ping"}
    assert decode_frame({"type": "ping"}) == {"type": "ping"}
