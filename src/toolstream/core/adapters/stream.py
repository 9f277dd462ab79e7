"""Canonical streaming event schema and base iterator primitives."""

from __future__ import annotations

import abc
import asyncio
import inspect
import json
import logging
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, AsyncIterator, Deque, Dict, List, Optional, Protocol, Union

from ..errors import AdapterError, TransportError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TextDelta:
    """Incremental assistant text, forwarded to the caller without buffering."""

    text: str


@dataclass(slots=True)
class ToolCallStart:
    """A tool call was opened; arguments follow as :class:`ToolInputDelta`."""

    id: str
    name: str
    partial_input: str = ""
    item_id: Optional[str] = None


@dataclass(slots=True)
class ToolInputDelta:
    """A fragment of tool-call arguments, optionally naming its call."""

    fragment: str
    target_hint: Optional[str] = None


@dataclass(slots=True)
class ToolCallComplete:
    """Every open tool call may now be finalized."""


@dataclass(slots=True)
class TurnDone:
    """The assistant turn ended."""


@dataclass(slots=True)
class StreamError:
    """Explicit error frame from the provider; always the last event."""

    code: str
    message: str


StreamEvent = Union[TextDelta, ToolCallStart, ToolInputDelta, ToolCallComplete, TurnDone, StreamError]

_TERMINAL_EVENTS = (TurnDone, StreamError)


class StreamNormalizer(Protocol):
    async def normalize_chunk(self, chunk: Any) -> List[StreamEvent]:
        """Map a provider-specific frame into canonical stream events."""


class BaseStreamIterator(AsyncIterator[StreamEvent], metaclass=abc.ABCMeta):
    """Shared async iterator driving provider-specific streaming adapters.

    Subclasses are responsible for sourcing raw provider frames by
    implementing :meth:`_get_next_chunk`. Each frame is normalized into zero or
    more :class:`StreamEvent` instances via a :class:`StreamNormalizer`. The
    iterator buffers normalized events so consumers receive a linear stream of
    canonical event objects regardless of how providers batch their updates,
    and stops after the first :class:`TurnDone` or :class:`StreamError`.
    """

    def __init__(self, normalizer: StreamNormalizer) -> None:
        self._normalizer = normalizer
        self._buffer: Deque[StreamEvent] = deque()
        self._closed = False
        self._finalized = False
        self._close_lock = asyncio.Lock()

    def __aiter__(self) -> BaseStreamIterator:
        return self

    async def __anext__(self) -> StreamEvent:
        if self._closed and not self._buffer:
            raise StopAsyncIteration

        if self._finalized and not self._buffer:
            await self.close()
            raise StopAsyncIteration

        buffered = self._pop_buffered_event()
        if buffered is not None:
            return await self._finalize_if_needed(buffered)

        while True:
            if self._closed:
                raise StopAsyncIteration

            if self._finalized:
                await self.close()
                raise StopAsyncIteration

            chunk = await self._consume_chunk()
            events = await self._normalizer.normalize_chunk(chunk)
            if not events:
                continue

            self._buffer.extend(events)
            buffered = self._pop_buffered_event()
            if buffered is not None:
                return await self._finalize_if_needed(buffered)

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Release provider resources and prevent additional iteration."""

        async with self._close_lock:
            if self._closed:
                return

            self._closed = True
            self._buffer.clear()
            await self._on_close()

    async def _consume_chunk(self) -> Any:
        try:
            return await self._get_next_chunk()
        except StopAsyncIteration:
            await self.close()
            raise

    async def _finalize_if_needed(self, event: StreamEvent) -> StreamEvent:
        if isinstance(event, _TERMINAL_EVENTS):
            self._finalized = True
            # Anything the normalizer produced after a terminal event is dropped.
            self._buffer.clear()
            await self.close()
        return event

    def _pop_buffered_event(self) -> StreamEvent | None:
        if not self._buffer:
            return None
        return self._buffer.popleft()

    @abc.abstractmethod
    async def _get_next_chunk(self) -> Any:
        """Retrieve the next raw frame from the provider stream."""

    async def _on_close(self) -> None:
        """Allow subclasses to dispose provider resources when closing."""


class VendorStreamIterator(BaseStreamIterator):
    """Normalize the raw frames yielded by a session transport."""

    def __init__(self, frames: Any, normalizer: StreamNormalizer) -> None:
        self._frames = frames
        self._iterator = _coerce_async_iterator(frames)
        self._frames_closed = False
        super().__init__(normalizer)

    async def _get_next_chunk(self) -> Any:
        try:
            return await self._iterator.__anext__()
        except (StopAsyncIteration, TransportError, asyncio.CancelledError):
            raise
        except Exception as exc:
            msg = f"upstream stream failed: {exc}"
            raise TransportError("stream_interrupted", msg) from exc

    async def _on_close(self) -> None:
        if self._frames_closed:
            return
        self._frames_closed = True

        for closer_name in ("aclose", "close"):
            closer = getattr(self._frames, closer_name, None)
            if closer is None:
                continue
            result = closer()
            if inspect.isawaitable(result):
                await result
            return


def decode_frame(chunk: Any) -> Dict[str, Any] | None:
    """Decode one SSE data payload into a JSON object, or ``None`` for noise."""

    if isinstance(chunk, Mapping):
        return dict(chunk)

    if isinstance(chunk, (bytes, bytearray)):
        chunk = chunk.decode("utf-8", errors="replace")

    if not isinstance(chunk, str):
        LOGGER.debug("ignoring frame of type %s", type(chunk).__name__)
        return None

    data = chunk.strip()
    if not data or data in {"[DONE]", "DONE"}:
        return None

    try:
        decoded = json.loads(data)
    except json.JSONDecodeError:
        LOGGER.debug("ignoring non-JSON frame %r", data[:200])
        return None

    if not isinstance(decoded, dict):
        LOGGER.debug("ignoring non-object frame %r", data[:200])
        return None
    return decoded


async def replay_stream(iterator: BaseStreamIterator) -> List[StreamEvent]:
    """Collect all events emitted by a stream iterator."""

    events: List[StreamEvent] = []
    try:
        async for event in iterator:
            events.append(event)
    finally:
        await iterator.close()
    return events


def _coerce_async_iterator(frames: Any) -> Any:
    iterator_factory = getattr(frames, "__aiter__", None)
    if iterator_factory is None or not callable(iterator_factory):
        msg = "session stream must support async iteration"
        raise AdapterError(msg)
    iterator = iterator_factory()
    if not hasattr(iterator, "__anext__"):
        msg = "session stream iterator must define '__anext__'"
        raise AdapterError(msg)
    return iterator
