"""Abstract interfaces for the orchestrator's external collaborators."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping
from typing import Any

from .schema import ExchangeRecord, SessionPayload


class SessionTransport(ABC):
    """Opens one streaming session with a model provider."""

    @abstractmethod
    def open_session(self, payload: SessionPayload) -> AsyncIterator[Any]:
        """Return an async iterator of raw frames (SSE data strings or mappings).

        Failures to open or keep the stream raise :class:`TransportError`.
        """


class ToolRuntime(ABC):
    """Executes tools on behalf of the assistant."""

    @abstractmethod
    async def list_tools(self) -> list[Mapping[str, Any]]:
        """Return raw tool entries as advertised by the runtime."""

    @abstractmethod
    async def call_tool(self, name: str, arguments: Mapping[str, Any]) -> Any:
        """Invoke one tool; failures raise :class:`ToolExecutionError`."""


class ConversationLog(ABC):
    """Append-only log of completed exchanges."""

    @abstractmethod
    async def record(self, exchange: ExchangeRecord) -> None:
        """Persist one exchange."""


__all__ = ["ConversationLog", "SessionTransport", "ToolRuntime"]
