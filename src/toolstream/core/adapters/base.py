"""Adapter interface shared by provider implementations."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from ..message import ConversationTurn, Vendor
from .stream import StreamNormalizer
from .toolbridge import ToolDescriptor

if TYPE_CHECKING:
    from ...io.schema import SessionPayload


class VendorAdapter(ABC):
    """Everything the orchestrator needs to talk to one provider."""

    vendor: Vendor
    endpoint_path: str

    @abstractmethod
    def normalizer(self) -> StreamNormalizer:
        """Return a fresh normalizer; normalizers carry per-stream state."""

    @abstractmethod
    def to_wire(self, turns: Sequence[ConversationTurn]) -> list[dict[str, Any]]:
        """Serialize the conversation into the provider's message array."""

    @abstractmethod
    def from_wire(self, messages: Sequence[Mapping[str, Any]]) -> list[ConversationTurn]:
        """Parse a provider message array back into conversation turns."""

    @abstractmethod
    def tools_to_wire(self, descriptors: Sequence[ToolDescriptor]) -> list[dict[str, Any]]:
        """Convert tool descriptors into the provider's ``tools`` array."""

    @abstractmethod
    def build_request_body(self, payload: SessionPayload) -> dict[str, Any]:
        """Build the JSON body of the streaming request."""
