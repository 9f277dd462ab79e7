"""I/O schemas exchanged with the session transport and the conversation log."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from ..core.message import VendorMode

JSONPrimitive = Union[str, int, float, bool, None]
JSONValue = Union[JSONPrimitive, Dict[str, "JSONValue"], List["JSONValue"]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionPayload(BaseModel):
    """Everything the transport needs to open one streaming session."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    vendor_mode: VendorMode = Field(..., description="Provider plus tool-execution mode.")
    model: str = Field(..., min_length=1, description="Provider model identifier.")
    system_prompt: str = Field("", description="System prompt sent outside the message list.")
    messages: List[Dict[str, Any]] = Field(default_factory=list, description="Conversation serialized for the vendor.")
    tools: List[Dict[str, Any]] = Field(default_factory=list, description="Tool definitions serialized for the vendor.")
    max_tokens: int = Field(1024, gt=0, description="Upper bound on generated tokens.")
    temperature: float = Field(0.7, ge=0.0, le=2.0, description="Sampling temperature.")


class ExchangeRecord(BaseModel):
    """One completed user-visible exchange, persisted after the loop is done."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    exchange_id: str = Field(default_factory=lambda: uuid4().hex, description="Unique identifier for the exchange.")
    user_text: str = Field(..., description="What the player typed.")
    assistant_text: str = Field(..., description="All assistant text streamed during the exchange.")
    termination: str = Field(..., description="How the orchestration loop ended.")
    recorded_at: datetime = Field(default_factory=_utcnow, description="Timestamp when the exchange finished.")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Supplemental metadata such as iteration count.")


__all__ = [
    "ExchangeRecord",
    "JSONValue",
    "SessionPayload",
]
