"""Custom exception types used by the orchestrator and its adapters."""

from __future__ import annotations


class AdapterError(RuntimeError):
    """Raised when an adapter cannot fulfil a request."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class TransportError(AdapterError):
    """The upstream stream could not be opened or died mid-flight."""

    def __init__(self, code: str, message: str, *, status: int | None = None) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.status = status


class VendorError(AdapterError):
    """The model provider sent an explicit error frame."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class ArgumentParseError(AdapterError):
    """Accumulated tool-call arguments did not form valid JSON."""

    def __init__(self, call_id: str, message: str) -> None:
        super().__init__(f"tool call {call_id!r}: {message}")
        self.call_id = call_id
        self.message = message


class ToolExecutionError(AdapterError):
    """The tool runtime rejected or failed a call."""

    def __init__(self, name: str, message: str) -> None:
        super().__init__(f"tool {name!r}: {message}")
        self.name = name
        self.message = message


class OrchestrationCancelled(AdapterError):
    """A newer request superseded the running exchange."""

    def __init__(self, message: str = "orchestration cancelled") -> None:
        super().__init__(message)
