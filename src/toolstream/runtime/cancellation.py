"""Cooperative cancellation shared between the loop and its collaborators."""

from __future__ import annotations

from toolstream.core.errors import OrchestrationCancelled


class CancellationToken:
    """Flag checked at every suspension point of an orchestration run."""

    __slots__ = ("_cancelled", "_reason")

    def __init__(self) -> None:
        self._cancelled = False
        self._reason = ""

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "superseded") -> None:
        if not self._cancelled:
            self._cancelled = True
            self._reason = reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OrchestrationCancelled(f"orchestration cancelled: {self._reason}")
