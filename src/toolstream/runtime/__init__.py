"""Runtime orchestration: assembler, gateway and the tool-call loop."""

from .assembler import PendingToolCall, ToolCallAssembler
from .cancellation import CancellationToken
from .catalog import ToolCatalog
from .gateway import ToolExecutionGateway
from .loop import OrchestrationResult, Orchestrator
from .state import LoopState, RunState, Termination

__all__ = [
    "CancellationToken",
    "LoopState",
    "OrchestrationResult",
    "Orchestrator",
    "PendingToolCall",
    "RunState",
    "Termination",
    "ToolCallAssembler",
    "ToolCatalog",
    "ToolExecutionGateway",
]
