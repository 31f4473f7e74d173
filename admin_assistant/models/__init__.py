from .tool import ToolName, ToolDeclaration, ToolInvocation, ToolResult
from .action import ActionRecord, PendingAction, PendingStatus
from .context import AssistantContext, BusinessContextSnapshot
from .conversation import AssistantReply, AssistantTurn, ConfirmDecision

__all__ = [
    "ToolName",
    "ToolDeclaration",
    "ToolInvocation",
    "ToolResult",
    "ActionRecord",
    "PendingAction",
    "PendingStatus",
    "AssistantContext",
    "BusinessContextSnapshot",
    "AssistantReply",
    "AssistantTurn",
    "ConfirmDecision",
]
