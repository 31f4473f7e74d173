"""API request/response models."""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from admin_assistant.models.context import AssistantContext
from admin_assistant.models.conversation import AssistantReply, AssistantTurn, ConfirmDecision
from admin_assistant.models.tool import ToolDeclaration

MAX_MESSAGE_LENGTH = 10_000
MAX_HISTORY_TURNS = 100


class CamelModel(BaseModel):
    """Wire models use camelCase; Python code uses snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Assistant Request
# ============================================================================

class ConversationTurn(CamelModel):
    """Prior turn supplied by the client."""
    role: str = Field(..., example="user")
    content: Any = Field(default="", description="Turn text; non-string content is ignored")


class ConfirmActionRequest(CamelModel):
    """Answer to a previously returned pending action."""
    action_id: str = Field(..., min_length=1, description="Id from pendingActions")
    confirmed: bool = Field(..., description="True to execute, false to cancel")


class AssistantRequest(CamelModel):
    """Request model for one assistant turn."""
    message: str = Field(default="", max_length=MAX_MESSAGE_LENGTH, example="list open conversations")
    context: AssistantContext = Field(default=AssistantContext.GENERAL)
    conversation_history: List[ConversationTurn] = Field(default_factory=list, max_length=MAX_HISTORY_TURNS)
    confirm_action: Optional[ConfirmActionRequest] = None

    @model_validator(mode="after")
    def require_message_or_confirmation(self) -> "AssistantRequest":
        if not self.message.strip() and self.confirm_action is None:
            raise ValueError("message is required")
        return self

    def to_turn(self) -> AssistantTurn:
        return AssistantTurn(
            message=self.message.strip(),
            context=self.context,
            history=[turn.model_dump() for turn in self.conversation_history],
            confirm_action=(
                ConfirmDecision(action_id=self.confirm_action.action_id, confirmed=self.confirm_action.confirmed)
                if self.confirm_action else None
            ),
        )


# ============================================================================
# Assistant Response
# ============================================================================

class ActionExecutedResponse(CamelModel):
    """One tool call and its outcome."""
    tool: str
    call_id: Optional[str] = None
    args: Dict[str, Any] = Field(default_factory=dict)
    success: bool
    result: Optional[Any] = None
    error: Optional[str] = None
    is_destructive: bool = False
    status: str = Field(..., example="executed")
    timestamp: str


class PendingActionResponse(CamelModel):
    """Destructive call awaiting confirmAction."""
    action_id: str
    tool: str
    preview: Optional[Any] = None
    expires_at: Optional[str] = None


class AssistantResponse(CamelModel):
    """Response model for one assistant turn."""
    success: bool = True
    response: str
    context: AssistantContext
    actions_executed: List[ActionExecutedResponse] = Field(default_factory=list)
    pending_actions: List[PendingActionResponse] = Field(default_factory=list)

    @classmethod
    def from_reply(cls, reply: AssistantReply) -> "AssistantResponse":
        return cls(
            response=reply.response,
            context=reply.context,
            actions_executed=[
                ActionExecutedResponse(
                    tool=outcome.tool,
                    call_id=outcome.call_id,
                    args=outcome.arguments,
                    success=outcome.result.success,
                    result=outcome.result.data,
                    error=outcome.result.error,
                    is_destructive=outcome.is_destructive,
                    status=outcome.status,
                    timestamp=outcome.timestamp,
                )
                for outcome in reply.actions
            ],
            pending_actions=[
                PendingActionResponse(
                    action_id=outcome.result.action_id,
                    tool=outcome.tool,
                    preview=outcome.result.data,
                    expires_at=outcome.expires_at,
                )
                for outcome in reply.pending_actions
            ],
        )


class ErrorResponse(BaseModel):
    """Body of every failed request."""
    success: bool = False
    error: str
    error_id: Optional[str] = None


# ============================================================================
# Tool Catalog
# ============================================================================

class ToolCatalogEntry(CamelModel):
    name: str
    description: str
    parameters: Dict[str, Any]
    destructive: bool
    read_only: bool
    audit_action: Optional[str] = None

    @classmethod
    def from_declaration(cls, declaration: ToolDeclaration) -> "ToolCatalogEntry":
        return cls(
            name=declaration.name.value,
            description=declaration.description,
            parameters=declaration.parameters_schema,
            destructive=declaration.destructive,
            read_only=declaration.read_only,
            audit_action=declaration.audit_action,
        )


class ToolCatalogResponse(CamelModel):
    items: List[ToolCatalogEntry]
    count: int
    destructive_action_mode: str
