"""Assistant request and reply models used by the orchestrator."""

from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from .context import AssistantContext


@dataclass(frozen=True)
class ConfirmDecision:
    """Administrator's answer to a pending destructive action."""
    action_id: str
    confirmed: bool


@dataclass
class AssistantTurn:
    """One administrator request after transport decoding."""
    message: str
    context: AssistantContext = AssistantContext.GENERAL
    history: List[Dict[str, Any]] = field(default_factory=list)
    confirm_action: Optional[ConfirmDecision] = None

    def fingerprint_payload(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "context": self.context.value,
            "confirm": (
                [self.confirm_action.action_id, self.confirm_action.confirmed]
                if self.confirm_action else None
            ),
        }


@dataclass
class AssistantReply:
    """Final answer plus everything that was executed or parked."""
    response: str
    context: AssistantContext
    # ActionOutcome entries, in the order the model requested them
    actions: List[Any] = field(default_factory=list)

    @property
    def pending_actions(self) -> List[Any]:
        return [a for a in self.actions if a.result.requires_confirmation]
