"""Audit and confirmation records."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional


@dataclass(frozen=True)
class ActionRecord:
    """One append-only audit entry for an executed side-effecting tool."""
    actor_id: str
    action: str  # e.g. "ai_delete_conversation"
    target_table: Optional[str]
    target_id: Optional[str]
    details: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=datetime.utcnow)


class PendingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


@dataclass
class PendingAction:
    """A destructive tool call parked until the administrator confirms it."""
    id: str
    actor_id: str
    tool_name: str
    arguments: Dict[str, Any]
    preview: Dict[str, Any]
    status: PendingStatus
    created_at: datetime
    expires_at: datetime
    resolved_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at
