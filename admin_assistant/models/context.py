"""Per-request business context and assistant focus."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Any, Optional


class AssistantContext(str, Enum):
    """Panel the administrator is working from."""
    EMAIL_CAMPAIGN = "email_campaign"
    CHAT_SUPPORT = "chat_support"
    GENERAL = "general"


@dataclass
class BusinessContextSnapshot:
    """Read-only aggregate of live business state, built per request and never persisted."""
    total_contacts: Optional[int] = None
    recent_contacts: List[Dict[str, Any]] = field(default_factory=list)
    email_templates: List[Dict[str, Any]] = field(default_factory=list)
    total_campaigns: Optional[int] = None
    recent_campaigns: List[Dict[str, Any]] = field(default_factory=list)
    total_chats: Optional[int] = None
    recent_chats: List[Dict[str, Any]] = field(default_factory=list)
    ai_modes: List[Dict[str, Any]] = field(default_factory=list)
    total_feedback: Optional[int] = None
    avg_rating: Optional[float] = None
    unresolved_feedback: Optional[int] = None
    top_patterns: List[Dict[str, Any]] = field(default_factory=list)
    # Domains whose query failed or timed out; their fields keep defaults
    failures: List[str] = field(default_factory=list)

    @property
    def active_ai_modes(self) -> List[str]:
        return [m["mode"] for m in self.ai_modes if m.get("is_enabled")]
