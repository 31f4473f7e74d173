"""Prompt builder: system prompt from live business context, plus bounded history."""

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

import tiktoken

from admin_assistant.infra.config import config
from admin_assistant.models.context import AssistantContext, BusinessContextSnapshot
from admin_assistant.models.tool import ToolDeclaration

logger = logging.getLogger(__name__)

RECENT_IN_PROMPT = 5
ALLOWED_HISTORY_ROLES = ("user", "assistant")

CONTEXT_FOCUS = {
    AssistantContext.EMAIL_CAMPAIGN: (
        "The administrator is in the email campaign panel. Focus on templates, "
        "campaigns, recipients and delivery results."
    ),
    AssistantContext.CHAT_SUPPORT: (
        "The administrator is in the chat support panel. Focus on conversations, "
        "the chat AI modes, learned patterns and visitor feedback."
    ),
    AssistantContext.GENERAL: (
        "The administrator is in the main dashboard. Help with any area of the business."
    ),
}

RULES = """RULES:
1. Always answer in {language}.
2. When the administrator asks for something a tool can do, call the tool instead of describing how to do it.
3. Never guess record ids. Use the ids listed below or call a list tool first.
4. Tools marked [DESTRUCTIVE] permanently remove data. Call them only when explicitly asked; the system may hold them for the administrator's confirmation, in which case say so and summarize what would be affected.
5. After tools run, report exactly what happened, including failures and counts.
6. Never ask for tokens or passwords in the chat. Use request_secret_configuration instead."""


@lru_cache(maxsize=1)
def _get_encoding():
    try:
        return tiktoken.get_encoding("cl100k_base")
    except Exception as e:
        logger.warning(f"Tokenizer unavailable, falling back to turn limit: {e}")
        return None


def render_capabilities(tools: List[ToolDeclaration]) -> str:
    lines = []
    for tool in tools:
        marker = " [DESTRUCTIVE]" if tool.destructive else ""
        lines.append(f"- {tool.name.value}{marker}: {tool.description}")
    return "\n".join(lines)


def render_snapshot(snapshot: BusinessContextSnapshot) -> str:
    def value(v: Any) -> str:
        return "unavailable" if v is None else str(v)

    lines = [
        "CURRENT CONTEXT:",
        f"- Contacts: {value(snapshot.total_contacts)} | Conversations: {value(snapshot.total_chats)}"
        f" | Campaigns: {value(snapshot.total_campaigns)}",
        f"- Active templates: {len(snapshot.email_templates)}",
        f"- Active AI modes: {', '.join(snapshot.active_ai_modes) or 'none'}",
        f"- Average rating: {value(snapshot.avg_rating)}/5 | Unresolved feedback: {value(snapshot.unresolved_feedback)}",
    ]
    if snapshot.failures:
        lines.append(f"- Not loaded (query failed): {', '.join(snapshot.failures)}")

    if snapshot.recent_contacts:
        lines.append("\nRECENT CONTACTS:")
        for contact in snapshot.recent_contacts[:RECENT_IN_PROMPT]:
            lines.append(f"- {contact.get('name')} ({contact.get('email')}) id={contact.get('id')}")

    if snapshot.recent_chats:
        lines.append("\nRECENT CONVERSATIONS:")
        for chat in snapshot.recent_chats[:RECENT_IN_PROMPT]:
            lines.append(
                f"- {chat.get('visitor_name') or 'Visitor'} [{chat.get('status')}] id={chat.get('id')}"
            )

    if snapshot.email_templates:
        lines.append("\nACTIVE TEMPLATES:")
        for template in snapshot.email_templates[:RECENT_IN_PROMPT]:
            lines.append(f"- {template.get('name')} id={template.get('id')}")
    return "\n".join(lines)


def build_system_prompt(
    context: AssistantContext,
    snapshot: BusinessContextSnapshot,
    tools: List[ToolDeclaration],
    language: Optional[str] = None,
) -> str:
    """
    Build the system prompt for one request.

    Args:
        context: Panel the administrator is working from
        snapshot: Live business context
        tools: Tool declarations offered to the model
        language: Response language (defaults to ASSISTANT_LANGUAGE)

    Returns:
        System prompt text
    """
    return "\n\n".join([
        "You are the administrative assistant of this business. You execute real "
        "operations on the administrator's behalf through the tools below.",
        CONTEXT_FOCUS[context],
        "CAPABILITIES:\n" + render_capabilities(tools),
        render_snapshot(snapshot),
        RULES.format(language=language or config.ASSISTANT_LANGUAGE),
    ])


def select_history(
    history: Optional[List[Dict[str, Any]]],
    max_turns: Optional[int] = None,
    max_tokens: Optional[int] = None,
) -> List[Dict[str, str]]:
    """
    Keep the most recent user/assistant turns within the turn and token budgets.

    Client-supplied turns with any other role (system, tool) are dropped.
    """
    max_turns = config.HISTORY_MAX_TURNS if max_turns is None else max_turns
    max_tokens = config.HISTORY_MAX_TOKENS if max_tokens is None else max_tokens

    turns = [
        {"role": turn["role"], "content": turn["content"]}
        for turn in history or []
        if isinstance(turn, dict)
        and turn.get("role") in ALLOWED_HISTORY_ROLES
        and isinstance(turn.get("content"), str)
        and turn["content"].strip()
    ][-max_turns:] if max_turns > 0 else []

    encoding = _get_encoding()
    if encoding is None:
        return turns

    selected: List[Dict[str, str]] = []
    total_tokens = 0
    # Start from most recent and work backwards
    for turn in reversed(turns):
        turn_tokens = len(encoding.encode(turn["content"]))
        if total_tokens + turn_tokens > max_tokens:
            break
        selected.insert(0, turn)
        total_tokens += turn_tokens
    return selected


def build_messages(
    context: AssistantContext,
    snapshot: BusinessContextSnapshot,
    tools: List[ToolDeclaration],
    history: Optional[List[Dict[str, Any]]],
    user_message: str,
) -> List[Dict[str, Any]]:
    """System prompt, bounded history, then the current user message."""
    messages: List[Dict[str, Any]] = [
        {"role": "system", "content": build_system_prompt(context, snapshot, tools)}
    ]
    messages.extend(select_history(history))
    messages.append({"role": "user", "content": user_message})
    return messages
