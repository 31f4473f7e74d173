"""Chat and conversation tools."""

from typing import List, Optional

import sqlalchemy as sa
from pydantic import Field, model_validator

from admin_assistant.infra.database import get_db_session
from admin_assistant.infra.error_handler import ToolExecutionError
from admin_assistant.infra.schema import chat_conversations, chat_messages, row_to_dict
from admin_assistant.models.tool import ToolName, ToolResult
from admin_assistant.services.tools.spec import ToolArgs, ToolSpec, utcnow

MESSAGE_PREVIEW_CHARS = 500


class ListConversationsArgs(ToolArgs):
    status: Optional[str] = Field(default=None, description="Filter by status: active or closed")
    limit: int = Field(default=20, ge=1, le=100, description="Maximum conversations to return")


class ConversationArgs(ToolArgs):
    conversation_id: str = Field(..., min_length=1, description="Conversation id")


class DeleteChatMessagesArgs(ToolArgs):
    conversation_id: str = Field(..., min_length=1, description="Conversation the messages belong to")
    message_ids: Optional[List[str]] = Field(default=None, description="Specific message ids to delete")
    delete_all: bool = Field(default=False, description="Delete every message in the conversation")

    @model_validator(mode="after")
    def _require_selection(self):
        if not self.delete_all and not self.message_ids:
            raise ValueError("provide message_ids or set delete_all")
        return self


def _ensure_conversation(session, conversation_id: str) -> None:
    found = session.execute(
        sa.select(chat_conversations.c.id).where(chat_conversations.c.id == conversation_id)
    ).first()
    if found is None:
        raise ToolExecutionError(f"conversation not found: {conversation_id}")


def _messages_filter(args: DeleteChatMessagesArgs):
    clause = chat_messages.c.conversation_id == args.conversation_id
    if not args.delete_all:
        clause = sa.and_(clause, chat_messages.c.id.in_(args.message_ids))
    return clause


def list_conversations(args: ListConversationsArgs, actor_id: str) -> ToolResult:
    query = (
        sa.select(
            chat_conversations.c.id,
            chat_conversations.c.visitor_name,
            chat_conversations.c.visitor_email,
            chat_conversations.c.subject,
            chat_conversations.c.status,
            chat_conversations.c.current_mode,
            chat_conversations.c.created_at,
        )
        .order_by(chat_conversations.c.created_at.desc())
        .limit(args.limit)
    )
    if args.status:
        query = query.where(chat_conversations.c.status == args.status)

    with get_db_session() as session:
        conversations = [row_to_dict(row) for row in session.execute(query)]
    return ToolResult.ok({"conversations": conversations, "count": len(conversations)})


def get_conversation_messages(args: ConversationArgs, actor_id: str) -> ToolResult:
    with get_db_session() as session:
        _ensure_conversation(session, args.conversation_id)
        rows = session.execute(
            sa.select(
                chat_messages.c.id,
                chat_messages.c.role,
                chat_messages.c.content,
                chat_messages.c.is_ai_response,
                chat_messages.c.created_at,
            )
            .where(chat_messages.c.conversation_id == args.conversation_id)
            .order_by(chat_messages.c.created_at.asc())
        ).all()

    messages = []
    for row in rows:
        message = row_to_dict(row)
        message["content"] = (message["content"] or "")[:MESSAGE_PREVIEW_CHARS]
        messages.append(message)
    return ToolResult.ok(
        {"conversation_id": args.conversation_id, "messages": messages, "count": len(messages)},
        target_id=args.conversation_id,
    )


def close_conversation(args: ConversationArgs, actor_id: str) -> ToolResult:
    with get_db_session() as session:
        result = session.execute(
            sa.update(chat_conversations)
            .where(chat_conversations.c.id == args.conversation_id)
            .values(status="closed", closed_at=utcnow())
        )
        if result.rowcount == 0:
            raise ToolExecutionError(f"conversation not found: {args.conversation_id}")
    return ToolResult.ok(
        {"message": f"Conversation {args.conversation_id} closed"},
        target_id=args.conversation_id,
    )


def delete_chat_messages(args: DeleteChatMessagesArgs, actor_id: str) -> ToolResult:
    with get_db_session() as session:
        _ensure_conversation(session, args.conversation_id)
        result = session.execute(sa.delete(chat_messages).where(_messages_filter(args)))
        deleted = result.rowcount

    data = {"deleted_count": deleted}
    if args.message_ids and not args.delete_all:
        data["requested"] = len(args.message_ids)
    data["message"] = (
        f"Deleted {deleted} of {len(args.message_ids)} requested messages"
        if "requested" in data
        else f"Deleted {deleted} messages"
    )
    return ToolResult.ok(data, target_id=args.conversation_id)


def delete_conversation(args: ConversationArgs, actor_id: str) -> ToolResult:
    with get_db_session() as session:
        messages = session.execute(
            sa.delete(chat_messages).where(chat_messages.c.conversation_id == args.conversation_id)
        )
        result = session.execute(
            sa.delete(chat_conversations).where(chat_conversations.c.id == args.conversation_id)
        )
        if result.rowcount == 0:
            # Rolls back the message delete along with it
            raise ToolExecutionError(f"conversation not found: {args.conversation_id}")
        deleted_messages = messages.rowcount

    return ToolResult.ok(
        {
            "message": f"Conversation {args.conversation_id} deleted",
            "deleted_messages": deleted_messages,
        },
        target_id=args.conversation_id,
    )


def preview_delete_chat_messages(args: DeleteChatMessagesArgs) -> dict:
    with get_db_session() as session:
        _ensure_conversation(session, args.conversation_id)
        count = session.execute(
            sa.select(sa.func.count()).select_from(chat_messages).where(_messages_filter(args))
        ).scalar_one()
    return {
        "conversation_id": args.conversation_id,
        "messages_to_delete": count,
        "delete_all": args.delete_all,
    }


def preview_delete_conversation(args: ConversationArgs) -> dict:
    with get_db_session() as session:
        row = session.execute(
            sa.select(chat_conversations.c.visitor_name, chat_conversations.c.status)
            .where(chat_conversations.c.id == args.conversation_id)
        ).first()
        if row is None:
            raise ToolExecutionError(f"conversation not found: {args.conversation_id}")
        count = session.execute(
            sa.select(sa.func.count())
            .select_from(chat_messages)
            .where(chat_messages.c.conversation_id == args.conversation_id)
        ).scalar_one()
    return {
        "conversation_id": args.conversation_id,
        "visitor_name": row.visitor_name,
        "status": row.status,
        "messages_to_delete": count,
    }


SPECS = [
    ToolSpec(
        name=ToolName.LIST_CONVERSATIONS,
        description="List chat conversations, newest first.",
        args_model=ListConversationsArgs,
        handler=list_conversations,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.GET_CONVERSATION_MESSAGES,
        description="Read the messages of one conversation.",
        args_model=ConversationArgs,
        handler=get_conversation_messages,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.CLOSE_CONVERSATION,
        description="Mark a conversation as closed.",
        args_model=ConversationArgs,
        handler=close_conversation,
        audit_action="ai_close_conversation",
        target_table="chat_conversations",
        target_arg="conversation_id",
    ),
    ToolSpec(
        name=ToolName.DELETE_CHAT_MESSAGES,
        description="Delete specific messages from a conversation, or all of them with delete_all.",
        args_model=DeleteChatMessagesArgs,
        handler=delete_chat_messages,
        destructive=True,
        audit_action="ai_delete_messages",
        target_table="chat_messages",
        target_arg="conversation_id",
        preview=preview_delete_chat_messages,
    ),
    ToolSpec(
        name=ToolName.DELETE_CONVERSATION,
        description="Permanently delete a conversation and all of its messages.",
        args_model=ConversationArgs,
        handler=delete_conversation,
        destructive=True,
        audit_action="ai_delete_conversation",
        target_table="chat_conversations",
        target_arg="conversation_id",
        preview=preview_delete_conversation,
    ),
]
