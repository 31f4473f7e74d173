"""Bulk deletes and data export."""

import csv
import io
from datetime import timedelta
from enum import Enum
from typing import List, Optional

import sqlalchemy as sa
from pydantic import Field, model_validator

from admin_assistant.infra.database import get_db_session
from admin_assistant.infra.schema import (
    chat_conversations,
    chat_messages,
    contact_submissions,
    email_campaigns,
    email_templates,
    row_to_dict,
)
from admin_assistant.models.tool import ToolName, ToolResult
from admin_assistant.services.tools.spec import ToolArgs, ToolSpec, utcnow

MAX_BULK_IDS = 500
MAX_EXPORT_ROWS = 1000


class ExportTable(str, Enum):
    CONTACTS = "contacts"
    CONVERSATIONS = "conversations"
    CAMPAIGNS = "campaigns"
    TEMPLATES = "templates"


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"


EXPORT_TABLES = {
    ExportTable.CONTACTS: contact_submissions,
    ExportTable.CONVERSATIONS: chat_conversations,
    ExportTable.CAMPAIGNS: email_campaigns,
    ExportTable.TEMPLATES: email_templates,
}


class BulkDeleteConversationsArgs(ToolArgs):
    conversation_ids: Optional[List[str]] = Field(default=None, max_length=MAX_BULK_IDS)
    older_than_days: Optional[int] = Field(default=None, ge=1, description="Delete conversations older than this many days")

    @model_validator(mode="after")
    def _one_selector(self):
        if bool(self.conversation_ids) == (self.older_than_days is not None):
            raise ValueError("provide exactly one of conversation_ids or older_than_days")
        return self


class BulkDeleteContactsArgs(ToolArgs):
    contact_ids: List[str] = Field(..., min_length=1, max_length=MAX_BULK_IDS)


class ExportArgs(ToolArgs):
    table: ExportTable
    format: ExportFormat = ExportFormat.JSON


def _conversation_filter(args: BulkDeleteConversationsArgs):
    if args.older_than_days is not None:
        cutoff = utcnow() - timedelta(days=args.older_than_days)
        return chat_conversations.c.created_at < cutoff
    return chat_conversations.c.id.in_(args.conversation_ids)


def bulk_conversations_action(args: BulkDeleteConversationsArgs) -> str:
    if args.older_than_days is not None:
        return "ai_bulk_delete_old_conversations"
    return "ai_bulk_delete_conversations"


def bulk_delete_conversations(args: BulkDeleteConversationsArgs, actor_id: str) -> ToolResult:
    with get_db_session() as session:
        ids = session.execute(
            sa.select(chat_conversations.c.id).where(_conversation_filter(args))
        ).scalars().all()
        deleted_messages = 0
        deleted = 0
        if ids:
            deleted_messages = session.execute(
                sa.delete(chat_messages).where(chat_messages.c.conversation_id.in_(ids))
            ).rowcount
            deleted = session.execute(
                sa.delete(chat_conversations).where(chat_conversations.c.id.in_(ids))
            ).rowcount

    data = {"deleted_count": deleted, "deleted_messages": deleted_messages}
    if args.conversation_ids:
        requested = list(dict.fromkeys(args.conversation_ids))
        found = set(ids)
        data["requested"] = len(requested)
        data["not_found"] = [i for i in requested if i not in found]
        data["message"] = f"Deleted {deleted} of {len(requested)} requested conversations"
    else:
        data["older_than_days"] = args.older_than_days
        data["message"] = f"Deleted {deleted} conversations older than {args.older_than_days} days"
    return ToolResult.ok(data)


def bulk_delete_contacts(args: BulkDeleteContactsArgs, actor_id: str) -> ToolResult:
    requested = list(dict.fromkeys(args.contact_ids))
    with get_db_session() as session:
        found = set(session.execute(
            sa.select(contact_submissions.c.id).where(contact_submissions.c.id.in_(requested))
        ).scalars().all())
        deleted = session.execute(
            sa.delete(contact_submissions).where(contact_submissions.c.id.in_(requested))
        ).rowcount

    return ToolResult.ok({
        "deleted_count": deleted,
        "requested": len(requested),
        "not_found": [i for i in requested if i not in found],
        "message": f"Deleted {deleted} of {len(requested)} requested contacts",
    })


def _to_csv(rows: List[dict]) -> str:
    if not rows:
        return ""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(rows[0].keys()))
    writer.writeheader()
    for row in rows:
        writer.writerow({k: v if not isinstance(v, (dict, list)) else str(v) for k, v in row.items()})
    return buffer.getvalue()


def export_data(args: ExportArgs, actor_id: str) -> ToolResult:
    table = EXPORT_TABLES[args.table]
    with get_db_session() as session:
        total = session.execute(sa.select(sa.func.count()).select_from(table)).scalar_one()
        rows = [
            row_to_dict(row)
            for row in session.execute(
                sa.select(table).order_by(table.c.created_at.desc()).limit(MAX_EXPORT_ROWS)
            )
        ]

    data = {
        "table": args.table.value,
        "format": args.format.value,
        "count": len(rows),
        "total": total,
        "truncated": total > len(rows),
    }
    data["data"] = _to_csv(rows) if args.format == ExportFormat.CSV else rows
    return ToolResult.ok(data)


def preview_bulk_delete_conversations(args: BulkDeleteConversationsArgs) -> dict:
    with get_db_session() as session:
        ids = session.execute(
            sa.select(chat_conversations.c.id).where(_conversation_filter(args))
        ).scalars().all()
        messages = 0
        if ids:
            messages = session.execute(
                sa.select(sa.func.count())
                .select_from(chat_messages)
                .where(chat_messages.c.conversation_id.in_(ids))
            ).scalar_one()
    preview = {"conversations_to_delete": len(ids), "messages_to_delete": messages}
    if args.conversation_ids:
        preview["requested"] = len(set(args.conversation_ids))
    else:
        preview["older_than_days"] = args.older_than_days
    return preview


def preview_bulk_delete_contacts(args: BulkDeleteContactsArgs) -> dict:
    requested = set(args.contact_ids)
    with get_db_session() as session:
        count = session.execute(
            sa.select(sa.func.count())
            .select_from(contact_submissions)
            .where(contact_submissions.c.id.in_(requested))
        ).scalar_one()
    return {"contacts_to_delete": count, "requested": len(requested)}


SPECS = [
    ToolSpec(
        name=ToolName.BULK_DELETE_CONVERSATIONS,
        description="Delete many conversations with their messages, by id list or by age in days.",
        args_model=BulkDeleteConversationsArgs,
        handler=bulk_delete_conversations,
        destructive=True,
        audit_action="ai_bulk_delete_conversations",
        audit_action_for=bulk_conversations_action,
        target_table="chat_conversations",
        preview=preview_bulk_delete_conversations,
    ),
    ToolSpec(
        name=ToolName.BULK_DELETE_CONTACTS,
        description="Delete many contact submissions by id.",
        args_model=BulkDeleteContactsArgs,
        handler=bulk_delete_contacts,
        destructive=True,
        audit_action="ai_bulk_delete_contacts",
        target_table="contact_submissions",
        preview=preview_bulk_delete_contacts,
    ),
    ToolSpec(
        name=ToolName.EXPORT_DATA,
        description="Export contacts, conversations, campaigns or templates as JSON or CSV.",
        args_model=ExportArgs,
        handler=export_data,
        read_only=True,
        audit_action="ai_export_data",
        target_table="contact_submissions",
        target_table_for=lambda args: EXPORT_TABLES[args.table].name,
    ),
]
