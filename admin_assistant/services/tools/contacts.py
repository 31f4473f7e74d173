"""Contact submission tools."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from pydantic import EmailStr, Field, model_validator

from admin_assistant.infra.database import get_db_session
from admin_assistant.infra.error_handler import ToolExecutionError
from admin_assistant.infra.schema import contact_submissions, new_id, row_to_dict
from admin_assistant.models.tool import ToolName, ToolResult
from admin_assistant.services.tools.spec import ToolArgs, ToolSpec, to_naive_utc, utcnow


class ListContactsArgs(ToolArgs):
    user_type: Optional[str] = Field(default=None, description="Filter by user type")
    source: Optional[str] = Field(default=None, description="Filter by source, e.g. website or manual")
    unread_only: bool = Field(default=False, description="Only contacts not yet read")
    limit: int = Field(default=20, ge=1, le=100)


class CreateContactArgs(ToolArgs):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    message: str = Field(..., min_length=1)
    phone: Optional[str] = Field(default=None, max_length=64)
    user_type: Optional[str] = Field(default=None, description="e.g. lead, customer, partner")
    source: str = Field(default="manual")


class UpdateContactStatusArgs(ToolArgs):
    contact_id: str = Field(..., min_length=1)
    read_at: Optional[datetime] = Field(default=None, description="When the contact was read; ISO 8601")
    replied_at: Optional[datetime] = Field(default=None, description="When the contact was replied to; ISO 8601")
    mark_read: bool = Field(default=False, description="Set read_at to now")
    mark_replied: bool = Field(default=False, description="Set replied_at to now")

    @model_validator(mode="after")
    def _require_change(self):
        if not (self.read_at or self.replied_at or self.mark_read or self.mark_replied):
            raise ValueError("nothing to update")
        return self


class ContactArgs(ToolArgs):
    contact_id: str = Field(..., min_length=1)


def list_contacts(args: ListContactsArgs, actor_id: str) -> ToolResult:
    query = (
        sa.select(
            contact_submissions.c.id,
            contact_submissions.c.name,
            contact_submissions.c.email,
            contact_submissions.c.user_type,
            contact_submissions.c.source,
            contact_submissions.c.read_at,
            contact_submissions.c.replied_at,
            contact_submissions.c.created_at,
        )
        .order_by(contact_submissions.c.created_at.desc())
        .limit(args.limit)
    )
    if args.user_type:
        query = query.where(contact_submissions.c.user_type == args.user_type)
    if args.source:
        query = query.where(contact_submissions.c.source == args.source)
    if args.unread_only:
        query = query.where(contact_submissions.c.read_at.is_(None))

    with get_db_session() as session:
        contacts = [row_to_dict(row) for row in session.execute(query)]
    return ToolResult.ok({"contacts": contacts, "count": len(contacts)})


def create_contact(args: CreateContactArgs, actor_id: str) -> ToolResult:
    contact_id = new_id()
    with get_db_session() as session:
        session.execute(
            sa.insert(contact_submissions).values(
                id=contact_id,
                name=args.name,
                email=args.email,
                phone=args.phone,
                message=args.message,
                user_type=args.user_type,
                source=args.source,
                created_at=utcnow(),
            )
        )
    return ToolResult.ok({"contact_id": contact_id, "message": f"Contact {args.name} created"}, target_id=contact_id)


def update_contact_status(args: UpdateContactStatusArgs, actor_id: str) -> ToolResult:
    now = utcnow()
    values = {}
    if args.read_at or args.mark_read:
        values["read_at"] = to_naive_utc(args.read_at) if args.read_at else now
    if args.replied_at or args.mark_replied:
        values["replied_at"] = to_naive_utc(args.replied_at) if args.replied_at else now

    with get_db_session() as session:
        result = session.execute(
            sa.update(contact_submissions)
            .where(contact_submissions.c.id == args.contact_id)
            .values(**values)
        )
        if result.rowcount == 0:
            raise ToolExecutionError(f"contact not found: {args.contact_id}")
    return ToolResult.ok(
        {"contact_id": args.contact_id, "updated": sorted(values)},
        target_id=args.contact_id,
    )


def delete_contact(args: ContactArgs, actor_id: str) -> ToolResult:
    with get_db_session() as session:
        result = session.execute(
            sa.delete(contact_submissions).where(contact_submissions.c.id == args.contact_id)
        )
        if result.rowcount == 0:
            raise ToolExecutionError(f"contact not found: {args.contact_id}")
    return ToolResult.ok({"message": f"Contact {args.contact_id} deleted"}, target_id=args.contact_id)


def preview_delete_contact(args: ContactArgs) -> dict:
    with get_db_session() as session:
        row = session.execute(
            sa.select(contact_submissions.c.name, contact_submissions.c.email)
            .where(contact_submissions.c.id == args.contact_id)
        ).first()
    if row is None:
        raise ToolExecutionError(f"contact not found: {args.contact_id}")
    return {"contact_id": args.contact_id, "name": row.name, "email": row.email}


SPECS = [
    ToolSpec(
        name=ToolName.LIST_CONTACTS,
        description="List contact form submissions, newest first.",
        args_model=ListContactsArgs,
        handler=list_contacts,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.CREATE_CONTACT,
        description="Create a contact record manually.",
        args_model=CreateContactArgs,
        handler=create_contact,
        audit_action="ai_create_contact",
        target_table="contact_submissions",
    ),
    ToolSpec(
        name=ToolName.UPDATE_CONTACT_STATUS,
        description="Mark a contact as read and/or replied.",
        args_model=UpdateContactStatusArgs,
        handler=update_contact_status,
        audit_action="ai_update_contact",
        target_table="contact_submissions",
        target_arg="contact_id",
    ),
    ToolSpec(
        name=ToolName.DELETE_CONTACT,
        description="Permanently delete a contact submission.",
        args_model=ContactArgs,
        handler=delete_contact,
        destructive=True,
        audit_action="ai_delete_contact",
        target_table="contact_submissions",
        target_arg="contact_id",
        preview=preview_delete_contact,
    ),
]
