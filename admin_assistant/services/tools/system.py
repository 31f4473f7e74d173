"""System, audit and configuration tools."""

from typing import Optional

import sqlalchemy as sa
from pydantic import Field, model_validator

from admin_assistant.infra.database import get_db_session
from admin_assistant.infra.error_handler import ToolExecutionError
from admin_assistant.infra.schema import (
    admin_emails,
    ai_feedback,
    automation_rules,
    chat_conversations,
    contact_submissions,
    email_campaigns,
    email_templates,
    esp_configurations,
    row_to_dict,
    social_posts,
    user_roles,
)
from admin_assistant.logging.audit_logger import list_actions
from admin_assistant.models.tool import ToolName, ToolResult
from admin_assistant.services.tools.spec import ToolArgs, ToolSpec, utcnow


class AuditLogsArgs(ToolArgs):
    action_type: Optional[str] = Field(default=None, description="Substring of the action name, e.g. delete")
    admin_id: Optional[str] = None
    limit: int = Field(default=50, ge=1, le=200)


class NoArgs(ToolArgs):
    pass


class UpdateEspArgs(ToolArgs):
    esp_id: str = Field(..., min_length=1)
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None

    @model_validator(mode="after")
    def _require_change(self):
        if self.is_active is None and self.is_default is None:
            raise ValueError("nothing to update")
        return self


def _count(session, table, *where) -> int:
    query = sa.select(sa.func.count()).select_from(table)
    for clause in where:
        query = query.where(clause)
    return session.execute(query).scalar_one()


def get_audit_logs(args: AuditLogsArgs, actor_id: str) -> ToolResult:
    logs = list_actions(action_filter=args.action_type, actor_id=args.admin_id, limit=args.limit)
    return ToolResult.ok({"logs": logs, "count": len(logs)})


def get_system_stats(args: NoArgs, actor_id: str) -> ToolResult:
    with get_db_session() as session:
        stats = {
            "contacts": {
                "total": _count(session, contact_submissions),
                "unread": _count(session, contact_submissions, contact_submissions.c.read_at.is_(None)),
            },
            "conversations": {
                "total": _count(session, chat_conversations),
                "active": _count(session, chat_conversations, chat_conversations.c.status == "active"),
            },
            "email": {
                "templates": _count(session, email_templates),
                "campaigns": _count(session, email_campaigns),
                "campaigns_sent": _count(session, email_campaigns, email_campaigns.c.status == "sent"),
            },
            "feedback": {
                "total": _count(session, ai_feedback),
                "unresolved": _count(session, ai_feedback, ai_feedback.c.resolved.is_(False)),
            },
            "automation_rules": {
                "total": _count(session, automation_rules),
                "active": _count(session, automation_rules, automation_rules.c.is_active.is_(True)),
            },
            "social_posts": {
                "scheduled": _count(session, social_posts, social_posts.c.status == "scheduled"),
            },
        }
    return ToolResult.ok(stats)


def list_esp_configurations(args: NoArgs, actor_id: str) -> ToolResult:
    with get_db_session() as session:
        rows = session.execute(
            sa.select(
                esp_configurations.c.id,
                esp_configurations.c.name,
                esp_configurations.c.provider,
                esp_configurations.c.is_active,
                esp_configurations.c.is_default,
            ).order_by(esp_configurations.c.name)
        ).all()
    configurations = [row_to_dict(row) for row in rows]
    return ToolResult.ok({"configurations": configurations, "count": len(configurations)})


def update_esp_configuration(args: UpdateEspArgs, actor_id: str) -> ToolResult:
    values = {"updated_at": utcnow()}
    if args.is_active is not None:
        values["is_active"] = args.is_active
    if args.is_default is not None:
        values["is_default"] = args.is_default

    with get_db_session() as session:
        if args.is_default:
            # Only one default provider
            session.execute(
                sa.update(esp_configurations)
                .where(esp_configurations.c.id != args.esp_id)
                .values(is_default=False)
            )
        result = session.execute(
            sa.update(esp_configurations).where(esp_configurations.c.id == args.esp_id).values(**values)
        )
        if result.rowcount == 0:
            raise ToolExecutionError(f"esp configuration not found: {args.esp_id}")

    changed = {k: v for k, v in values.items() if k != "updated_at"}
    return ToolResult.ok({"esp_id": args.esp_id, **changed}, target_id=args.esp_id)


def get_admin_users(args: NoArgs, actor_id: str) -> ToolResult:
    with get_db_session() as session:
        admin_ids = session.execute(
            sa.select(user_roles.c.user_id).where(user_roles.c.role == "admin")
        ).scalars().all()
        emails = session.execute(
            sa.select(admin_emails.c.name, admin_emails.c.email)
            .where(admin_emails.c.is_active.is_(True))
            .order_by(admin_emails.c.name)
        ).all()
    return ToolResult.ok({
        "admin_user_ids": list(admin_ids),
        "notification_emails": [row_to_dict(row) for row in emails],
        "count": len(admin_ids),
    })


SPECS = [
    ToolSpec(
        name=ToolName.GET_AUDIT_LOGS,
        description="Read recent administrator audit log entries.",
        args_model=AuditLogsArgs,
        handler=get_audit_logs,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.GET_SYSTEM_STATS,
        description="Totals across contacts, conversations, email, feedback, automation and social posts.",
        args_model=NoArgs,
        handler=get_system_stats,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.LIST_ESP_CONFIGURATIONS,
        description="List email service provider configurations (no credentials).",
        args_model=NoArgs,
        handler=list_esp_configurations,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.UPDATE_ESP_CONFIGURATION,
        description="Activate, deactivate or set the default email service provider.",
        args_model=UpdateEspArgs,
        handler=update_esp_configuration,
        audit_action="ai_update_esp",
        target_table="esp_configurations",
        target_arg="esp_id",
    ),
    ToolSpec(
        name=ToolName.GET_ADMIN_USERS,
        description="List administrator accounts and admin notification emails.",
        args_model=NoArgs,
        handler=get_admin_users,
        read_only=True,
    ),
]
