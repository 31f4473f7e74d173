"""Automation rule tools."""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional

import sqlalchemy as sa
from pydantic import Field, model_validator

from admin_assistant.adapters import email_client, webhook_client
from admin_assistant.infra.database import get_db_session
from admin_assistant.infra.error_handler import ToolExecutionError
from admin_assistant.infra.schema import automation_logs, automation_rules, email_templates, new_id, row_to_dict
from admin_assistant.models.tool import ToolName, ToolResult
from admin_assistant.services.tools.spec import ToolArgs, ToolSpec, utcnow

logger = logging.getLogger(__name__)


class TriggerType(str, Enum):
    VIP_LEAD = "vip_lead"
    NEW_CONVERSATION = "new_conversation"
    ABANDONED_FORM = "abandoned_form"
    LOW_RATING = "low_rating"
    INACTIVITY = "inactivity"
    KEYWORD = "keyword"


class ActionType(str, Enum):
    SEND_EMAIL = "send_email"
    ASSIGN_ADMIN = "assign_admin"
    NOTIFY_ADMIN = "notify_admin"
    CREATE_TASK = "create_task"
    WEBHOOK = "webhook"


class CreateRuleArgs(ToolArgs):
    name: str = Field(..., min_length=1, max_length=255)
    trigger_type: TriggerType
    action_type: ActionType
    description: Optional[str] = None
    trigger_config: Dict[str, Any] = Field(default_factory=dict, description="e.g. {\"keywords\": [...]} or {\"max_rating\": 2}")
    action_config: Dict[str, Any] = Field(
        default_factory=dict,
        description="e.g. {\"template_id\": ...} for send_email, {\"webhook_url\", \"webhook_type\": slack|discord|custom, \"webhook_message\"} for webhook",
    )
    priority: int = Field(default=1, ge=1, le=10)


class ListRulesArgs(ToolArgs):
    active_only: bool = False


class UpdateRuleArgs(ToolArgs):
    rule_id: str = Field(..., min_length=1)
    name: Optional[str] = Field(default=None, max_length=255)
    is_active: Optional[bool] = None
    trigger_config: Optional[Dict[str, Any]] = None
    action_config: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def _require_change(self):
        if not self.changes():
            raise ValueError("nothing to update")
        return self

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"rule_id"}, exclude_none=True)


class RuleArgs(ToolArgs):
    rule_id: str = Field(..., min_length=1)


class AutomationLogsArgs(ToolArgs):
    rule_id: Optional[str] = None
    status: Optional[str] = Field(default=None, description="success or failed")
    limit: int = Field(default=50, ge=1, le=200)


class ExecuteRuleArgs(ToolArgs):
    rule_id: str = Field(..., min_length=1)
    test_data: Dict[str, Any] = Field(default_factory=dict, description="Sample trigger data: name, email, phone")


def create_automation_rule(args: CreateRuleArgs, actor_id: str) -> ToolResult:
    rule_id = new_id()
    now = utcnow()
    with get_db_session() as session:
        session.execute(
            sa.insert(automation_rules).values(
                id=rule_id,
                name=args.name,
                description=args.description,
                trigger_type=args.trigger_type.value,
                trigger_config=args.trigger_config,
                action_type=args.action_type.value,
                action_config=args.action_config,
                priority=args.priority,
                is_active=True,
                execution_count=0,
                created_by=actor_id,
                created_at=now,
                updated_at=now,
            )
        )
    return ToolResult.ok(
        {
            "rule_id": rule_id,
            "name": args.name,
            "trigger_type": args.trigger_type.value,
            "action_type": args.action_type.value,
        },
        target_id=rule_id,
    )


def list_automation_rules(args: ListRulesArgs, actor_id: str) -> ToolResult:
    query = sa.select(
        automation_rules.c.id,
        automation_rules.c.name,
        automation_rules.c.description,
        automation_rules.c.trigger_type,
        automation_rules.c.action_type,
        automation_rules.c.is_active,
        automation_rules.c.priority,
        automation_rules.c.execution_count,
        automation_rules.c.last_executed_at,
    ).order_by(automation_rules.c.priority.desc())
    if args.active_only:
        query = query.where(automation_rules.c.is_active.is_(True))

    with get_db_session() as session:
        rules = [row_to_dict(row) for row in session.execute(query)]
    return ToolResult.ok({"rules": rules, "count": len(rules)})


def update_automation_rule(args: UpdateRuleArgs, actor_id: str) -> ToolResult:
    changes = args.changes()
    with get_db_session() as session:
        result = session.execute(
            sa.update(automation_rules)
            .where(automation_rules.c.id == args.rule_id)
            .values(updated_at=utcnow(), **changes)
        )
        if result.rowcount == 0:
            raise ToolExecutionError(f"automation rule not found: {args.rule_id}")
    return ToolResult.ok({"rule_id": args.rule_id, "updated": sorted(changes)}, target_id=args.rule_id)


def delete_automation_rule(args: RuleArgs, actor_id: str) -> ToolResult:
    with get_db_session() as session:
        result = session.execute(sa.delete(automation_rules).where(automation_rules.c.id == args.rule_id))
        if result.rowcount == 0:
            raise ToolExecutionError(f"automation rule not found: {args.rule_id}")
    return ToolResult.ok({"message": f"Automation rule {args.rule_id} deleted"}, target_id=args.rule_id)


def get_automation_logs(args: AutomationLogsArgs, actor_id: str) -> ToolResult:
    query = (
        sa.select(automation_logs)
        .order_by(automation_logs.c.executed_at.desc())
        .limit(args.limit)
    )
    if args.rule_id:
        query = query.where(automation_logs.c.rule_id == args.rule_id)
    if args.status:
        query = query.where(automation_logs.c.status == args.status)

    with get_db_session() as session:
        logs = [row_to_dict(row) for row in session.execute(query)]
    return ToolResult.ok({"logs": logs, "count": len(logs)})


def _load_rule(rule_id: str):
    with get_db_session() as session:
        return session.execute(
            sa.select(automation_rules).where(automation_rules.c.id == rule_id)
        ).first()


def _load_template(template_id: str):
    with get_db_session() as session:
        return session.execute(
            sa.select(email_templates.c.name, email_templates.c.subject, email_templates.c.html_content)
            .where(email_templates.c.id == template_id)
        ).first()


def _record_run(rule, test_data: Dict[str, Any], action_result: Dict[str, Any], status: str, error: Optional[str]) -> None:
    """Append the run to automation_logs and bump the rule's counters in one transaction."""
    now = utcnow()
    with get_db_session() as session:
        session.execute(
            sa.insert(automation_logs).values(
                id=new_id(),
                rule_id=rule.id,
                trigger_data=test_data,
                action_result=action_result,
                status=status,
                error_message=error,
                executed_at=now,
            )
        )
        session.execute(
            sa.update(automation_rules)
            .where(automation_rules.c.id == rule.id)
            .values(
                execution_count=(rule.execution_count or 0) + 1,
                last_executed_at=now,
            )
        )


async def _run_action(rule, test_data: Dict[str, Any]) -> Dict[str, Any]:
    """Perform the rule's action once. Raises ToolExecutionError when the action itself fails."""
    action_config = rule.action_config or {}

    if rule.action_type == ActionType.SEND_EMAIL.value:
        template_id = action_config.get("template_id")
        recipient = test_data.get("email")
        if not template_id or not recipient:
            return {"simulated": True, "reason": "template_id and test_data.email are required to send"}
        template = await asyncio.to_thread(_load_template, template_id)
        if template is None:
            raise ToolExecutionError(f"template not found: {template_id}")
        await email_client.send_email([recipient], template.subject, template.html_content)
        return {"email_sent": recipient, "template": template.name}

    if rule.action_type == ActionType.NOTIFY_ADMIN.value:
        return {"notification": "admin notified (simulated)", "data": test_data}

    if rule.action_type == ActionType.WEBHOOK.value:
        url = action_config.get("webhook_url")
        if not url:
            return {"webhook_sent": False, "error": "webhook url not configured"}
        return await webhook_client.post_webhook(
            url,
            webhook_type=action_config.get("webhook_type") or "custom",
            message_template=action_config.get("webhook_message"),
            data=test_data,
        )

    return {"simulated": True}


async def execute_automation_rule(args: ExecuteRuleArgs, actor_id: str) -> ToolResult:
    """
    Run a rule's action once with sample data.

    Every run appends an automation_logs row and bumps the rule's execution
    counters, whether or not the action succeeded.
    """
    rule = await asyncio.to_thread(_load_rule, args.rule_id)
    if rule is None:
        raise ToolExecutionError(f"automation rule not found: {args.rule_id}")

    error = None
    try:
        action_result = await _run_action(rule, args.test_data)
    except ToolExecutionError as e:
        error = e.message
        action_result = {"error": e.message}

    if error is None and action_result.get("webhook_sent") is False:
        error = action_result.get("error") or "webhook delivery failed"
    status = "failed" if error else "success"

    await asyncio.to_thread(_record_run, rule, args.test_data, action_result, status, error)

    data = {"executed_rule": rule.name, "action_type": rule.action_type, "action_result": action_result}
    if error:
        logger.warning(f"Automation rule run failed: {error}", extra={"rule_id": args.rule_id})
        return ToolResult.fail(error, data=data, target_id=args.rule_id)
    return ToolResult.ok(data, target_id=args.rule_id)


def preview_delete_rule(args: RuleArgs) -> dict:
    with get_db_session() as session:
        row = session.execute(
            sa.select(automation_rules.c.name, automation_rules.c.is_active, automation_rules.c.execution_count)
            .where(automation_rules.c.id == args.rule_id)
        ).first()
    if row is None:
        raise ToolExecutionError(f"automation rule not found: {args.rule_id}")
    return {
        "rule_id": args.rule_id,
        "name": row.name,
        "is_active": row.is_active,
        "execution_count": row.execution_count,
    }


SPECS = [
    ToolSpec(
        name=ToolName.CREATE_AUTOMATION_RULE,
        description="Create an automation rule that runs an action when a trigger fires.",
        args_model=CreateRuleArgs,
        handler=create_automation_rule,
        audit_action="ai_create_automation",
        target_table="automation_rules",
    ),
    ToolSpec(
        name=ToolName.LIST_AUTOMATION_RULES,
        description="List automation rules by priority.",
        args_model=ListRulesArgs,
        handler=list_automation_rules,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.UPDATE_AUTOMATION_RULE,
        description="Rename, (de)activate or reconfigure an automation rule.",
        args_model=UpdateRuleArgs,
        handler=update_automation_rule,
        audit_action="ai_update_automation",
        target_table="automation_rules",
        target_arg="rule_id",
    ),
    ToolSpec(
        name=ToolName.DELETE_AUTOMATION_RULE,
        description="Permanently delete an automation rule.",
        args_model=RuleArgs,
        handler=delete_automation_rule,
        destructive=True,
        audit_action="ai_delete_automation",
        target_table="automation_rules",
        target_arg="rule_id",
        preview=preview_delete_rule,
    ),
    ToolSpec(
        name=ToolName.GET_AUTOMATION_LOGS,
        description="Read automation execution logs.",
        args_model=AutomationLogsArgs,
        handler=get_automation_logs,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.EXECUTE_AUTOMATION_RULE,
        description="Run an automation rule's action once with sample data (send_email, notify_admin or webhook).",
        args_model=ExecuteRuleArgs,
        handler=execute_automation_rule,
        audit_action="ai_execute_automation",
        target_table="automation_rules",
        target_arg="rule_id",
    ),
]
