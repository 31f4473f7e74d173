"""Audit trail for actions executed on behalf of an administrator."""

import asyncio
import json
import logging
from typing import Optional, Dict, Any, List

import sqlalchemy as sa

from admin_assistant.infra.database import get_db_session
from admin_assistant.infra.metrics import audit_write_failures_total
from admin_assistant.infra.schema import admin_audit_log, new_id, row_to_dict
from admin_assistant.models.action import ActionRecord

logger = logging.getLogger(__name__)


def _json_safe(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return json.loads(json.dumps(details or {}, default=str))


def _insert(record: ActionRecord) -> None:
    with get_db_session() as session:
        session.execute(
            sa.insert(admin_audit_log).values(
                id=new_id(),
                admin_id=record.actor_id,
                action=record.action,
                target_table=record.target_table,
                target_id=record.target_id,
                details=record.details,
                created_at=record.occurred_at,
            )
        )


async def record_action(
    actor_id: str,
    action: str,
    target_table: Optional[str] = None,
    target_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Append one entry to admin_audit_log.

    Best-effort: a failed insert is logged and counted but never raised, so the
    caller's outcome is unaffected. Entries are never updated or deleted here.

    Args:
        actor_id: Administrator the action ran for
        action: Action name, e.g. "ai_delete_conversation"
        target_table: Table the action touched
        target_id: Primary record affected, if any
        details: Arguments and outcome summary

    Returns:
        True if the entry was written
    """
    target_id = str(target_id) if target_id is not None else None
    try:
        record = ActionRecord(
            actor_id=actor_id,
            action=action,
            target_table=target_table,
            target_id=target_id,
            details=_json_safe(details),
        )
        await asyncio.to_thread(_insert, record)
        return True
    except Exception as e:
        audit_write_failures_total.labels(action=action).inc()
        logger.error(
            f"Failed to write audit entry: {e}",
            extra={
                "actor_id": actor_id,
                "action": action,
                "target_table": target_table,
                "target_id": target_id,
            },
            exc_info=True,
        )
        return False


def list_actions(
    action_filter: Optional[str] = None,
    actor_id: Optional[str] = None,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    """Most recent audit entries, optionally filtered by action substring and actor."""
    query = (
        sa.select(
            admin_audit_log.c.id,
            admin_audit_log.c.action,
            admin_audit_log.c.target_table,
            admin_audit_log.c.target_id,
            admin_audit_log.c.details,
            admin_audit_log.c.created_at,
            admin_audit_log.c.admin_id,
        )
        .order_by(admin_audit_log.c.created_at.desc())
        .limit(limit)
    )
    if action_filter:
        query = query.where(admin_audit_log.c.action.ilike(f"%{action_filter}%"))
    if actor_id:
        query = query.where(admin_audit_log.c.admin_id == actor_id)

    with get_db_session() as session:
        return [row_to_dict(row) for row in session.execute(query)]
