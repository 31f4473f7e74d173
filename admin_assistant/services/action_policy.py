"""Destructive action policy and the pending-confirmation store."""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import sqlalchemy as sa

from admin_assistant.infra.config import config
from admin_assistant.infra.database import get_db_session
from admin_assistant.infra.error_handler import ConfirmationError
from admin_assistant.infra.metrics import pending_actions_total
from admin_assistant.infra.schema import ai_pending_actions, new_id
from admin_assistant.models.action import PendingAction, PendingStatus
from admin_assistant.services import tool_registry

logger = logging.getLogger(__name__)

CONFIRM_MODE = "confirm"
EXECUTE_MODE = "execute"


def is_destructive(name: str) -> bool:
    """Classification comes from the declaration only, never from arguments."""
    try:
        return tool_registry.get_declaration(name).destructive
    except tool_registry.ToolNotFoundError:
        return False


def requires_confirmation(name: str) -> bool:
    return config.DESTRUCTIVE_ACTION_MODE == CONFIRM_MODE and is_destructive(name)


def _to_pending(row) -> PendingAction:
    return PendingAction(
        id=row.id,
        actor_id=row.actor_id,
        tool_name=row.tool_name,
        arguments=row.arguments or {},
        preview=row.preview or {},
        status=PendingStatus(row.status),
        created_at=row.created_at,
        expires_at=row.expires_at,
        resolved_at=row.resolved_at,
    )


class PendingActionStore:
    """
    Durable store for destructive calls awaiting confirmation.

    A pending action belongs to the administrator who triggered it, expires
    after ``ttl_seconds`` and can be resolved exactly once.
    """

    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl_seconds = config.PENDING_ACTION_TTL_SECONDS if ttl_seconds is None else ttl_seconds

    def create(
        self,
        actor_id: str,
        tool_name: str,
        arguments: Dict[str, Any],
        preview: Dict[str, Any],
    ) -> PendingAction:
        now = datetime.utcnow()
        pending = PendingAction(
            id=new_id(),
            actor_id=actor_id,
            tool_name=tool_name,
            arguments=arguments,
            preview=preview,
            status=PendingStatus.PENDING,
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )
        with get_db_session() as session:
            session.execute(
                sa.insert(ai_pending_actions).values(
                    id=pending.id,
                    actor_id=pending.actor_id,
                    tool_name=pending.tool_name,
                    arguments=pending.arguments,
                    preview=pending.preview,
                    status=pending.status.value,
                    expires_at=pending.expires_at,
                    created_at=pending.created_at,
                )
            )
        pending_actions_total.labels(tool_name=tool_name, status=PendingStatus.PENDING.value).inc()
        logger.info(
            "Destructive action awaiting confirmation",
            extra={"action_id": pending.id, "tool_name": tool_name, "actor_id": actor_id},
        )
        return pending

    def get(self, action_id: str) -> Optional[PendingAction]:
        with get_db_session() as session:
            row = session.execute(
                sa.select(ai_pending_actions).where(ai_pending_actions.c.id == action_id)
            ).first()
        return _to_pending(row) if row is not None else None

    def load_for_confirmation(self, action_id: str, actor_id: str) -> PendingAction:
        """
        Fetch a pending action the actor may resolve now.

        Raises:
            ConfirmationError: 404 if unknown or owned by someone else,
                409 if already resolved or expired
        """
        pending = self.get(action_id)
        if pending is None or pending.actor_id != actor_id:
            raise ConfirmationError("Pending action not found", status_code=404)
        if pending.status != PendingStatus.PENDING:
            raise ConfirmationError(f"Pending action already {pending.status.value}")
        if pending.is_expired():
            self._resolve(pending, PendingStatus.EXPIRED)
            raise ConfirmationError("Pending action expired")
        return pending

    def mark_confirmed(self, pending: PendingAction) -> PendingAction:
        return self._resolve(pending, PendingStatus.CONFIRMED)

    def mark_cancelled(self, pending: PendingAction) -> PendingAction:
        return self._resolve(pending, PendingStatus.CANCELLED)

    def _resolve(self, pending: PendingAction, status: PendingStatus) -> PendingAction:
        """
        Move a pending action to a final state.

        The update is conditional on the row still being pending, so two
        concurrent confirmations cannot both proceed.
        """
        now = datetime.utcnow()
        with get_db_session() as session:
            result = session.execute(
                sa.update(ai_pending_actions)
                .where(ai_pending_actions.c.id == pending.id)
                .where(ai_pending_actions.c.status == PendingStatus.PENDING.value)
                .values(status=status.value, resolved_at=now)
            )
            if result.rowcount == 0:
                raise ConfirmationError("Pending action already resolved")

        pending.status = status
        pending.resolved_at = now
        pending_actions_total.labels(tool_name=pending.tool_name, status=status.value).inc()
        return pending
