"""Business context gatherer for the assistant system prompt."""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

import sqlalchemy as sa

from admin_assistant.infra.database import get_db_session
from admin_assistant.infra.metrics import context_query_failures_total
from admin_assistant.infra.schema import (
    ai_feedback,
    ai_learnings,
    ai_mode_config,
    chat_conversations,
    contact_submissions,
    email_campaigns,
    email_templates,
    row_to_dict,
)
from admin_assistant.infra.timeout import CONTEXT_GATHER_TIMEOUT
from admin_assistant.models.context import BusinessContextSnapshot

logger = logging.getLogger(__name__)

RECENT_LIMIT = 20
TOP_PATTERNS_LIMIT = 10

Fetcher = Callable[[], Dict[str, Any]]


def _count(session, table) -> int:
    return session.execute(sa.select(sa.func.count()).select_from(table)).scalar_one()


def fetch_contacts() -> Dict[str, Any]:
    with get_db_session() as session:
        rows = session.execute(
            sa.select(
                contact_submissions.c.id,
                contact_submissions.c.name,
                contact_submissions.c.email,
                contact_submissions.c.user_type,
                contact_submissions.c.read_at,
                contact_submissions.c.created_at,
            )
            .order_by(contact_submissions.c.created_at.desc())
            .limit(RECENT_LIMIT)
        ).all()
        total = _count(session, contact_submissions)
    return {"total_contacts": total, "recent_contacts": [row_to_dict(r) for r in rows]}


def fetch_templates() -> Dict[str, Any]:
    with get_db_session() as session:
        rows = session.execute(
            sa.select(email_templates.c.id, email_templates.c.name, email_templates.c.subject)
            .where(email_templates.c.is_active.is_(True))
            .order_by(email_templates.c.name)
            .limit(RECENT_LIMIT)
        ).all()
    return {"email_templates": [row_to_dict(r) for r in rows]}


def fetch_campaigns() -> Dict[str, Any]:
    with get_db_session() as session:
        rows = session.execute(
            sa.select(
                email_campaigns.c.id,
                email_campaigns.c.name,
                email_campaigns.c.status,
                email_campaigns.c.sent_count,
                email_campaigns.c.created_at,
            )
            .order_by(email_campaigns.c.created_at.desc())
            .limit(RECENT_LIMIT)
        ).all()
        total = _count(session, email_campaigns)
    return {"total_campaigns": total, "recent_campaigns": [row_to_dict(r) for r in rows]}


def fetch_chats() -> Dict[str, Any]:
    with get_db_session() as session:
        rows = session.execute(
            sa.select(
                chat_conversations.c.id,
                chat_conversations.c.visitor_name,
                chat_conversations.c.status,
                chat_conversations.c.current_mode,
                chat_conversations.c.created_at,
            )
            .order_by(chat_conversations.c.created_at.desc())
            .limit(RECENT_LIMIT)
        ).all()
        total = _count(session, chat_conversations)
    return {"total_chats": total, "recent_chats": [row_to_dict(r) for r in rows]}


def fetch_ai_modes() -> Dict[str, Any]:
    with get_db_session() as session:
        rows = session.execute(
            sa.select(ai_mode_config.c.mode, ai_mode_config.c.is_enabled, ai_mode_config.c.confidence_threshold)
        ).all()
    return {"ai_modes": [row_to_dict(r) for r in rows]}


def fetch_feedback() -> Dict[str, Any]:
    with get_db_session() as session:
        stats = session.execute(
            sa.select(
                sa.func.count().label("total"),
                sa.func.avg(ai_feedback.c.rating).label("avg_rating"),
                sa.func.sum(sa.case((ai_feedback.c.resolved.is_(False), 1), else_=0)).label("unresolved"),
            )
        ).one()
    return {
        "total_feedback": stats.total,
        "avg_rating": round(float(stats.avg_rating), 1) if stats.avg_rating is not None else None,
        "unresolved_feedback": int(stats.unresolved or 0),
    }


def fetch_patterns() -> Dict[str, Any]:
    with get_db_session() as session:
        rows = session.execute(
            sa.select(ai_learnings.c.pattern, ai_learnings.c.category, ai_learnings.c.success_score)
            .where(ai_learnings.c.is_active.is_(True))
            .order_by(ai_learnings.c.success_score.desc())
            .limit(TOP_PATTERNS_LIMIT)
        ).all()
    return {"top_patterns": [row_to_dict(r) for r in rows]}


DEFAULT_FETCHERS: Dict[str, Fetcher] = {
    "contacts": fetch_contacts,
    "templates": fetch_templates,
    "campaigns": fetch_campaigns,
    "chats": fetch_chats,
    "ai_modes": fetch_ai_modes,
    "feedback": fetch_feedback,
    "patterns": fetch_patterns,
}


class ContextGatherer:
    """
    Builds a BusinessContextSnapshot from independent per-domain queries.

    Queries run in parallel on worker threads under one overall timeout. A
    failed or slow domain is left out of the snapshot and listed in
    ``failures``; gathering itself never raises.
    """

    def __init__(self, fetchers: Optional[Dict[str, Fetcher]] = None, timeout: Optional[float] = None):
        self.fetchers = fetchers if fetchers is not None else DEFAULT_FETCHERS
        self.timeout = CONTEXT_GATHER_TIMEOUT if timeout is None else timeout

    async def gather(self) -> BusinessContextSnapshot:
        snapshot = BusinessContextSnapshot()
        if not self.fetchers:
            return snapshot

        tasks = {
            asyncio.ensure_future(asyncio.to_thread(fetch)): domain
            for domain, fetch in self.fetchers.items()
        }
        done, pending = await asyncio.wait(tasks.keys(), timeout=self.timeout)

        for task in pending:
            # The worker thread runs its query to completion and then returns its connection
            task.cancel()
            self._record_failure(snapshot, tasks[task], "timeout")

        for task in done:
            domain = tasks[task]
            error = task.exception()
            if error is not None:
                self._record_failure(snapshot, domain, "error", error)
                continue
            for key, value in task.result().items():
                setattr(snapshot, key, value)

        snapshot.failures.sort()
        return snapshot

    @staticmethod
    def _record_failure(
        snapshot: BusinessContextSnapshot,
        domain: str,
        reason: str,
        error: Optional[BaseException] = None,
    ) -> None:
        snapshot.failures.append(domain)
        context_query_failures_total.labels(domain=domain, reason=reason).inc()
        logger.warning(
            f"Context query failed for {domain}: {reason}",
            extra={"domain": domain, "error": str(error) if error else None},
        )
