"""Tools that tune the customer-facing chat AI: learnings, modes and feedback."""

from datetime import timedelta
from enum import Enum
from typing import List, Optional

import sqlalchemy as sa
from pydantic import Field, model_validator

from admin_assistant.infra.database import get_db_session
from admin_assistant.infra.error_handler import ToolExecutionError
from admin_assistant.infra.schema import ai_feedback, ai_learnings, ai_mode_config, new_id, row_to_dict
from admin_assistant.models.tool import ToolName, ToolResult
from admin_assistant.services.tools.spec import ToolArgs, ToolSpec, utcnow

LOW_RATING_THRESHOLD = 2


class AIMode(str, Enum):
    SUPPORT = "support"
    SALES = "sales"
    MARKETING = "marketing"
    HANDOFF_HUMAN = "handoff_human"


class CreateLearningArgs(ToolArgs):
    pattern: str = Field(..., min_length=1, description="Question or situation the AI should recognize")
    category: str = Field(default="general", description="e.g. pricing, support, scheduling")
    keywords: List[str] = Field(default_factory=list)
    response_template: Optional[str] = Field(default=None, description="Preferred answer")


class ListLearningsArgs(ToolArgs):
    category: Optional[str] = None
    active_only: bool = True


class LearningArgs(ToolArgs):
    learning_id: str = Field(..., min_length=1)


class UpdateModeArgs(ToolArgs):
    mode: AIMode
    is_enabled: Optional[bool] = None
    confidence_threshold: Optional[float] = Field(default=None, ge=0, le=1)

    @model_validator(mode="after")
    def _require_change(self):
        if self.is_enabled is None and self.confidence_threshold is None:
            raise ValueError("nothing to update")
        return self


class FeedbackSummaryArgs(ToolArgs):
    days: int = Field(default=30, ge=1, le=365)


class FeedbackArgs(ToolArgs):
    feedback_id: str = Field(..., min_length=1)


def create_ai_learning(args: CreateLearningArgs, actor_id: str) -> ToolResult:
    learning_id = new_id()
    with get_db_session() as session:
        session.execute(
            sa.insert(ai_learnings).values(
                id=learning_id,
                pattern=args.pattern,
                category=args.category,
                keywords=args.keywords,
                response_template=args.response_template,
                is_active=True,
                created_at=utcnow(),
            )
        )
    return ToolResult.ok({"learning_id": learning_id, "message": "Learning pattern created"}, target_id=learning_id)


def list_ai_learnings(args: ListLearningsArgs, actor_id: str) -> ToolResult:
    query = sa.select(
        ai_learnings.c.id,
        ai_learnings.c.pattern,
        ai_learnings.c.category,
        ai_learnings.c.keywords,
        ai_learnings.c.success_score,
        ai_learnings.c.fail_score,
        ai_learnings.c.is_active,
    ).order_by(ai_learnings.c.success_score.desc()).limit(50)
    if args.category:
        query = query.where(ai_learnings.c.category == args.category)
    if args.active_only:
        query = query.where(ai_learnings.c.is_active.is_(True))

    with get_db_session() as session:
        learnings = [row_to_dict(row) for row in session.execute(query)]
    return ToolResult.ok({"learnings": learnings, "count": len(learnings)})


def delete_ai_learning(args: LearningArgs, actor_id: str) -> ToolResult:
    with get_db_session() as session:
        result = session.execute(sa.delete(ai_learnings).where(ai_learnings.c.id == args.learning_id))
        if result.rowcount == 0:
            raise ToolExecutionError(f"learning not found: {args.learning_id}")
    return ToolResult.ok({"message": f"Learning {args.learning_id} deleted"}, target_id=args.learning_id)


def update_ai_mode(args: UpdateModeArgs, actor_id: str) -> ToolResult:
    values = {"updated_by": actor_id, "updated_at": utcnow()}
    if args.is_enabled is not None:
        values["is_enabled"] = args.is_enabled
    if args.confidence_threshold is not None:
        values["confidence_threshold"] = args.confidence_threshold

    with get_db_session() as session:
        existing = session.execute(
            sa.select(ai_mode_config.c.id).where(ai_mode_config.c.mode == args.mode.value)
        ).first()
        if existing is None:
            mode_id = new_id()
            session.execute(sa.insert(ai_mode_config).values(id=mode_id, mode=args.mode.value, **values))
        else:
            mode_id = existing.id
            session.execute(sa.update(ai_mode_config).where(ai_mode_config.c.id == mode_id).values(**values))

    changed = {k: v for k, v in values.items() if k in ("is_enabled", "confidence_threshold")}
    return ToolResult.ok({"mode": args.mode.value, **changed}, target_id=mode_id)


def get_ai_feedback_summary(args: FeedbackSummaryArgs, actor_id: str) -> ToolResult:
    since = utcnow() - timedelta(days=args.days)
    with get_db_session() as session:
        stats = session.execute(
            sa.select(
                sa.func.count().label("total"),
                sa.func.avg(ai_feedback.c.rating).label("avg_rating"),
                sa.func.sum(sa.case((ai_feedback.c.resolved.is_(False), 1), else_=0)).label("unresolved"),
            ).where(ai_feedback.c.created_at >= since)
        ).one()
        low_rated = session.execute(
            sa.select(ai_feedback.c.id, ai_feedback.c.conversation_id, ai_feedback.c.rating, ai_feedback.c.comment)
            .where(ai_feedback.c.created_at >= since)
            .where(ai_feedback.c.rating <= LOW_RATING_THRESHOLD)
            .where(ai_feedback.c.resolved.is_(False))
            .order_by(ai_feedback.c.created_at.desc())
            .limit(10)
        ).all()

    return ToolResult.ok({
        "days": args.days,
        "total_feedback": stats.total,
        "avg_rating": round(float(stats.avg_rating), 2) if stats.avg_rating is not None else None,
        "unresolved": int(stats.unresolved or 0),
        "low_rated_unresolved": [row_to_dict(row) for row in low_rated],
    })


def resolve_ai_feedback(args: FeedbackArgs, actor_id: str) -> ToolResult:
    with get_db_session() as session:
        result = session.execute(
            sa.update(ai_feedback).where(ai_feedback.c.id == args.feedback_id).values(resolved=True)
        )
        if result.rowcount == 0:
            raise ToolExecutionError(f"feedback not found: {args.feedback_id}")
    return ToolResult.ok({"message": f"Feedback {args.feedback_id} resolved"}, target_id=args.feedback_id)


def preview_delete_learning(args: LearningArgs) -> dict:
    with get_db_session() as session:
        row = session.execute(
            sa.select(ai_learnings.c.pattern, ai_learnings.c.category)
            .where(ai_learnings.c.id == args.learning_id)
        ).first()
    if row is None:
        raise ToolExecutionError(f"learning not found: {args.learning_id}")
    return {"learning_id": args.learning_id, "pattern": row.pattern[:200], "category": row.category}


SPECS = [
    ToolSpec(
        name=ToolName.CREATE_AI_LEARNING,
        description="Teach the chat AI a pattern and its preferred response.",
        args_model=CreateLearningArgs,
        handler=create_ai_learning,
        audit_action="ai_create_learning",
        target_table="ai_learnings",
    ),
    ToolSpec(
        name=ToolName.LIST_AI_LEARNINGS,
        description="List learned patterns, best performing first.",
        args_model=ListLearningsArgs,
        handler=list_ai_learnings,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.DELETE_AI_LEARNING,
        description="Permanently delete a learned pattern.",
        args_model=LearningArgs,
        handler=delete_ai_learning,
        destructive=True,
        audit_action="ai_delete_learning",
        target_table="ai_learnings",
        target_arg="learning_id",
        preview=preview_delete_learning,
    ),
    ToolSpec(
        name=ToolName.UPDATE_AI_MODE,
        description="Enable or disable a chat AI mode (support, sales, marketing, handoff_human) or change its confidence threshold.",
        args_model=UpdateModeArgs,
        handler=update_ai_mode,
        audit_action="ai_update_mode",
        target_table="ai_mode_config",
    ),
    ToolSpec(
        name=ToolName.GET_AI_FEEDBACK_SUMMARY,
        description="Summarize visitor ratings of the chat AI over recent days.",
        args_model=FeedbackSummaryArgs,
        handler=get_ai_feedback_summary,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.RESOLVE_AI_FEEDBACK,
        description="Mark a feedback entry as resolved.",
        args_model=FeedbackArgs,
        handler=resolve_ai_feedback,
        audit_action="ai_resolve_feedback",
        target_table="ai_feedback",
        target_arg="feedback_id",
    ),
]
