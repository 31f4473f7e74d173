"""Conversation orchestrator: one administrator request, two model round-trips."""

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from admin_assistant.adapters.llm_gateway import LLMGatewayClient, ModelReply
from admin_assistant.infra.auth import authenticate_admin
from admin_assistant.infra.config import config
from admin_assistant.infra.error_handler import (
    AssistantError,
    AuthenticationError,
    AuthorizationError,
    DuplicateRequestError,
    UpstreamModelError,
)
from admin_assistant.infra.metrics import assistant_request_duration, assistant_requests_total
from admin_assistant.models.action import PendingAction
from admin_assistant.models.context import BusinessContextSnapshot
from admin_assistant.models.conversation import AssistantReply, AssistantTurn, ConfirmDecision
from admin_assistant.models.tool import ToolInvocation, ToolResult
from admin_assistant.services import tool_registry
from admin_assistant.services.action_policy import PendingActionStore
from admin_assistant.services.context_gatherer import ContextGatherer
from admin_assistant.services.prompt_builder import build_messages
from admin_assistant.services.request_guard import RecentRequestGuard
from admin_assistant.services.tool_executor import CANCELLED, ActionOutcome, ToolExecutor

logger = logging.getLogger(__name__)

Authenticator = Callable[[Optional[str]], str]

NO_RESPONSE = "I could not produce a response for that request."

SUMMARY_INSTRUCTION = (
    "Summarize for the administrator what was done, based only on the tool "
    "results above. Mention failures and actions awaiting confirmation."
)


class OrchestratorState(str, Enum):
    AUTHENTICATING = "authenticating"
    GATHERING_CONTEXT = "gathering_context"
    AWAITING_MODEL_DECISION = "awaiting_model_decision"
    EXECUTING_TOOLS = "executing_tools"
    AWAITING_MODEL_SUMMARY = "awaiting_model_summary"
    DONE = "done"
    REJECTED = "rejected"


def tool_messages(reply: ModelReply, outcomes: List[ActionOutcome]) -> List[Dict[str, Any]]:
    """Assistant tool-call message followed by one tool message per call id."""
    messages = [reply.to_assistant_message()]
    for outcome in outcomes:
        messages.append({
            "role": "tool",
            "tool_call_id": outcome.call_id,
            "content": json.dumps(outcome.result.to_model_content(), default=str),
        })
    return messages


def fallback_summary(outcomes: List[ActionOutcome]) -> str:
    """Deterministic summary used when the summary round-trip fails."""
    if not outcomes:
        return NO_RESPONSE
    lines = []
    for outcome in outcomes:
        result = outcome.result
        if result.requires_confirmation:
            lines.append(f"- {outcome.tool}: awaiting confirmation (action {result.action_id})")
        elif outcome.status == CANCELLED:
            lines.append(f"- {outcome.tool}: cancelled")
        elif result.success:
            lines.append(f"- {outcome.tool}: completed")
        else:
            lines.append(f"- {outcome.tool}: failed ({result.error})")
    return "Actions processed:\n" + "\n".join(lines)


class AssistantOrchestrator:
    """
    Drives one administrator request through the assistant state machine.

    Authenticating -> GatheringContext -> AwaitingModelDecision
        -> [ExecutingTools -> AwaitingModelSummary] -> Done

    Any failure before a tool runs ends the request in Rejected and
    propagates as an AssistantError. Once a tool has run, the request
    always completes so executed actions are reported.
    """

    def __init__(
        self,
        llm: LLMGatewayClient,
        gatherer: Optional[ContextGatherer] = None,
        executor: Optional[ToolExecutor] = None,
        pending_store: Optional[PendingActionStore] = None,
        guard: Optional[RecentRequestGuard] = None,
        authenticator: Authenticator = authenticate_admin,
    ):
        self.llm = llm
        self.gatherer = gatherer or ContextGatherer()
        self.pending_store = pending_store or PendingActionStore()
        self.executor = executor or ToolExecutor(pending_store=self.pending_store)
        self.guard = guard or RecentRequestGuard()
        self.authenticator = authenticator

    def _transition(self, state: OrchestratorState, **extra: Any) -> OrchestratorState:
        logger.info(f"Assistant state: {state.value}", extra=extra)
        return state

    async def handle(self, token: Optional[str], turn: AssistantTurn) -> AssistantReply:
        """
        Process one request.

        Args:
            token: Bearer token from the Authorization header, if any
            turn: Decoded request

        Returns:
            AssistantReply with the final text and every action outcome

        Raises:
            AuthenticationError: Missing or invalid token
            AuthorizationError: Caller is not an administrator
            DuplicateRequestError: Same request seen inside the window
            ConfirmationError: confirmAction references an unusable action
            UpstreamModelError: Model gateway failed before any tool ran
        """
        start_time = time.time()
        context = turn.context
        outcome_label = "failed"
        try:
            reply = await self._handle(token, turn)
            outcome_label = "completed"
            return reply
        except (AuthenticationError, AuthorizationError):
            outcome_label = "rejected"
            raise
        except DuplicateRequestError:
            outcome_label = "duplicate"
            raise
        finally:
            assistant_requests_total.labels(context=context.value, outcome=outcome_label).inc()
            assistant_request_duration.labels(context=context.value).observe(time.time() - start_time)

    async def _handle(self, token: Optional[str], turn: AssistantTurn) -> AssistantReply:
        self._transition(OrchestratorState.AUTHENTICATING, context=turn.context.value)
        try:
            actor_id = await asyncio.to_thread(self.authenticator, token)
        except AssistantError as e:
            self._transition(OrchestratorState.REJECTED, reason=e.message)
            raise

        try:
            key = self.guard.check(actor_id, turn.fingerprint_payload())
        except DuplicateRequestError:
            self._transition(OrchestratorState.REJECTED, actor_id=actor_id, reason="duplicate")
            raise

        try:
            if turn.confirm_action is not None:
                return await self._handle_confirmation(actor_id, turn, turn.confirm_action)
            return await self._handle_message(actor_id, turn)
        except Exception:
            # A failed request may be retried immediately
            self.guard.release(key)
            self._transition(OrchestratorState.REJECTED, actor_id=actor_id)
            raise

    async def _gather(self, actor_id: str) -> BusinessContextSnapshot:
        self._transition(OrchestratorState.GATHERING_CONTEXT, actor_id=actor_id)
        snapshot = await self.gatherer.gather()
        if snapshot.failures:
            logger.warning("Business context incomplete", extra={"failures": snapshot.failures})
        return snapshot

    async def _handle_message(self, actor_id: str, turn: AssistantTurn) -> AssistantReply:
        snapshot = await self._gather(actor_id)
        tools = tool_registry.list_tools()
        messages = build_messages(turn.context, snapshot, tools, turn.history, turn.message)

        self._transition(OrchestratorState.AWAITING_MODEL_DECISION, actor_id=actor_id)
        decision = await self.llm.complete(messages, tools=tools, phase="decision")

        if not decision.tool_calls:
            self._transition(OrchestratorState.DONE, actor_id=actor_id, tool_calls=0)
            return AssistantReply(response=decision.content or NO_RESPONSE, context=turn.context)

        self._transition(OrchestratorState.EXECUTING_TOOLS, actor_id=actor_id, tool_calls=len(decision.tool_calls))
        outcomes = await self.executor.execute_many(decision.tool_calls, actor_id)

        summary = await self._summarize(actor_id, messages + tool_messages(decision, outcomes), outcomes)
        self._transition(OrchestratorState.DONE, actor_id=actor_id, tool_calls=len(outcomes))
        return AssistantReply(response=summary, context=turn.context, actions=outcomes)

    async def _handle_confirmation(
        self,
        actor_id: str,
        turn: AssistantTurn,
        decision: ConfirmDecision,
    ) -> AssistantReply:
        """Resolve a pending destructive action, then summarize the result."""
        pending = await asyncio.to_thread(self.pending_store.load_for_confirmation, decision.action_id, actor_id)
        call_id = f"confirm_{pending.id}"

        if decision.confirmed:
            # Claim the action before running it; a second confirmation fails here
            await asyncio.to_thread(self.pending_store.mark_confirmed, pending)
            self._transition(OrchestratorState.EXECUTING_TOOLS, actor_id=actor_id, action_id=pending.id)
            outcome = await self.executor.execute_confirmed(pending, call_id=call_id)
        else:
            await asyncio.to_thread(self.pending_store.mark_cancelled, pending)
            outcome = self._cancelled_outcome(pending, call_id)
            logger.info("Pending action cancelled", extra={"actor_id": actor_id, "action_id": pending.id})

        snapshot = await self._gather(actor_id)
        tools = tool_registry.list_tools()
        user_message = turn.message or (
            f"{'Confirm' if decision.confirmed else 'Cancel'} pending action {pending.id}"
        )
        messages = build_messages(turn.context, snapshot, tools, turn.history, user_message)
        synthetic = ModelReply(
            content=None,
            tool_calls=[ToolInvocation(call_id=call_id, name=pending.tool_name, arguments=pending.arguments)],
        )

        summary = await self._summarize(actor_id, messages + tool_messages(synthetic, [outcome]), [outcome])
        self._transition(OrchestratorState.DONE, actor_id=actor_id, action_id=pending.id)
        return AssistantReply(response=summary, context=turn.context, actions=[outcome])

    @staticmethod
    def _cancelled_outcome(pending: PendingAction, call_id: str) -> ActionOutcome:
        return ActionOutcome(
            tool=pending.tool_name,
            call_id=call_id,
            arguments=pending.arguments,
            result=ToolResult.ok({"cancelled": True, "action_id": pending.id}),
            status=CANCELLED,
            is_destructive=True,
        )

    async def _summarize(
        self,
        actor_id: str,
        messages: List[Dict[str, Any]],
        outcomes: List[ActionOutcome],
    ) -> str:
        """Second round-trip without tools; never raises once tools have run."""
        self._transition(OrchestratorState.AWAITING_MODEL_SUMMARY, actor_id=actor_id)
        messages = messages + [{"role": "user", "content": SUMMARY_INSTRUCTION}]
        try:
            reply = await self.llm.complete(
                messages,
                tools=None,
                max_tokens=config.LLM_SUMMARY_MAX_TOKENS,
                phase="summary",
            )
        except UpstreamModelError as e:
            logger.warning(f"Summary round-trip failed, using fallback: {e.message}", extra={"actor_id": actor_id})
            return fallback_summary(outcomes)
        except Exception as e:
            logger.error(
                f"Summary round-trip raised unexpectedly: {type(e).__name__}",
                extra={"actor_id": actor_id},
                exc_info=True,
            )
            return fallback_summary(outcomes)

        if not reply.content or not reply.content.strip():
            return fallback_summary(outcomes)
        return reply.content
