"""Tool executor: validates, gates, runs and audits one tool invocation."""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from admin_assistant.infra.error_handler import AssistantError, ToolValidationError
from admin_assistant.infra.metrics import tool_call_duration, tool_calls_total
from admin_assistant.infra.timeout import TOOL_EXECUTION_TIMEOUT
from admin_assistant.logging.audit_logger import record_action
from admin_assistant.models.action import PendingAction
from admin_assistant.models.tool import ToolInvocation, ToolResult
from admin_assistant.services import action_policy, tool_registry
from admin_assistant.services.action_policy import PendingActionStore
from admin_assistant.services.tools.spec import ToolArgs, ToolSpec

logger = logging.getLogger(__name__)

AuditWriter = Callable[..., Awaitable[bool]]

# Outcome statuses reported to the client
EXECUTED = "executed"
REJECTED = "rejected"
PENDING_CONFIRMATION = "pending_confirmation"
CONFIRMED = "confirmed"
CANCELLED = "cancelled"

GENERIC_FAILURE = "internal error while executing tool"


@dataclass
class ActionOutcome:
    """What happened to one tool call, as reported back to the caller."""
    tool: str
    call_id: Optional[str]
    arguments: Dict[str, Any]
    result: ToolResult
    status: str
    is_destructive: bool = False
    # Set when the call was parked for confirmation
    expires_at: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())


def _summarize(data: Any) -> Any:
    """Keep scalar fields of a result for the audit entry; bulky payloads stay out of the log."""
    if isinstance(data, dict):
        return {
            k: v for k, v in data.items()
            if isinstance(v, (str, int, float, bool)) or v is None
        }
    if isinstance(data, (str, int, float, bool)):
        return data
    return None


class ToolExecutor:
    """
    Executes tool calls chosen by the model.

    Each call is resolved against the closed catalog, validated, checked
    against the destructive-action policy, run with a timeout and, when the
    tool is side-effecting, recorded in the audit log exactly once.
    """

    def __init__(
        self,
        pending_store: Optional[PendingActionStore] = None,
        audit_writer: Optional[AuditWriter] = None,
        timeout: Optional[float] = None,
    ):
        self.pending_store = pending_store or PendingActionStore()
        self.audit_writer = audit_writer or record_action
        self.timeout = TOOL_EXECUTION_TIMEOUT if timeout is None else timeout

    async def execute(self, name: str, arguments: Any, actor_id: str) -> ToolResult:
        """
        Execute one tool by name.

        Args:
            name: Tool name (untrusted)
            arguments: Decoded arguments (untrusted)
            actor_id: Administrator on whose behalf the tool runs

        Returns:
            ToolResult; failures are reported in the result, never raised
        """
        outcome = await self._run(name, arguments, actor_id)
        return outcome.result

    async def execute_invocation(self, invocation: ToolInvocation, actor_id: str) -> ActionOutcome:
        arguments: Any = invocation.arguments
        if invocation.malformed_arguments is not None:
            arguments = None
        return await self._run(invocation.name, arguments, actor_id, call_id=invocation.call_id)

    async def execute_many(self, invocations: List[ToolInvocation], actor_id: str) -> List[ActionOutcome]:
        """
        Run all invocations of one model turn concurrently.

        Each call runs in its own shielded task: a cancelled request does not
        interrupt a started side effect or its audit entry. Results keep the
        order of ``invocations``.
        """
        tasks = [
            asyncio.ensure_future(self.execute_invocation(invocation, actor_id))
            for invocation in invocations
        ]
        return list(await asyncio.gather(*(asyncio.shield(task) for task in tasks)))

    async def execute_confirmed(self, pending: PendingAction, call_id: Optional[str] = None) -> ActionOutcome:
        """Run a destructive call the administrator has confirmed; the policy gate is skipped."""
        task = asyncio.ensure_future(
            self._run(pending.tool_name, pending.arguments, pending.actor_id, call_id=call_id, confirmed_action_id=pending.id)
        )
        return await asyncio.shield(task)

    async def _run(
        self,
        name: str,
        arguments: Any,
        actor_id: str,
        call_id: Optional[str] = None,
        confirmed_action_id: Optional[str] = None,
    ) -> ActionOutcome:
        raw_arguments = arguments if isinstance(arguments, dict) else {}

        # Unknown names fail closed without touching any handler
        if tool_registry.resolve_name(name) is None:
            tool_calls_total.labels(tool_name="unknown", status="rejected").inc()
            logger.warning("Tool invocation rejected: unknown tool", extra={"tool_name": name, "actor_id": actor_id})
            return ActionOutcome(
                tool=name,
                call_id=call_id,
                arguments=raw_arguments,
                result=ToolResult.fail(f"tool not found: {name}"),
                status=REJECTED,
            )

        try:
            spec, args = tool_registry.validate_arguments(name, arguments)
        except ToolValidationError as e:
            tool_calls_total.labels(tool_name=name, status="rejected").inc()
            logger.warning(
                "Tool invocation rejected: invalid arguments",
                extra={"tool_name": name, "actor_id": actor_id, "error": e.message},
            )
            return ActionOutcome(
                tool=name,
                call_id=call_id,
                arguments=raw_arguments,
                result=ToolResult.fail(e.message),
                status=REJECTED,
                is_destructive=action_policy.is_destructive(name),
            )

        stored_arguments = args.model_dump(mode="json")

        if confirmed_action_id is None and action_policy.requires_confirmation(name):
            return await self._park(spec, args, stored_arguments, actor_id, call_id)

        result = await self._invoke(spec, args, actor_id)
        await self._audit(spec, args, stored_arguments, result, actor_id, confirmed_action_id)

        return ActionOutcome(
            tool=name,
            call_id=call_id,
            arguments=stored_arguments,
            result=result,
            status=CONFIRMED if confirmed_action_id else EXECUTED,
            is_destructive=spec.destructive,
        )

    async def _park(
        self,
        spec: ToolSpec,
        args: ToolArgs,
        stored_arguments: Dict[str, Any],
        actor_id: str,
        call_id: Optional[str],
    ) -> ActionOutcome:
        """Store a destructive call for confirmation instead of running it."""
        name = spec.name.value
        try:
            preview = await asyncio.to_thread(spec.preview, args) if spec.preview else {}
        except AssistantError as e:
            # Nothing to confirm when the target does not exist
            tool_calls_total.labels(tool_name=name, status="rejected").inc()
            return ActionOutcome(
                tool=name,
                call_id=call_id,
                arguments=stored_arguments,
                result=ToolResult.fail(e.message),
                status=REJECTED,
                is_destructive=True,
            )

        pending = await asyncio.to_thread(self.pending_store.create, actor_id, name, stored_arguments, preview)
        tool_calls_total.labels(tool_name=name, status="pending").inc()
        return ActionOutcome(
            tool=name,
            call_id=call_id,
            arguments=stored_arguments,
            result=ToolResult(success=True, data=preview, requires_confirmation=True, action_id=pending.id),
            status=PENDING_CONFIRMATION,
            is_destructive=True,
            expires_at=pending.expires_at.isoformat(),
        )

    async def _invoke(self, spec: ToolSpec, args: ToolArgs, actor_id: str) -> ToolResult:
        name = spec.name.value
        start_time = time.time()
        try:
            if inspect.iscoroutinefunction(spec.handler):
                call = spec.handler(args, actor_id)
            else:
                # Plain handlers do blocking database work
                call = asyncio.to_thread(spec.handler, args, actor_id)
            result = await asyncio.wait_for(call, timeout=self.timeout)
            status = "success" if result.success else "failure"
        except asyncio.TimeoutError:
            # A worker thread cannot be interrupted; its transaction may still commit after this point
            logger.error(f"Tool timed out after {self.timeout}s", extra={"tool_name": name, "actor_id": actor_id})
            result = ToolResult.fail(f"tool timed out after {self.timeout:g}s")
            status = "timeout"
        except AssistantError as e:
            logger.warning(f"Tool failed: {e.message}", extra={"tool_name": name, "actor_id": actor_id})
            result = ToolResult.fail(e.message)
            status = "failure"
        except Exception as e:
            logger.error(
                f"Tool raised unexpectedly: {type(e).__name__}",
                extra={"tool_name": name, "actor_id": actor_id},
                exc_info=True,
            )
            result = ToolResult.fail(GENERIC_FAILURE)
            status = "failure"

        tool_calls_total.labels(tool_name=name, status=status).inc()
        tool_call_duration.labels(tool_name=name).observe(time.time() - start_time)
        return result

    async def _audit(
        self,
        spec: ToolSpec,
        args: ToolArgs,
        stored_arguments: Dict[str, Any],
        result: ToolResult,
        actor_id: str,
        confirmed_action_id: Optional[str],
    ) -> None:
        action = spec.resolve_audit_action(args)
        if not action:
            return
        details: Dict[str, Any] = {
            "arguments": stored_arguments,
            "success": result.success,
            "error": result.error,
            "is_destructive": spec.destructive,
            "result": _summarize(result.data),
        }
        if confirmed_action_id:
            details["confirmed_action_id"] = confirmed_action_id
        await self.audit_writer(
            actor_id=actor_id,
            action=action,
            target_table=spec.resolve_target_table(args),
            target_id=spec.resolve_target_id(args, result),
            details=details,
        )
