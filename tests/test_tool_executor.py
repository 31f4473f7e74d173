"""Tests for the tool executor: validation, policy gate, timeouts and audit."""

import asyncio
import dataclasses
import time
from unittest.mock import patch

import pytest

from admin_assistant.infra.config import config
from admin_assistant.infra.error_handler import ToolExecutionError
from admin_assistant.infra.schema import ai_pending_actions, chat_conversations, chat_messages, contact_submissions
from admin_assistant.models.tool import ToolInvocation, ToolName, ToolResult
from admin_assistant.services import tool_registry
from admin_assistant.services.tool_executor import (
    CONFIRMED,
    EXECUTED,
    GENERIC_FAILURE,
    PENDING_CONFIRMATION,
    REJECTED,
    ToolExecutor,
)


@pytest.fixture
def conversation(seed):
    conversation_id = seed(chat_conversations, id="C1", visitor_name="Ana", status="active")
    seed(chat_messages, conversation_id="C1", role="user", content="hello")
    seed(chat_messages, conversation_id="C1", role="assistant", content="hi there")
    return conversation_id


def replace_handler(name: ToolName, handler):
    spec = tool_registry._CATALOG[name]
    return patch.dict(tool_registry._CATALOG, {name: dataclasses.replace(spec, handler=handler)})


class TestRejection:
    """Calls that never reach a handler."""

    @pytest.mark.asyncio
    async def test_unknown_tool_fails_closed(self, admin_id, audit_entries):
        result = await ToolExecutor().execute("drop_database", {}, admin_id)

        assert result.success is False
        assert result.error == "tool not found: drop_database"
        assert audit_entries() == []

    @pytest.mark.asyncio
    async def test_missing_required_field_has_no_side_effect(self, admin_id, audit_entries, count_rows):
        result = await ToolExecutor().execute(
            "create_contact", {"name": "Ana", "message": "hello"}, admin_id
        )

        assert result.success is False
        assert result.error.startswith("validation failed: ")
        assert "email" in result.error
        assert count_rows(contact_submissions) == 0
        assert audit_entries() == []

    @pytest.mark.asyncio
    async def test_malformed_arguments(self, admin_id):
        invocation = ToolInvocation(call_id="c1", name="list_contacts", malformed_arguments="{not json")
        outcome = await ToolExecutor().execute_invocation(invocation, admin_id)

        assert outcome.status == REJECTED
        assert outcome.call_id == "c1"
        assert outcome.result.error == "validation failed: arguments must be a JSON object"


class TestExecution:
    """Handlers run and side effects are audited exactly once."""

    @pytest.mark.asyncio
    async def test_successful_side_effect_is_audited_once(self, admin_id, conversation, audit_entries):
        result = await ToolExecutor().execute("close_conversation", {"conversation_id": "C1"}, admin_id)

        assert result.success is True
        entries = audit_entries()
        assert len(entries) == 1
        assert entries[0]["admin_id"] == admin_id
        assert entries[0]["action"] == "ai_close_conversation"
        assert entries[0]["target_table"] == "chat_conversations"
        assert entries[0]["target_id"] == "C1"
        assert entries[0]["details"]["success"] is True
        assert entries[0]["details"]["arguments"] == {"conversation_id": "C1"}

    @pytest.mark.asyncio
    async def test_failed_side_effect_is_audited_once(self, admin_id, audit_entries):
        result = await ToolExecutor().execute("close_conversation", {"conversation_id": "missing"}, admin_id)

        assert result.success is False
        assert result.error == "conversation not found: missing"
        entries = audit_entries()
        assert len(entries) == 1
        assert entries[0]["target_id"] == "missing"
        assert entries[0]["details"]["success"] is False
        assert entries[0]["details"]["error"] == "conversation not found: missing"

    @pytest.mark.asyncio
    async def test_read_only_tool_is_not_audited(self, admin_id, audit_entries):
        result = await ToolExecutor().execute("list_conversations", {"status": "active"}, admin_id)

        assert result.success is True
        assert result.data == {"conversations": [], "count": 0}
        assert audit_entries() == []

    @pytest.mark.asyncio
    async def test_timeout_is_a_failed_result(self, admin_id, audit_entries):
        async def slow(args, actor_id):
            await asyncio.sleep(5)
            return ToolResult.ok()

        with replace_handler(ToolName.CLOSE_CONVERSATION, slow):
            result = await ToolExecutor(timeout=0.05).execute(
                "close_conversation", {"conversation_id": "C1"}, admin_id
            )

        assert result.success is False
        assert result.error == "tool timed out after 0.05s"
        assert len(audit_entries()) == 1

    @pytest.mark.asyncio
    async def test_blocking_handler_times_out(self, admin_id, audit_entries):
        def slow_query(args, actor_id):
            time.sleep(0.5)
            return ToolResult.ok()

        started = time.monotonic()
        with replace_handler(ToolName.CLOSE_CONVERSATION, slow_query):
            result = await ToolExecutor(timeout=0.05).execute(
                "close_conversation", {"conversation_id": "C1"}, admin_id
            )

        assert time.monotonic() - started < 0.4
        assert result.error == "tool timed out after 0.05s"
        assert len(audit_entries()) == 1

    @pytest.mark.asyncio
    async def test_blocking_handlers_run_concurrently(self, admin_id):
        def slow_query(args, actor_id):
            time.sleep(0.3)
            return ToolResult.ok({"conversation_id": args.conversation_id})

        invocations = [
            ToolInvocation(call_id=str(i), name="close_conversation", arguments={"conversation_id": f"C{i}"})
            for i in range(3)
        ]
        started = time.monotonic()
        with replace_handler(ToolName.CLOSE_CONVERSATION, slow_query):
            outcomes = await ToolExecutor(timeout=5).execute_many(invocations, admin_id)

        assert time.monotonic() - started < 0.8
        assert [o.result.data["conversation_id"] for o in outcomes] == ["C0", "C1", "C2"]

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_not_leaked(self, admin_id):
        async def broken(args, actor_id):
            raise RuntimeError("connection to db failed: password=hunter2")

        with replace_handler(ToolName.CLOSE_CONVERSATION, broken):
            result = await ToolExecutor().execute("close_conversation", {"conversation_id": "C1"}, admin_id)

        assert result.success is False
        assert result.error == GENERIC_FAILURE

    @pytest.mark.asyncio
    async def test_execution_error_message_is_reported(self, admin_id):
        async def failing(args, actor_id):
            raise ToolExecutionError("email not configured")

        with replace_handler(ToolName.CLOSE_CONVERSATION, failing):
            result = await ToolExecutor().execute("close_conversation", {"conversation_id": "C1"}, admin_id)

        assert result.error == "email not configured"

    @pytest.mark.asyncio
    async def test_execute_many_keeps_order_and_isolates_failures(self, admin_id, conversation):
        invocations = [
            ToolInvocation(call_id="a", name="close_conversation", arguments={"conversation_id": "C1"}),
            ToolInvocation(call_id="b", name="close_conversation", arguments={"conversation_id": "nope"}),
            ToolInvocation(call_id="c", name="no_such_tool", arguments={}),
        ]
        outcomes = await ToolExecutor().execute_many(invocations, admin_id)

        assert [o.call_id for o in outcomes] == ["a", "b", "c"]
        assert [o.result.success for o in outcomes] == [True, False, False]
        assert outcomes[0].status == EXECUTED
        assert outcomes[2].status == REJECTED


class TestDestructivePolicy:
    """Destructive tools in confirm and execute modes."""

    @pytest.mark.asyncio
    async def test_execute_mode_runs_immediately(self, admin_id, conversation, audit_entries, count_rows):
        with patch.object(config, "DESTRUCTIVE_ACTION_MODE", "execute"):
            outcome = await ToolExecutor().execute_invocation(
                ToolInvocation(call_id="x", name="delete_conversation", arguments={"conversation_id": "C1"}),
                admin_id,
            )

        assert outcome.status == EXECUTED
        assert outcome.is_destructive is True
        assert outcome.result.data["deleted_messages"] == 2
        assert count_rows(chat_conversations) == 0
        assert count_rows(chat_messages) == 0

        entries = audit_entries()
        assert len(entries) == 1
        assert entries[0]["action"] == "ai_delete_conversation"
        assert entries[0]["target_table"] == "chat_conversations"
        assert entries[0]["target_id"] == "C1"
        assert entries[0]["details"]["is_destructive"] is True

    @pytest.mark.asyncio
    async def test_confirm_mode_parks_the_call(self, admin_id, conversation, audit_entries, count_rows):
        with patch.object(config, "DESTRUCTIVE_ACTION_MODE", "confirm"):
            outcome = await ToolExecutor().execute_invocation(
                ToolInvocation(call_id="x", name="delete_conversation", arguments={"conversation_id": "C1"}),
                admin_id,
            )

        assert outcome.status == PENDING_CONFIRMATION
        assert outcome.result.requires_confirmation is True
        assert outcome.result.action_id
        assert outcome.result.data["messages_to_delete"] == 2
        assert outcome.expires_at is not None
        assert count_rows(chat_conversations) == 1
        assert count_rows(ai_pending_actions) == 1
        assert audit_entries() == []

    @pytest.mark.asyncio
    async def test_confirm_mode_missing_target_is_rejected(self, admin_id, count_rows):
        with patch.object(config, "DESTRUCTIVE_ACTION_MODE", "confirm"):
            result = await ToolExecutor().execute("delete_conversation", {"conversation_id": "ghost"}, admin_id)

        assert result.success is False
        assert result.error == "conversation not found: ghost"
        assert count_rows(ai_pending_actions) == 0

    @pytest.mark.asyncio
    async def test_confirmed_action_runs_and_is_linked_in_audit(self, admin_id, conversation, audit_entries):
        executor = ToolExecutor()
        with patch.object(config, "DESTRUCTIVE_ACTION_MODE", "confirm"):
            parked = await executor.execute_invocation(
                ToolInvocation(call_id="x", name="delete_conversation", arguments={"conversation_id": "C1"}),
                admin_id,
            )
            pending = executor.pending_store.get(parked.result.action_id)
            outcome = await executor.execute_confirmed(pending, call_id="confirm_x")

        assert outcome.status == CONFIRMED
        assert outcome.result.success is True
        entries = audit_entries()
        assert len(entries) == 1
        assert entries[0]["details"]["confirmed_action_id"] == pending.id

    @pytest.mark.asyncio
    async def test_non_destructive_tools_ignore_confirm_mode(self, admin_id, conversation, count_rows):
        with patch.object(config, "DESTRUCTIVE_ACTION_MODE", "confirm"):
            result = await ToolExecutor().execute("close_conversation", {"conversation_id": "C1"}, admin_id)

        assert result.success is True
        assert result.requires_confirmation is False
        assert count_rows(ai_pending_actions) == 0
