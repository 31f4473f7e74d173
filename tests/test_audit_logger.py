"""Tests for the audit logger."""

from unittest.mock import patch

import pytest

from admin_assistant.logging import audit_logger
from admin_assistant.logging.audit_logger import list_actions, record_action


class TestRecordAction:
    """Audit writes are append-only and best-effort."""

    @pytest.mark.asyncio
    async def test_writes_one_entry(self, audit_entries):
        written = await record_action(
            actor_id="admin-1",
            action="ai_delete_contact",
            target_table="contact_submissions",
            target_id=42,
            details={"arguments": {"contact_id": "42"}},
        )

        assert written is True
        entries = audit_entries()
        assert len(entries) == 1
        assert entries[0]["admin_id"] == "admin-1"
        assert entries[0]["target_id"] == "42"
        assert entries[0]["details"] == {"arguments": {"contact_id": "42"}}

    @pytest.mark.asyncio
    async def test_details_are_made_json_safe(self, audit_entries):
        from datetime import datetime

        await record_action("admin-1", "ai_export_data", details={"at": datetime(2026, 1, 2, 3, 4, 5)})

        assert audit_entries()[0]["details"] == {"at": "2026-01-02 03:04:05"}

    @pytest.mark.asyncio
    async def test_write_failure_is_swallowed(self, audit_entries):
        with patch.object(audit_logger, "get_db_session", side_effect=RuntimeError("database down")):
            written = await record_action("admin-1", "ai_close_conversation", "chat_conversations", "C1")

        assert written is False
        assert audit_entries() == []

    @pytest.mark.asyncio
    async def test_unserializable_details_are_swallowed(self, audit_entries):
        details = {"arguments": {}}
        details["arguments"]["loop"] = details

        written = await record_action("admin-1", "ai_update_mode", "ai_mode_config", "support", details=details)

        assert written is False
        assert audit_entries() == []


class TestListActions:
    """Reading the trail back."""

    @pytest.mark.asyncio
    async def test_filters(self):
        await record_action("admin-1", "ai_delete_contact")
        await record_action("admin-2", "ai_close_conversation")

        assert [e["action"] for e in list_actions(action_filter="delete")] == ["ai_delete_contact"]
        assert [e["admin_id"] for e in list_actions(actor_id="admin-2")] == ["admin-2"]
        assert len(list_actions(limit=1)) == 1
