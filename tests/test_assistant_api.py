"""Tests for the assistant HTTP API."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedLLM, text_reply, tool_call, tool_reply

from admin_assistant.infra.config import config
from admin_assistant.infra.error_handler import ModelRateLimitedError
from admin_assistant.infra.schema import chat_conversations
from admin_assistant.main import app
from admin_assistant.services import access_token_service
from admin_assistant.services.context_gatherer import ContextGatherer
from admin_assistant.services.orchestrator import AssistantOrchestrator
from admin_assistant.services.request_guard import RecentRequestGuard


@pytest.fixture
def admin_token():
    issued = access_token_service.create_access_token("admin-user", name="tests", rounds=4)
    access_token_service.grant_admin_role("admin-user")
    return issued["token"]


@pytest.fixture
def viewer_token():
    return access_token_service.create_access_token("viewer-user", rounds=4)["token"]


@pytest.fixture
def api():
    """Client against an orchestrator scripted by the test."""
    previous = getattr(app.state, "orchestrator", None)
    llm = ScriptedLLM([])
    app.state.orchestrator = AssistantOrchestrator(
        llm=llm,
        gatherer=ContextGatherer(fetchers={}),
        guard=RecentRequestGuard(window_seconds=60),
    )
    yield TestClient(app), llm
    app.state.orchestrator = previous


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestAuthentication:
    """Bearer auth and the admin gate."""

    def test_missing_token(self, api):
        client, llm = api

        response = client.post("/admin/assistant", json={"message": "hi"})

        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Authentication required"}
        assert llm.calls == []

    def test_unknown_token(self, api):
        client, _ = api

        response = client.post("/admin/assistant", json={"message": "hi"}, headers=bearer("not-a-real-token"))

        assert response.status_code == 401
        assert response.json()["error"] == "Invalid session"

    def test_non_admin(self, api, viewer_token):
        client, _ = api

        response = client.post("/admin/assistant", json={"message": "hi"}, headers=bearer(viewer_token))

        assert response.status_code == 403
        assert response.json() == {"success": False, "error": "Permission denied"}


class TestAssistantEndpoint:
    """Request and response shapes."""

    def test_empty_message_is_rejected(self, api, admin_token):
        client, llm = api

        response = client.post("/admin/assistant", json={"message": "   "}, headers=bearer(admin_token))

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert "message is required" in body["error"]
        assert llm.calls == []

    def test_plain_answer(self, api, admin_token):
        client, llm = api
        llm.replies.append(text_reply("Hello!"))

        response = client.post(
            "/admin/assistant",
            json={
                "message": "hi",
                "context": "email_campaign",
                "conversationHistory": [{"role": "user", "content": "earlier"}],
            },
            headers=bearer(admin_token),
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "response": "Hello!",
            "context": "email_campaign",
            "actionsExecuted": [],
            "pendingActions": [],
        }
        assert "X-Request-ID" in response.headers

    def test_actions_are_reported_in_camel_case(self, api, admin_token, seed):
        client, llm = api
        seed(chat_conversations, id="C1", status="active")
        llm.replies.extend([
            tool_reply(tool_call("close_conversation", {"conversation_id": "C1"}, "call_1")),
            text_reply("Closed."),
        ])

        response = client.post("/admin/assistant", json={"message": "close C1"}, headers=bearer(admin_token))

        body = response.json()
        assert body["response"] == "Closed."
        action = body["actionsExecuted"][0]
        assert action["tool"] == "close_conversation"
        assert action["callId"] == "call_1"
        assert action["args"] == {"conversation_id": "C1"}
        assert action["success"] is True
        assert action["isDestructive"] is False
        assert action["status"] == "executed"

    def test_pending_action_round_trip(self, api, admin_token, seed, count_rows):
        client, llm = api
        seed(chat_conversations, id="C1", status="active")
        llm.replies.extend([
            tool_reply(tool_call("delete_conversation", {"conversation_id": "C1"})),
            text_reply("Please confirm the deletion."),
            text_reply("Deleted."),
        ])

        with patch.object(config, "DESTRUCTIVE_ACTION_MODE", "confirm"):
            parked = client.post(
                "/admin/assistant", json={"message": "delete C1"}, headers=bearer(admin_token)
            ).json()

            pending = parked["pendingActions"]
            assert len(pending) == 1
            assert pending[0]["tool"] == "delete_conversation"
            assert pending[0]["preview"]["conversation_id"] == "C1"
            assert pending[0]["expiresAt"]
            assert count_rows(chat_conversations) == 1

            confirmed = client.post(
                "/admin/assistant",
                json={"confirmAction": {"actionId": pending[0]["actionId"], "confirmed": True}},
                headers=bearer(admin_token),
            )

        assert confirmed.status_code == 200
        assert confirmed.json()["actionsExecuted"][0]["status"] == "confirmed"
        assert confirmed.json()["response"] == "Deleted."
        assert count_rows(chat_conversations) == 0

    def test_duplicate_request(self, api, admin_token):
        client, llm = api
        llm.replies.append(text_reply("once"))

        first = client.post("/admin/assistant", json={"message": "same"}, headers=bearer(admin_token))
        second = client.post("/admin/assistant", json={"message": "same"}, headers=bearer(admin_token))

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["error"] == "Duplicate request, already being processed"

    def test_rate_limited_gateway(self, api, admin_token):
        client, llm = api
        llm.replies.append(ModelRateLimitedError(retry_after=12))

        response = client.post("/admin/assistant", json={"message": "hi"}, headers=bearer(admin_token))

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "12"
        assert response.json()["success"] is False


class TestToolCatalogEndpoint:
    """Catalog listing."""

    def test_requires_admin(self, api):
        client, _ = api

        assert client.get("/admin/assistant/tools").status_code == 401

    def test_lists_tools(self, api, admin_token):
        client, _ = api

        response = client.get("/admin/assistant/tools", headers=bearer(admin_token))

        body = response.json()
        assert response.status_code == 200
        assert body["count"] == len(body["items"])
        assert body["destructiveActionMode"] == config.DESTRUCTIVE_ACTION_MODE
        by_name = {item["name"]: item for item in body["items"]}
        assert by_name["delete_conversation"]["destructive"] is True
        assert by_name["list_contacts"]["readOnly"] is True


class TestHealth:
    """Health endpoints."""

    def test_health(self, api):
        client, _ = api

        assert client.get("/health").json()["service"] == "admin-assistant"
        assert client.get("/health/live").json() == {"status": "alive"}
        assert client.get("/health/ready").json() == {"status": "ready"}

    def test_metrics(self, api):
        client, _ = api

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "assistant_requests_total" in response.text
