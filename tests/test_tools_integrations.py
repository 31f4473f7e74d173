"""Tests for tools that reach outbound integrations, plus AI behavior and system tools."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import sqlalchemy as sa

from admin_assistant.adapters import email_client, webhook_client
from admin_assistant.infra.config import config
from admin_assistant.infra.database import get_db_session
from admin_assistant.infra.error_handler import ToolExecutionError
from admin_assistant.infra.schema import (
    ai_assistant_settings,
    ai_feedback,
    ai_mode_config,
    automation_logs,
    automation_rules,
    chat_conversations,
    email_campaigns,
    social_posts,
    user_roles,
)
from admin_assistant.services.tool_executor import ToolExecutor
from admin_assistant.services.tools import social


@pytest.fixture
def run(admin_id):
    executor = ToolExecutor()

    async def _run(name, arguments):
        return await executor.execute(name, arguments, admin_id)

    return _run


def fetch_one(table, *where):
    query = sa.select(table)
    for clause in where:
        query = query.where(clause)
    with get_db_session() as session:
        return session.execute(query).first()


class TestEmailTools:
    """Email sending and campaigns."""

    @pytest.mark.asyncio
    async def test_send_email_without_provider(self, run, audit_entries):
        with patch.object(config, "RESEND_API_KEY", None):
            result = await run("send_email", {"to": ["ana@example.com"], "subject": "Hi", "html_content": "<p>Hi</p>"})

        assert result.success is False
        assert result.error == "email not configured"
        assert audit_entries()[0]["action"] == "ai_send_email"

    @pytest.mark.asyncio
    async def test_send_email(self, run):
        with patch.object(email_client, "send_email", AsyncMock(return_value={"id": "msg_1"})) as send:
            result = await run("send_email", {"to": ["ana@example.com"], "subject": "Hi", "html_content": "<p>Hi</p>"})

        assert result.success is True
        assert result.data["email_id"] == "msg_1"
        send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_send_campaign_reports_partial_delivery(self, run, seed):
        campaign_id = seed(email_campaigns, name="Launch", subject="News", html_content="<p>News</p>", status="draft")

        async def fake_send(to, subject, html, from_name=None):
            if to[0] == "bad@example.com":
                raise ToolExecutionError("email rejected: invalid recipient")
            return {"id": "ok"}

        with patch.object(config, "RESEND_API_KEY", "re_test"), patch.object(email_client, "send_email", fake_send):
            result = await run(
                "send_campaign",
                {"campaign_id": campaign_id, "recipient_emails": ["a@example.com", "bad@example.com", "a@example.com"]},
            )

        assert result.success is True
        assert result.data["message"] == "Sent 1 of 2 emails"
        assert result.data["status"] == "partial"
        assert result.data["failures"] == [{"email": "bad@example.com", "error": "email rejected: invalid recipient"}]
        row = fetch_one(email_campaigns, email_campaigns.c.id == campaign_id)
        assert (row.status, row.sent_count, row.total_recipients) == ("partial", 1, 2)

    @pytest.mark.asyncio
    async def test_send_campaign_counts_deliveries_before_an_error_page(self, run, seed):
        campaign_id = seed(email_campaigns, name="Launch", subject="News", html_content="<p>News</p>", status="draft")

        def provider(url, json=None, headers=None):
            request = httpx.Request("POST", url)
            if json["to"] == ["b@example.com"]:
                return httpx.Response(502, text="<html>Bad Gateway</html>", request=request)
            return httpx.Response(200, json={"id": "msg_a"}, request=request)

        post = AsyncMock(side_effect=provider)
        with patch.object(config, "RESEND_API_KEY", "re_test"), patch.object(httpx.AsyncClient, "post", post):
            result = await run(
                "send_campaign",
                {"campaign_id": campaign_id, "recipient_emails": ["a@example.com", "b@example.com"]},
            )

        assert post.await_count == 2
        assert result.success is True
        assert result.data["message"] == "Sent 1 of 2 emails"
        assert result.data["failures"] == [{"email": "b@example.com", "error": "email rejected: status 502"}]
        row = fetch_one(email_campaigns, email_campaigns.c.id == campaign_id)
        assert (row.status, row.sent_count, row.total_recipients) == ("partial", 1, 2)

    @pytest.mark.asyncio
    async def test_send_campaign_survives_unexpected_adapter_error(self, run, seed):
        campaign_id = seed(email_campaigns, name="Launch", subject="News", html_content="<p>News</p>", status="draft")

        async def flaky_send(to, subject, html, from_name=None):
            if to[0] == "b@example.com":
                raise RuntimeError("decoder blew up")
            return {"id": "ok"}

        with patch.object(config, "RESEND_API_KEY", "re_test"), patch.object(email_client, "send_email", flaky_send):
            result = await run(
                "send_campaign",
                {"campaign_id": campaign_id, "recipient_emails": ["a@example.com", "b@example.com"]},
            )

        assert result.data["status"] == "partial"
        assert result.data["failures"] == [{"email": "b@example.com", "error": "email delivery failed unexpectedly"}]
        row = fetch_one(email_campaigns, email_campaigns.c.id == campaign_id)
        assert (row.status, row.sent_count) == ("partial", 1)

    @pytest.mark.asyncio
    async def test_send_email_rejects_one_bad_recipient(self, run, audit_entries):
        result = await run("send_email", {"to": ["ana@example.com", "ana at example"], "subject": "Hi", "html_content": "<p>Hi</p>"})

        assert result.success is False
        assert "to.1: value is not a valid email address" in result.error
        assert audit_entries() == []

    @pytest.mark.asyncio
    async def test_send_campaign_rejects_invalid_address(self, run):
        result = await run("send_campaign", {"campaign_id": "X", "recipient_emails": ["nope"]})

        assert result.success is False
        assert "recipient_emails.0: value is not a valid email address" in result.error

    @pytest.mark.asyncio
    async def test_already_sent_campaign(self, run, seed):
        campaign_id = seed(email_campaigns, name="Old", subject="S", html_content="<p/>", status="sent")

        with patch.object(config, "RESEND_API_KEY", "re_test"):
            result = await run("send_campaign", {"campaign_id": campaign_id, "recipient_emails": ["a@example.com"]})

        assert result.error == f"campaign already sent: {campaign_id}"


class TestSocialTools:
    """Social publishing and WhatsApp."""

    @pytest.mark.asyncio
    async def test_whatsapp_missing_phone_number(self, run, audit_entries):
        result = await run("send_whatsapp_message", {"message": "Hello"})

        assert result.success is False
        assert "phone_number" in result.error
        assert audit_entries() == []

    @pytest.mark.asyncio
    async def test_whatsapp_without_credentials(self, run):
        with patch.object(config, "META_SYSTEM_USER_TOKEN", None):
            result = await run("send_whatsapp_message", {"phone_number": "5511999999999", "message": "Hello"})

        assert result.error == "whatsapp not configured"

    @pytest.mark.asyncio
    async def test_future_post_is_stored_as_scheduled(self, run, audit_entries):
        when = (datetime.utcnow() + timedelta(days=1)).isoformat()

        result = await run("create_social_post", {"platforms": ["facebook"], "content": "Soon", "scheduled_at": when})

        assert result.success is True
        assert result.data["status"] == "scheduled"
        row = fetch_one(social_posts, social_posts.c.id == result.data["post_id"])
        assert row.status == "scheduled"
        assert row.platforms == ["facebook"]
        entry = audit_entries()[0]
        assert (entry["action"], entry["target_table"], entry["target_id"]) == (
            "ai_create_social_post", "social_posts", result.data["post_id"],
        )

    @pytest.mark.asyncio
    async def test_immediate_post_without_token(self, run):
        with patch.object(config, "META_SYSTEM_USER_TOKEN", None):
            result = await run("create_social_post", {"platforms": ["facebook"], "content": "Now"})

        assert result.error == "meta not configured"

    @pytest.mark.asyncio
    async def test_partial_publish_is_reported(self, run):
        publish_facebook = AsyncMock(return_value={"success": True, "post_id": "fb_1"})
        publish_instagram = AsyncMock(side_effect=ToolExecutionError("instagram posts require media_url"))

        with patch.object(config, "META_SYSTEM_USER_TOKEN", "token"), patch.dict(
            social.PUBLISHERS,
            {social.Platform.FACEBOOK: publish_facebook, social.Platform.INSTAGRAM: publish_instagram},
        ):
            result = await run("create_social_post", {"platforms": ["facebook", "instagram"], "content": "Hello"})

        assert result.success is False
        assert result.error == "published on 1 of 2 platforms"
        assert result.data["status"] == "partial"
        assert result.data["platforms_results"]["instagram"]["error"] == "instagram posts require media_url"

    @pytest.mark.asyncio
    async def test_unexpected_publisher_error_keeps_earlier_platforms(self, run):
        publish_facebook = AsyncMock(return_value={"success": True, "post_id": "fb_1"})
        publish_instagram = AsyncMock(side_effect=RuntimeError("unexpected payload"))

        with patch.object(config, "META_SYSTEM_USER_TOKEN", "token"), patch.dict(
            social.PUBLISHERS,
            {social.Platform.FACEBOOK: publish_facebook, social.Platform.INSTAGRAM: publish_instagram},
        ):
            result = await run("create_social_post", {"platforms": ["facebook", "instagram"], "content": "Hello"})

        assert result.error == "published on 1 of 2 platforms"
        outcomes = result.data["platforms_results"]
        assert outcomes["facebook"]["post_id"] == "fb_1"
        assert outcomes["instagram"]["error"] == "instagram publish failed unexpectedly"
        row = fetch_one(social_posts, social_posts.c.id == result.data["post_id"])
        assert row.status == "partial"

    @pytest.mark.asyncio
    async def test_error_page_from_graph_api_is_a_platform_failure(self, run):
        def graph(method, url, params=None, json=None, headers=None):
            request = httpx.Request(method, url)
            if url.endswith("/photos"):
                return httpx.Response(200, json={"id": "photo_1", "post_id": "fb_1"}, request=request)
            return httpx.Response(502, text="<html>Bad Gateway</html>", request=request)

        with patch.object(config, "META_SYSTEM_USER_TOKEN", "token"), \
                patch.object(config, "FACEBOOK_PAGE_ID", "123"), \
                patch.object(config, "INSTAGRAM_ACCOUNT_ID", "777"), \
                patch.object(httpx.AsyncClient, "request", AsyncMock(side_effect=graph)):
            result = await run(
                "create_social_post",
                {
                    "platforms": ["facebook", "instagram"],
                    "content": "Hello",
                    "media_type": "image",
                    "media_url": "https://cdn.example.com/a.jpg",
                },
            )

        assert result.error == "published on 1 of 2 platforms"
        assert result.data["platforms_results"]["instagram"]["error"] == "meta api error: status 502"
        row = fetch_one(social_posts, social_posts.c.id == result.data["post_id"])
        assert row.status == "partial"
        assert row.results["facebook"]["post_id"] == "fb_1"

    @pytest.mark.asyncio
    async def test_integration_status(self, run):
        with patch.object(config, "META_SYSTEM_USER_TOKEN", "token"), patch.object(config, "FACEBOOK_PAGE_ID", "123"):
            result = await run("check_social_integration_status", {})

        assert result.data["overall_status"] == "partially_configured"
        assert result.data["capabilities"]["can_publish_facebook"] is True
        assert result.data["capabilities"]["can_send_whatsapp"] is False


class TestIntegrationConfigTools:
    """Non-secret settings and secret requests."""

    @pytest.mark.asyncio
    async def test_save_config_upserts(self, run, count_rows):
        await run("save_integration_config", {"integration_type": "facebook", "config": {"page_name": "Shop"}})
        result = await run("save_integration_config", {"integration_type": "facebook", "config": {"page_name": "Store"}})

        assert result.success is True
        assert count_rows(ai_assistant_settings) == 1
        row = fetch_one(ai_assistant_settings)
        assert row.setting_key == "social_integration_facebook"
        assert row.setting_value == {"page_name": "Store"}

    @pytest.mark.asyncio
    async def test_save_config_refuses_secrets(self, run, count_rows):
        result = await run("save_integration_config", {"integration_type": "whatsapp", "config": {"access_token": "EAAB"}})

        assert result.success is False
        assert "secret values cannot be stored here (access_token)" in result.error
        assert count_rows(ai_assistant_settings) == 0

    @pytest.mark.asyncio
    async def test_request_secret_configuration(self, run):
        with patch.object(config, "RESEND_API_KEY", None):
            result = await run(
                "request_secret_configuration",
                {"secrets_needed": ["RESEND_API_KEY"], "purpose": "Send campaigns"},
            )

        assert result.data["secrets"][0]["name"] == "RESEND_API_KEY"
        assert result.data["secrets"][0]["configured"] is False


class TestAutomationTools:
    """Automation rules."""

    @pytest.mark.asyncio
    async def test_execute_webhook_rule_logs_run(self, run, seed):
        rule_id = seed(
            automation_rules,
            name="Notify Slack",
            trigger_type="low_rating",
            action_type="webhook",
            action_config={"webhook_url": "https://hooks.example.com/x", "webhook_type": "slack"},
            execution_count=0,
        )
        post = AsyncMock(return_value={"webhook_sent": True, "status": 200, "type": "slack"})

        with patch.object(webhook_client, "post_webhook", post):
            result = await run("execute_automation_rule", {"rule_id": rule_id, "test_data": {"rating": 1}})

        assert result.success is True
        assert post.await_args.kwargs["webhook_type"] == "slack"
        log = fetch_one(automation_logs, automation_logs.c.rule_id == rule_id)
        assert log.status == "success"
        assert fetch_one(automation_rules, automation_rules.c.id == rule_id).execution_count == 1

    @pytest.mark.asyncio
    async def test_failed_webhook_marks_run_failed(self, run, seed):
        rule_id = seed(
            automation_rules,
            name="Broken",
            trigger_type="keyword",
            action_type="webhook",
            action_config={"webhook_url": "https://hooks.example.com/x"},
        )
        post = AsyncMock(return_value={"webhook_sent": False, "type": "custom", "error": "webhook unreachable"})

        with patch.object(webhook_client, "post_webhook", post):
            result = await run("execute_automation_rule", {"rule_id": rule_id})

        assert result.success is False
        assert result.error == "webhook unreachable"
        assert fetch_one(automation_logs, automation_logs.c.rule_id == rule_id).status == "failed"

    @pytest.mark.asyncio
    async def test_create_rule_records_creator(self, run, admin_id):
        result = await run(
            "create_automation_rule",
            {"name": "VIP", "trigger_type": "vip_lead", "action_type": "notify_admin"},
        )

        assert result.success is True
        row = fetch_one(automation_rules)
        assert row.created_by == admin_id
        assert row.trigger_type == "vip_lead"


class TestAIBehaviorAndSystemTools:
    """AI behavior configuration and system overview."""

    @pytest.mark.asyncio
    async def test_update_ai_mode_upserts(self, run, count_rows, audit_entries):
        await run("update_ai_mode", {"mode": "sales", "is_enabled": True})
        result = await run("update_ai_mode", {"mode": "sales", "confidence_threshold": 0.7})

        assert result.data == {"mode": "sales", "confidence_threshold": 0.7}
        assert count_rows(ai_mode_config) == 1
        row = fetch_one(ai_mode_config)
        assert row.is_enabled is True
        assert [e["action"] for e in audit_entries()] == ["ai_update_mode", "ai_update_mode"]

    @pytest.mark.asyncio
    async def test_feedback_summary(self, run, seed):
        seed(ai_feedback, rating=5, resolved=True)
        seed(ai_feedback, rating=1, resolved=False, comment="bad")

        result = await run("get_ai_feedback_summary", {"days": 7})

        assert result.data["total_feedback"] == 2
        assert result.data["avg_rating"] == 3.0
        assert result.data["unresolved"] == 1
        assert result.data["low_rated_unresolved"][0]["comment"] == "bad"

    @pytest.mark.asyncio
    async def test_system_stats(self, run, seed):
        seed(chat_conversations, status="active")
        seed(chat_conversations, status="closed")

        result = await run("get_system_stats", {})

        assert result.data["conversations"] == {"total": 2, "active": 1}

    @pytest.mark.asyncio
    async def test_admin_users(self, run, seed):
        seed(user_roles, user_id="u1", role="admin")
        seed(user_roles, user_id="u2", role="viewer")

        result = await run("get_admin_users", {})

        assert result.data["admin_user_ids"] == ["u1"]
