"""Email, template and campaign tools."""

import asyncio
import logging
from typing import List, Optional

import sqlalchemy as sa
from pydantic import EmailStr, Field, model_validator

from admin_assistant.adapters import email_client
from admin_assistant.infra.config import config
from admin_assistant.infra.database import get_db_session
from admin_assistant.infra.error_handler import IntegrationNotConfigured, ToolExecutionError
from admin_assistant.infra.schema import email_campaigns, email_templates, new_id, row_to_dict
from admin_assistant.models.tool import ToolName, ToolResult
from admin_assistant.services.tools.spec import ToolArgs, ToolSpec, utcnow

logger = logging.getLogger(__name__)

# Parallel sends per campaign
CAMPAIGN_SEND_CONCURRENCY = 5
MAX_CAMPAIGN_RECIPIENTS = 500


class SendEmailArgs(ToolArgs):
    to: List[EmailStr] = Field(..., min_length=1, max_length=50, description="Recipient email addresses")
    subject: str = Field(..., min_length=1, max_length=500)
    html_content: str = Field(..., min_length=1, description="HTML body")
    from_name: Optional[str] = Field(default=None, description="Sender display name")


class ListTemplatesArgs(ToolArgs):
    active_only: bool = Field(default=True)


class CreateTemplateArgs(ToolArgs):
    name: str = Field(..., min_length=1, max_length=255)
    subject: str = Field(..., min_length=1, max_length=500)
    html_content: str = Field(..., min_length=1)
    text_content: Optional[str] = None


class UpdateTemplateArgs(ToolArgs):
    template_id: str = Field(..., min_length=1)
    name: Optional[str] = Field(default=None, max_length=255)
    subject: Optional[str] = Field(default=None, max_length=500)
    html_content: Optional[str] = None
    is_active: Optional[bool] = None

    @model_validator(mode="after")
    def _require_change(self):
        if not self.changes():
            raise ValueError("nothing to update")
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude={"template_id"}, exclude_none=True)


class TemplateArgs(ToolArgs):
    template_id: str = Field(..., min_length=1)


class ListCampaignsArgs(ToolArgs):
    status: Optional[str] = Field(default=None, description="draft, sent, partial or failed")
    limit: int = Field(default=20, ge=1, le=100)


class CreateCampaignArgs(ToolArgs):
    name: str = Field(..., min_length=1, max_length=255)
    subject: str = Field(..., min_length=1, max_length=500)
    html_content: str = Field(..., min_length=1)
    text_content: Optional[str] = None


class SendCampaignArgs(ToolArgs):
    campaign_id: str = Field(..., min_length=1)
    recipient_emails: List[EmailStr] = Field(..., min_length=1, max_length=MAX_CAMPAIGN_RECIPIENTS)


class CampaignArgs(ToolArgs):
    campaign_id: str = Field(..., min_length=1)


def _load(session, table, record_id: str, label: str):
    row = session.execute(sa.select(table).where(table.c.id == record_id)).first()
    if row is None:
        raise ToolExecutionError(f"{label} not found: {record_id}")
    return row


def _load_campaign(campaign_id: str):
    with get_db_session() as session:
        return _load(session, email_campaigns, campaign_id, "campaign")


def _record_delivery(campaign_id: str, status: str, total: int, sent: int) -> None:
    with get_db_session() as session:
        session.execute(
            sa.update(email_campaigns)
            .where(email_campaigns.c.id == campaign_id)
            .values(
                status=status,
                total_recipients=total,
                sent_count=sent,
                sent_at=utcnow() if sent else None,
            )
        )


async def send_email(args: SendEmailArgs, actor_id: str) -> ToolResult:
    body = await email_client.send_email(args.to, args.subject, args.html_content, from_name=args.from_name)
    return ToolResult.ok({
        "message": f"Email sent to {len(args.to)} recipient(s)",
        "email_id": body.get("id"),
    })


def list_email_templates(args: ListTemplatesArgs, actor_id: str) -> ToolResult:
    query = sa.select(
        email_templates.c.id,
        email_templates.c.name,
        email_templates.c.subject,
        email_templates.c.is_active,
        email_templates.c.created_at,
    ).order_by(email_templates.c.created_at.desc())
    if args.active_only:
        query = query.where(email_templates.c.is_active.is_(True))

    with get_db_session() as session:
        templates = [row_to_dict(row) for row in session.execute(query)]
    return ToolResult.ok({"templates": templates, "count": len(templates)})


def create_email_template(args: CreateTemplateArgs, actor_id: str) -> ToolResult:
    template_id = new_id()
    now = utcnow()
    with get_db_session() as session:
        session.execute(
            sa.insert(email_templates).values(
                id=template_id,
                name=args.name,
                subject=args.subject,
                html_content=args.html_content,
                text_content=args.text_content,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
        )
    return ToolResult.ok({"template_id": template_id, "message": f"Template '{args.name}' created"}, target_id=template_id)


def update_email_template(args: UpdateTemplateArgs, actor_id: str) -> ToolResult:
    changes = args.changes()
    with get_db_session() as session:
        result = session.execute(
            sa.update(email_templates)
            .where(email_templates.c.id == args.template_id)
            .values(updated_at=utcnow(), **changes)
        )
        if result.rowcount == 0:
            raise ToolExecutionError(f"template not found: {args.template_id}")
    return ToolResult.ok({"template_id": args.template_id, "updated": sorted(changes)}, target_id=args.template_id)


def delete_email_template(args: TemplateArgs, actor_id: str) -> ToolResult:
    with get_db_session() as session:
        result = session.execute(sa.delete(email_templates).where(email_templates.c.id == args.template_id))
        if result.rowcount == 0:
            raise ToolExecutionError(f"template not found: {args.template_id}")
    return ToolResult.ok({"message": f"Template {args.template_id} deleted"}, target_id=args.template_id)


def list_campaigns(args: ListCampaignsArgs, actor_id: str) -> ToolResult:
    query = (
        sa.select(
            email_campaigns.c.id,
            email_campaigns.c.name,
            email_campaigns.c.subject,
            email_campaigns.c.status,
            email_campaigns.c.total_recipients,
            email_campaigns.c.sent_count,
            email_campaigns.c.opened_count,
            email_campaigns.c.clicked_count,
            email_campaigns.c.sent_at,
            email_campaigns.c.created_at,
        )
        .order_by(email_campaigns.c.created_at.desc())
        .limit(args.limit)
    )
    if args.status:
        query = query.where(email_campaigns.c.status == args.status)

    with get_db_session() as session:
        campaigns = [row_to_dict(row) for row in session.execute(query)]
    return ToolResult.ok({"campaigns": campaigns, "count": len(campaigns)})


def create_campaign(args: CreateCampaignArgs, actor_id: str) -> ToolResult:
    campaign_id = new_id()
    with get_db_session() as session:
        session.execute(
            sa.insert(email_campaigns).values(
                id=campaign_id,
                name=args.name,
                subject=args.subject,
                html_content=args.html_content,
                text_content=args.text_content,
                status="draft",
                created_at=utcnow(),
            )
        )
    return ToolResult.ok(
        {"campaign_id": campaign_id, "status": "draft", "message": f"Campaign '{args.name}' created as draft"},
        target_id=campaign_id,
    )


async def send_campaign(args: SendCampaignArgs, actor_id: str) -> ToolResult:
    """
    Send a draft campaign to the given recipients.

    Each address is sent individually; the campaign ends as ``sent`` (all
    delivered), ``partial`` or ``failed``, and the result reports exact counts.
    """
    if not config.RESEND_API_KEY:
        raise IntegrationNotConfigured("email")

    campaign = await asyncio.to_thread(_load_campaign, args.campaign_id)
    if campaign.status == "sent":
        raise ToolExecutionError(f"campaign already sent: {args.campaign_id}")

    recipients = list(dict.fromkeys(args.recipient_emails))
    semaphore = asyncio.Semaphore(CAMPAIGN_SEND_CONCURRENCY)

    async def deliver(address: str) -> Optional[str]:
        async with semaphore:
            try:
                await email_client.send_email([address], campaign.subject, campaign.html_content)
                return None
            except ToolExecutionError as e:
                logger.warning(
                    f"Campaign delivery failed: {e.message}",
                    extra={"campaign_id": args.campaign_id},
                )
                return e.message
            except Exception as e:
                # The other recipients still count; this one is reported as failed
                logger.error(
                    f"Campaign delivery raised unexpectedly: {type(e).__name__}",
                    extra={"campaign_id": args.campaign_id},
                    exc_info=True,
                )
                return "email delivery failed unexpectedly"

    errors = await asyncio.gather(*(deliver(address) for address in recipients))
    failures = [
        {"email": address, "error": error}
        for address, error in zip(recipients, errors)
        if error is not None
    ]
    sent = len(recipients) - len(failures)
    status = "sent" if not failures else ("partial" if sent else "failed")

    await asyncio.to_thread(_record_delivery, args.campaign_id, status, len(recipients), sent)

    data = {
        "campaign_id": args.campaign_id,
        "status": status,
        "sent_count": sent,
        "total_recipients": len(recipients),
        "message": f"Sent {sent} of {len(recipients)} emails",
    }
    if failures:
        data["failures"] = failures[:10]
    if not sent:
        return ToolResult.fail("campaign delivery failed for every recipient", data=data, target_id=args.campaign_id)
    return ToolResult.ok(data, target_id=args.campaign_id)


def delete_campaign(args: CampaignArgs, actor_id: str) -> ToolResult:
    with get_db_session() as session:
        result = session.execute(sa.delete(email_campaigns).where(email_campaigns.c.id == args.campaign_id))
        if result.rowcount == 0:
            raise ToolExecutionError(f"campaign not found: {args.campaign_id}")
    return ToolResult.ok({"message": f"Campaign {args.campaign_id} deleted"}, target_id=args.campaign_id)


def preview_delete_template(args: TemplateArgs) -> dict:
    with get_db_session() as session:
        row = _load(session, email_templates, args.template_id, "template")
    return {"template_id": args.template_id, "name": row.name, "is_active": row.is_active}


def preview_delete_campaign(args: CampaignArgs) -> dict:
    with get_db_session() as session:
        row = _load(session, email_campaigns, args.campaign_id, "campaign")
    return {
        "campaign_id": args.campaign_id,
        "name": row.name,
        "status": row.status,
        "sent_count": row.sent_count,
    }


SPECS = [
    ToolSpec(
        name=ToolName.SEND_EMAIL,
        description="Send an email to one or more recipients.",
        args_model=SendEmailArgs,
        handler=send_email,
        audit_action="ai_send_email",
        target_table="email_logs",
    ),
    ToolSpec(
        name=ToolName.LIST_EMAIL_TEMPLATES,
        description="List email templates.",
        args_model=ListTemplatesArgs,
        handler=list_email_templates,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.CREATE_EMAIL_TEMPLATE,
        description="Create a reusable email template.",
        args_model=CreateTemplateArgs,
        handler=create_email_template,
        audit_action="ai_create_template",
        target_table="email_templates",
    ),
    ToolSpec(
        name=ToolName.UPDATE_EMAIL_TEMPLATE,
        description="Update fields of an email template or (de)activate it.",
        args_model=UpdateTemplateArgs,
        handler=update_email_template,
        audit_action="ai_update_template",
        target_table="email_templates",
        target_arg="template_id",
    ),
    ToolSpec(
        name=ToolName.DELETE_EMAIL_TEMPLATE,
        description="Permanently delete an email template.",
        args_model=TemplateArgs,
        handler=delete_email_template,
        destructive=True,
        audit_action="ai_delete_template",
        target_table="email_templates",
        target_arg="template_id",
        preview=preview_delete_template,
    ),
    ToolSpec(
        name=ToolName.LIST_CAMPAIGNS,
        description="List email campaigns with delivery counts.",
        args_model=ListCampaignsArgs,
        handler=list_campaigns,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.CREATE_CAMPAIGN,
        description="Create an email campaign as a draft.",
        args_model=CreateCampaignArgs,
        handler=create_campaign,
        audit_action="ai_create_campaign",
        target_table="email_campaigns",
    ),
    ToolSpec(
        name=ToolName.SEND_CAMPAIGN,
        description="Send a campaign to a list of recipient emails.",
        args_model=SendCampaignArgs,
        handler=send_campaign,
        audit_action="ai_send_campaign",
        target_table="email_campaigns",
        target_arg="campaign_id",
    ),
    ToolSpec(
        name=ToolName.DELETE_CAMPAIGN,
        description="Permanently delete an email campaign.",
        args_model=CampaignArgs,
        handler=delete_campaign,
        destructive=True,
        audit_action="ai_delete_campaign",
        target_table="email_campaigns",
        target_arg="campaign_id",
        preview=preview_delete_campaign,
    ),
]
