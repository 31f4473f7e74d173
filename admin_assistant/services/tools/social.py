"""Social publishing and WhatsApp tools (Meta Graph API)."""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from pydantic import Field, model_validator

from admin_assistant.adapters import meta_client
from admin_assistant.infra.config import config
from admin_assistant.infra.database import get_db_session
from admin_assistant.infra.error_handler import IntegrationNotConfigured, ToolExecutionError
from admin_assistant.infra.schema import new_id, row_to_dict, social_posts
from admin_assistant.models.tool import ToolName, ToolResult
from admin_assistant.services.tools.spec import ToolArgs, ToolSpec, to_naive_utc, utcnow

logger = logging.getLogger(__name__)

PHONE_PATTERN = r"^\+?[1-9]\d{7,14}$"


class Platform(str, Enum):
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    WHATSAPP = "whatsapp"


class MediaType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"


PUBLISHERS = {
    Platform.FACEBOOK: meta_client.publish_facebook,
    Platform.INSTAGRAM: meta_client.publish_instagram,
}


class CreatePostArgs(ToolArgs):
    platforms: List[Platform] = Field(..., min_length=1)
    content: str = Field(..., min_length=1, max_length=5000)
    media_type: MediaType = MediaType.TEXT
    media_url: Optional[str] = Field(default=None, description="Public URL of the image or video")
    scheduled_at: Optional[datetime] = Field(default=None, description="ISO 8601; future times are stored for later publishing")

    @model_validator(mode="after")
    def _media_needs_url(self):
        if self.media_type != MediaType.TEXT and not self.media_url:
            raise ValueError("media_url is required for image and video posts")
        return self


class ListPostsArgs(ToolArgs):
    status: Optional[str] = Field(default=None, description="scheduled, published, partial or failed")
    platform: Optional[Platform] = None
    limit: int = Field(default=20, ge=1, le=100)


class SendWhatsAppArgs(ToolArgs):
    phone_number: str = Field(..., pattern=PHONE_PATTERN, description="International format, digits only, e.g. 5511999999999")
    template_name: Optional[str] = Field(default=None, description="Approved template; required to start a conversation")
    template_params: Optional[List[str]] = None
    message: Optional[str] = Field(default=None, max_length=4096, description="Free text, only inside the 24h reply window")

    @model_validator(mode="after")
    def _template_or_message(self):
        if not self.template_name and not self.message:
            raise ValueError("provide template_name or message")
        return self


class NoArgs(ToolArgs):
    pass


class ConnectionTestArgs(ToolArgs):
    platform: Platform


def _platform_ids() -> Dict[Platform, Optional[str]]:
    return {
        Platform.FACEBOOK: config.FACEBOOK_PAGE_ID,
        Platform.INSTAGRAM: config.INSTAGRAM_ACCOUNT_ID,
        Platform.WHATSAPP: config.WHATSAPP_PHONE_NUMBER_ID,
    }


def _platform_ready() -> Dict[Platform, bool]:
    has_token = bool(config.META_SYSTEM_USER_TOKEN)
    return {platform: has_token and bool(object_id) for platform, object_id in _platform_ids().items()}


def _store_post(args: CreatePostArgs, actor_id: str, status: str, results: Dict[str, Any]) -> str:
    post_id = new_id()
    now = utcnow()
    with get_db_session() as session:
        session.execute(
            sa.insert(social_posts).values(
                id=post_id,
                platforms=[p.value for p in args.platforms],
                content=args.content,
                media_type=args.media_type.value,
                media_url=args.media_url,
                status=status,
                scheduled_at=to_naive_utc(args.scheduled_at) if args.scheduled_at else None,
                published_at=now if status in ("published", "partial") else None,
                results=results,
                created_by=actor_id,
                created_at=now,
            )
        )
    return post_id


async def create_social_post(args: CreatePostArgs, actor_id: str) -> ToolResult:
    """
    Publish a post now, or store it as scheduled when scheduled_at is in the future.

    Each platform is attempted independently; the stored row and the result
    carry the per-platform outcome.
    """
    if args.scheduled_at and to_naive_utc(args.scheduled_at) > utcnow():
        post_id = await asyncio.to_thread(_store_post, args, actor_id, "scheduled", {})
        return ToolResult.ok(
            {
                "post_id": post_id,
                "status": "scheduled",
                "scheduled_at": to_naive_utc(args.scheduled_at).isoformat(),
                "platforms": [p.value for p in args.platforms],
            },
            target_id=post_id,
        )

    if not config.META_SYSTEM_USER_TOKEN:
        raise IntegrationNotConfigured("meta")

    media_type = None if args.media_type == MediaType.TEXT else args.media_type.value
    results: Dict[str, Any] = {}
    for platform in dict.fromkeys(args.platforms):
        if platform == Platform.WHATSAPP:
            results[platform.value] = {
                "success": False,
                "error": "whatsapp needs a specific recipient, use send_whatsapp_message",
            }
            continue
        try:
            results[platform.value] = await PUBLISHERS[platform](args.content, media_type, args.media_url)
        except ToolExecutionError as e:
            logger.warning(f"Social publish failed: {e.message}", extra={"platform": platform.value})
            results[platform.value] = {"success": False, "error": e.message}
        except Exception as e:
            # Platforms already published must still be stored and reported
            logger.error(
                f"Social publish raised unexpectedly: {type(e).__name__}",
                extra={"platform": platform.value},
                exc_info=True,
            )
            results[platform.value] = {"success": False, "error": f"{platform.value} publish failed unexpectedly"}

    succeeded = [name for name, outcome in results.items() if outcome.get("success")]
    if len(succeeded) == len(results):
        status = "published"
    elif succeeded:
        status = "partial"
    else:
        status = "failed"

    post_id = await asyncio.to_thread(_store_post, args, actor_id, status, results)
    data = {"post_id": post_id, "status": status, "platforms_results": results}
    if status != "published":
        return ToolResult.fail(f"published on {len(succeeded)} of {len(results)} platforms", data=data, target_id=post_id)
    return ToolResult.ok(data, target_id=post_id)


def list_social_posts(args: ListPostsArgs, actor_id: str) -> ToolResult:
    query = (
        sa.select(
            social_posts.c.id,
            social_posts.c.platforms,
            social_posts.c.content,
            social_posts.c.media_type,
            social_posts.c.status,
            social_posts.c.scheduled_at,
            social_posts.c.published_at,
            social_posts.c.created_at,
        )
        .order_by(social_posts.c.created_at.desc())
        # Platform filtering happens below; over-fetch to still fill the page
        .limit(args.limit * 5 if args.platform else args.limit)
    )
    if args.status:
        query = query.where(social_posts.c.status == args.status)

    with get_db_session() as session:
        posts = [row_to_dict(row) for row in session.execute(query)]
    if args.platform:
        posts = [p for p in posts if args.platform.value in (p["platforms"] or [])][:args.limit]
    for post in posts:
        post["content"] = post["content"][:200]
    return ToolResult.ok({"posts": posts, "count": len(posts)})


async def send_whatsapp_message(args: SendWhatsAppArgs, actor_id: str) -> ToolResult:
    if not config.META_SYSTEM_USER_TOKEN:
        raise IntegrationNotConfigured("whatsapp")
    sent = await meta_client.send_whatsapp(
        args.phone_number,
        message=args.message,
        template_name=args.template_name,
        template_params=args.template_params,
    )
    return ToolResult.ok({
        "message": f"WhatsApp message sent to {args.phone_number}",
        "whatsapp_message_id": sent.get("message_id"),
        "type": "template" if args.template_name else "text",
    })


async def get_social_accounts(args: NoArgs, actor_id: str) -> ToolResult:
    ready = _platform_ready()
    accounts = [
        {
            "platform": platform.value,
            "connected": ready[platform],
            "status": "configured" if ready[platform] else "not_configured",
            "account_id": object_id,
        }
        for platform, object_id in _platform_ids().items()
    ]
    return ToolResult.ok({"accounts": accounts})


async def check_social_integration_status(args: NoArgs, actor_id: str) -> ToolResult:
    ready = _platform_ready()
    ids = _platform_ids()
    ready_count = sum(ready.values())
    if ready_count == len(ready):
        overall = "fully_configured"
    elif ready_count:
        overall = "partially_configured"
    else:
        overall = "not_configured"

    next_steps = []
    if not config.META_SYSTEM_USER_TOKEN:
        next_steps.append("Configure META_SYSTEM_USER_TOKEN")
    for platform, env_name in (
        (Platform.FACEBOOK, "FACEBOOK_PAGE_ID"),
        (Platform.INSTAGRAM, "INSTAGRAM_ACCOUNT_ID"),
        (Platform.WHATSAPP, "WHATSAPP_PHONE_NUMBER_ID"),
    ):
        if not ids[platform]:
            next_steps.append(f"Configure {env_name}")

    return ToolResult.ok({
        "system_user_token": {"configured": bool(config.META_SYSTEM_USER_TOKEN)},
        "platforms": {
            platform.value: {"id_configured": bool(ids[platform]), "ready": ready[platform]}
            for platform in Platform
        },
        "overall_status": overall,
        "capabilities": {
            "can_publish_facebook": ready[Platform.FACEBOOK],
            "can_publish_instagram": ready[Platform.INSTAGRAM],
            "can_send_whatsapp": ready[Platform.WHATSAPP],
        },
        "next_steps": next_steps,
    })


CONNECTION_FIELDS = {
    Platform.FACEBOOK: "name,id,followers_count",
    Platform.INSTAGRAM: "username,id,followers_count,media_count",
    Platform.WHATSAPP: "display_phone_number,verified_name,quality_rating",
}


async def test_social_connection(args: ConnectionTestArgs, actor_id: str) -> ToolResult:
    object_id = _platform_ids()[args.platform]
    if not config.META_SYSTEM_USER_TOKEN:
        raise IntegrationNotConfigured("meta")
    if not object_id:
        raise IntegrationNotConfigured(args.platform.value)

    node = await meta_client.get_graph_object(object_id, CONNECTION_FIELDS[args.platform])
    summary = {k: node.get(k) for k in CONNECTION_FIELDS[args.platform].split(",") if k in node}
    return ToolResult.ok(
        {"status": "connected", "platform": args.platform.value, "account": summary},
        target_id=args.platform.value,
    )


SPECS = [
    ToolSpec(
        name=ToolName.CREATE_SOCIAL_POST,
        description="Publish a post to Facebook and/or Instagram now, or schedule it with scheduled_at.",
        args_model=CreatePostArgs,
        handler=create_social_post,
        audit_action="ai_create_social_post",
        target_table="social_posts",
    ),
    ToolSpec(
        name=ToolName.LIST_SOCIAL_POSTS,
        description="List published and scheduled social posts.",
        args_model=ListPostsArgs,
        handler=list_social_posts,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.SEND_WHATSAPP_MESSAGE,
        description="Send a WhatsApp Business message to a phone number, by approved template or free text.",
        args_model=SendWhatsAppArgs,
        handler=send_whatsapp_message,
        audit_action="ai_send_whatsapp",
        target_table="whatsapp_messages",
    ),
    ToolSpec(
        name=ToolName.GET_SOCIAL_ACCOUNTS,
        description="Show which Facebook, Instagram and WhatsApp accounts are configured.",
        args_model=NoArgs,
        handler=get_social_accounts,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.CHECK_SOCIAL_INTEGRATION_STATUS,
        description="Detailed readiness of the Meta integrations and what is missing.",
        args_model=NoArgs,
        handler=check_social_integration_status,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.TEST_SOCIAL_CONNECTION,
        description="Call the Meta Graph API to verify the credentials for one platform.",
        args_model=ConnectionTestArgs,
        handler=test_social_connection,
        audit_action="ai_test_social_connection",
        target_table="social_integrations",
        target_arg="platform",
    ),
]
