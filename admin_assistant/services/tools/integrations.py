"""Integration setup tools: requirements, non-secret settings and setup guides."""

import re
from enum import Enum
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from pydantic import Field, field_validator

from admin_assistant.infra.config import config
from admin_assistant.infra.database import get_db_session
from admin_assistant.infra.schema import ai_assistant_settings, new_id
from admin_assistant.models.tool import ToolName, ToolResult
from admin_assistant.services.tools.spec import ToolArgs, ToolSpec, utcnow

SECRET_KEY_PATTERN = re.compile(r"token|secret|password|passwd|api[_-]?key|private", re.IGNORECASE)
SETTING_KEY_PREFIX = "social_integration_"


class Integration(str, Enum):
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    WHATSAPP = "whatsapp"


class RequirementsArgs(ToolArgs):
    integration: Optional[Integration] = Field(default=None, description="Omit for all integrations")


class SaveConfigArgs(ToolArgs):
    integration_type: Integration
    config: Dict[str, Any] = Field(..., description="Non-secret settings such as page names or default hashtags")

    @field_validator("config")
    @classmethod
    def _reject_secrets(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        if not value:
            raise ValueError("config must not be empty")
        secret_keys = [k for k in value if SECRET_KEY_PATTERN.search(k)]
        if secret_keys:
            raise ValueError(
                f"secret values cannot be stored here ({', '.join(secret_keys)}); "
                "use request_secret_configuration instead"
            )
        return value


class NoArgs(ToolArgs):
    pass


class SecretName(str, Enum):
    META_SYSTEM_USER_TOKEN = "META_SYSTEM_USER_TOKEN"
    FACEBOOK_APP_ID = "FACEBOOK_APP_ID"
    FACEBOOK_ACCESS_TOKEN = "FACEBOOK_ACCESS_TOKEN"
    FACEBOOK_PAGE_ID = "FACEBOOK_PAGE_ID"
    INSTAGRAM_ACCOUNT_ID = "INSTAGRAM_ACCOUNT_ID"
    WHATSAPP_ACCESS_TOKEN = "WHATSAPP_ACCESS_TOKEN"
    WHATSAPP_PHONE_NUMBER_ID = "WHATSAPP_PHONE_NUMBER_ID"
    RESEND_API_KEY = "RESEND_API_KEY"


class SecretRequestArgs(ToolArgs):
    secrets_needed: List[SecretName] = Field(..., min_length=1)
    purpose: str = Field(..., min_length=1, max_length=500)


SECRET_HELP = {
    SecretName.META_SYSTEM_USER_TOKEN: {
        "where_to_find": "Meta Business Settings > Users > System Users > Generate token",
        "note": "One token covers Facebook, Instagram and WhatsApp",
    },
    SecretName.FACEBOOK_APP_ID: {
        "where_to_find": "Meta for Developers > Your app > Settings > Basic",
        "example_format": "123456789012345",
        "url": "https://developers.facebook.com/apps/",
    },
    SecretName.FACEBOOK_ACCESS_TOKEN: {
        "where_to_find": "Meta for Developers > Tools > Graph API Explorer",
        "example_format": "EAAxxxxxxx...",
        "note": "Tokens expire; use a System User for a permanent token",
        "url": "https://developers.facebook.com/tools/explorer/",
    },
    SecretName.FACEBOOK_PAGE_ID: {
        "where_to_find": "Facebook page > About > Page transparency, or the Graph API Explorer",
    },
    SecretName.INSTAGRAM_ACCOUNT_ID: {
        "where_to_find": "Graph API Explorer: GET /{page-id}?fields=instagram_business_account",
    },
    SecretName.WHATSAPP_ACCESS_TOKEN: {
        "where_to_find": "Meta for Developers > WhatsApp > API Setup",
        "example_format": "EAAxxxxxxx...",
        "note": "For production generate a permanent token via a System User",
        "url": "https://developers.facebook.com/docs/whatsapp/cloud-api/get-started/",
    },
    SecretName.WHATSAPP_PHONE_NUMBER_ID: {
        "where_to_find": "Meta for Developers > WhatsApp > API Setup > Phone Number ID",
        "example_format": "123456789012345",
        "note": "This is the id, not the phone number itself",
    },
    SecretName.RESEND_API_KEY: {
        "where_to_find": "Resend dashboard > API Keys",
        "url": "https://resend.com/api-keys",
    },
}

META_SETUP_GUIDE = {
    "title": "Setup guide: Meta APIs (Facebook and Instagram)",
    "steps": [
        {
            "step": 1,
            "title": "Create an app on Meta for Developers",
            "url": "https://developers.facebook.com/apps/create/",
            "details": ["Choose the Business app type", "Fill in the app name and contact email"],
        },
        {
            "step": 2,
            "title": "Add products",
            "details": ["Add Facebook Login and the Instagram Graph API", "Configure the OAuth redirect URLs"],
        },
        {
            "step": 3,
            "title": "Get credentials",
            "details": [
                "FACEBOOK_APP_ID: Settings > Basic",
                "META_SYSTEM_USER_TOKEN: Business Settings > System Users",
                "FACEBOOK_PAGE_ID and INSTAGRAM_ACCOUNT_ID: Graph API Explorer",
            ],
        },
        {
            "step": 4,
            "title": "Store the secrets in the server environment",
            "details": ["Ask the administrator to add them; never paste tokens into the chat"],
        },
    ],
    "permissions_required": [
        "pages_manage_posts",
        "pages_read_engagement",
        "instagram_basic",
        "instagram_content_publish",
    ],
    "important_notes": [
        "User tokens expire; prefer a System User token",
        "The app must be in Live mode for production",
        "Some permissions require Meta app review",
    ],
}

WHATSAPP_SETUP_GUIDE = {
    "title": "Setup guide: WhatsApp Business Cloud API",
    "steps": [
        {
            "step": 1,
            "title": "Prerequisites",
            "details": [
                "A verified Meta Business Manager account",
                "A phone number not used by the WhatsApp app",
            ],
        },
        {
            "step": 2,
            "title": "Create a WhatsApp app",
            "url": "https://developers.facebook.com/apps/create/",
            "details": ["Create a Business app", "Add the WhatsApp product"],
        },
        {
            "step": 3,
            "title": "Get credentials",
            "details": [
                "WHATSAPP_PHONE_NUMBER_ID: API Setup > Phone Number ID",
                "Permanent token: Business Settings > System Users",
            ],
        },
        {
            "step": 4,
            "title": "Create message templates",
            "url": "https://business.facebook.com/wa/manage/message-templates/",
            "details": [
                "Templates are required to start conversations",
                "Meta approves templates, usually within 24-48h",
            ],
        },
    ],
    "pricing_info": {"url": "https://developers.facebook.com/docs/whatsapp/pricing/"},
    "important_notes": [
        "Business-initiated messages require approved templates",
        "Replies within 24h of a customer message can be free text",
    ],
}


def _requirements() -> Dict[str, Any]:
    meta_ready = bool(config.META_SYSTEM_USER_TOKEN or config.FACEBOOK_ACCESS_TOKEN)
    return {
        Integration.FACEBOOK.value: {
            "name": "Facebook (Meta Graph API)",
            "secrets_required": [
                {"name": "META_SYSTEM_USER_TOKEN", "configured": bool(config.META_SYSTEM_USER_TOKEN)},
                {"name": "FACEBOOK_APP_ID", "configured": bool(config.FACEBOOK_APP_ID)},
                {"name": "FACEBOOK_PAGE_ID", "configured": bool(config.FACEBOOK_PAGE_ID)},
            ],
            "setup_url": "https://developers.facebook.com/apps/",
            "permissions_needed": ["pages_manage_posts", "pages_read_engagement"],
            "status": "ready" if meta_ready and config.FACEBOOK_PAGE_ID else "needs_configuration",
        },
        Integration.INSTAGRAM.value: {
            "name": "Instagram (Meta Graph API)",
            "note": "Uses the same Meta credentials as Facebook",
            "secrets_required": [
                {"name": "META_SYSTEM_USER_TOKEN", "configured": bool(config.META_SYSTEM_USER_TOKEN)},
                {"name": "INSTAGRAM_ACCOUNT_ID", "configured": bool(config.INSTAGRAM_ACCOUNT_ID)},
            ],
            "setup_url": "https://developers.facebook.com/docs/instagram-api/",
            "permissions_needed": ["instagram_basic", "instagram_content_publish"],
            "status": "ready" if meta_ready and config.INSTAGRAM_ACCOUNT_ID else "needs_configuration",
        },
        Integration.WHATSAPP.value: {
            "name": "WhatsApp Business Cloud API",
            "secrets_required": [
                {"name": "META_SYSTEM_USER_TOKEN", "configured": bool(config.META_SYSTEM_USER_TOKEN)},
                {"name": "WHATSAPP_PHONE_NUMBER_ID", "configured": bool(config.WHATSAPP_PHONE_NUMBER_ID)},
            ],
            "setup_url": "https://developers.facebook.com/docs/whatsapp/cloud-api/get-started/",
            "notes": [
                "Requires a verified Meta Business account",
                "Business-initiated messages require approved templates",
            ],
            "status": "ready" if config.META_SYSTEM_USER_TOKEN and config.WHATSAPP_PHONE_NUMBER_ID else "needs_configuration",
        },
    }


async def list_integration_requirements(args: RequirementsArgs, actor_id: str) -> ToolResult:
    requirements = _requirements()
    if args.integration is not None:
        requirements = {args.integration.value: requirements[args.integration.value]}
    return ToolResult.ok({"integrations": requirements})


def save_integration_config(args: SaveConfigArgs, actor_id: str) -> ToolResult:
    key = f"{SETTING_KEY_PREFIX}{args.integration_type.value}"
    now = utcnow()
    with get_db_session() as session:
        existing = session.execute(
            sa.select(ai_assistant_settings.c.id).where(ai_assistant_settings.c.setting_key == key)
        ).first()
        if existing is None:
            setting_id = new_id()
            session.execute(
                sa.insert(ai_assistant_settings).values(
                    id=setting_id,
                    setting_key=key,
                    setting_value=args.config,
                    updated_by=actor_id,
                    updated_at=now,
                )
            )
        else:
            setting_id = existing.id
            session.execute(
                sa.update(ai_assistant_settings)
                .where(ai_assistant_settings.c.id == setting_id)
                .values(setting_value=args.config, updated_by=actor_id, updated_at=now)
            )

    return ToolResult.ok(
        {
            "message": f"{args.integration_type.value} settings saved",
            "saved_keys": sorted(args.config),
        },
        target_id=args.integration_type.value,
    )


async def get_meta_setup_guide(args: NoArgs, actor_id: str) -> ToolResult:
    return ToolResult.ok(META_SETUP_GUIDE)


async def get_whatsapp_setup_guide(args: NoArgs, actor_id: str) -> ToolResult:
    return ToolResult.ok(WHATSAPP_SETUP_GUIDE)


async def request_secret_configuration(args: SecretRequestArgs, actor_id: str) -> ToolResult:
    """Produce instructions for the administrator; secret values never pass through the assistant."""
    secrets = [
        {"name": name.value, "configured": bool(getattr(config, name.value, None)), **SECRET_HELP[name]}
        for name in dict.fromkeys(args.secrets_needed)
    ]
    return ToolResult.ok({
        "purpose": args.purpose,
        "action_required": "Add the following secrets to the server environment and restart the service",
        "secrets": secrets,
        "after_configuration": "Ask me to run test_social_connection to verify",
    })


SPECS = [
    ToolSpec(
        name=ToolName.LIST_INTEGRATION_REQUIREMENTS,
        description="List the credentials each integration needs and whether they are configured.",
        args_model=RequirementsArgs,
        handler=list_integration_requirements,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.SAVE_INTEGRATION_CONFIG,
        description="Save non-secret integration settings. Tokens and passwords are refused.",
        args_model=SaveConfigArgs,
        handler=save_integration_config,
        audit_action="ai_save_integration_config",
        target_table="ai_assistant_settings",
        target_arg="integration_type",
    ),
    ToolSpec(
        name=ToolName.GET_META_SETUP_GUIDE,
        description="Step-by-step guide to configure Facebook and Instagram publishing.",
        args_model=NoArgs,
        handler=get_meta_setup_guide,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.GET_WHATSAPP_SETUP_GUIDE,
        description="Step-by-step guide to configure the WhatsApp Business API.",
        args_model=NoArgs,
        handler=get_whatsapp_setup_guide,
        read_only=True,
    ),
    ToolSpec(
        name=ToolName.REQUEST_SECRET_CONFIGURATION,
        description="Tell the administrator which secrets to configure, where to find them and why.",
        args_model=SecretRequestArgs,
        handler=request_secret_configuration,
        audit_action="ai_request_secret_config",
        target_table="secrets",
    ),
]
