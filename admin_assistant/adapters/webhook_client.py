"""Outbound webhook adapter for automation rules."""

import logging
from typing import Dict, Any, Optional
import httpx

from admin_assistant.infra.timeout import OUTBOUND_HTTP_TIMEOUT

logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_MESSAGE = "New automation executed"


def render_message(template: str, data: Optional[Dict[str, Any]]) -> str:
    """Fill {{name}}, {{email}} and {{phone}} placeholders from trigger data."""
    data = data or {}
    for key in ("name", "email", "phone"):
        template = template.replace("{{" + key + "}}", str(data.get(key) or ""))
    return template


def build_payload(webhook_type: str, message: str, data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if webhook_type == "slack":
        return {"text": message}
    if webhook_type == "discord":
        return {"content": message}
    return {"message": message, "data": data or {}}


async def post_webhook(
    url: str,
    webhook_type: str = "custom",
    message_template: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Deliver an automation webhook.

    Delivery failures are reported in the returned dict rather than raised;
    the automation run itself is still recorded by the caller.
    """
    message = render_message(message_template or DEFAULT_WEBHOOK_MESSAGE, data)
    payload = build_payload(webhook_type, message, data)

    async with httpx.AsyncClient(timeout=OUTBOUND_HTTP_TIMEOUT) as client:
        try:
            response = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            logger.warning(f"Webhook delivery failed: {e}", extra={"webhook_type": webhook_type})
            return {"webhook_sent": False, "type": webhook_type, "error": "webhook unreachable"}

    return {
        "webhook_sent": response.status_code < 400,
        "status": response.status_code,
        "type": webhook_type,
    }
