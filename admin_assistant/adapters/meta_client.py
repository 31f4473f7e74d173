"""Meta Graph API adapter (Facebook pages, Instagram business accounts, WhatsApp Cloud API)."""

import logging
from typing import Dict, Any, List, Optional
import httpx

from admin_assistant.infra.config import config
from admin_assistant.infra.error_handler import IntegrationNotConfigured, ToolExecutionError
from admin_assistant.infra.timeout import OUTBOUND_HTTP_TIMEOUT

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"
WHATSAPP_TEMPLATE_LANGUAGE = "pt_BR"


def _require_token() -> str:
    if not config.META_SYSTEM_USER_TOKEN:
        raise IntegrationNotConfigured("meta")
    return config.META_SYSTEM_USER_TOKEN


def _graph_url(path: str) -> str:
    return f"{GRAPH_API_BASE}/{config.META_GRAPH_API_VERSION}/{path.lstrip('/')}"


async def _graph_request(
    method: str,
    path: str,
    params: Optional[Dict[str, Any]] = None,
    json_body: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Call the Graph API and return the decoded body.

    Raises:
        IntegrationNotConfigured: If the system user token is missing
        ToolExecutionError: On transport failure or a Graph ``error`` payload
    """
    token = _require_token()
    headers = {"Authorization": f"Bearer {token}"}

    async with httpx.AsyncClient(timeout=OUTBOUND_HTTP_TIMEOUT) as client:
        try:
            response = await client.request(
                method, _graph_url(path), params=params, json=json_body, headers=headers
            )
        except httpx.HTTPError as e:
            logger.warning(f"Graph API request failed: {e}", extra={"path": path})
            raise ToolExecutionError("meta api unreachable")

    try:
        body = response.json()
    except ValueError:
        # Gateways in front of the Graph API answer errors with HTML
        body = {}
    if not isinstance(body, dict):
        body = {}
    error = body.get("error")
    if error or response.status_code >= 400:
        message = (error if isinstance(error, dict) else {}).get("message") or f"status {response.status_code}"
        raise ToolExecutionError(f"meta api error: {message}")
    return body


async def publish_facebook(content: str, media_type: Optional[str] = None, media_url: Optional[str] = None) -> Dict[str, Any]:
    """Publish to the configured Facebook page (text, photo or video)."""
    if not config.FACEBOOK_PAGE_ID:
        raise IntegrationNotConfigured("facebook")
    page_id = config.FACEBOOK_PAGE_ID

    if media_url and media_type == "video":
        body = await _graph_request("POST", f"{page_id}/videos", json_body={"file_url": media_url, "description": content})
    elif media_url:
        body = await _graph_request("POST", f"{page_id}/photos", json_body={"url": media_url, "caption": content})
    else:
        body = await _graph_request("POST", f"{page_id}/feed", json_body={"message": content})
    return {"success": True, "post_id": body.get("post_id") or body.get("id")}


async def publish_instagram(content: str, media_type: Optional[str] = None, media_url: Optional[str] = None) -> Dict[str, Any]:
    """Publish to the configured Instagram account: create a media container, then publish it."""
    if not config.INSTAGRAM_ACCOUNT_ID:
        raise IntegrationNotConfigured("instagram")
    if not media_url:
        raise ToolExecutionError("instagram posts require media_url")
    account_id = config.INSTAGRAM_ACCOUNT_ID

    container: Dict[str, Any] = {"caption": content}
    if media_type == "video":
        container.update({"media_type": "REELS", "video_url": media_url})
    else:
        container["image_url"] = media_url

    created = await _graph_request("POST", f"{account_id}/media", json_body=container)
    published = await _graph_request(
        "POST", f"{account_id}/media_publish", json_body={"creation_id": created.get("id")}
    )
    return {"success": True, "post_id": published.get("id")}


async def send_whatsapp(
    phone_number: str,
    message: Optional[str] = None,
    template_name: Optional[str] = None,
    template_params: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Send a WhatsApp Business message. Templates are required to open a
    conversation; free text only works inside the 24h customer window.
    """
    if not config.WHATSAPP_PHONE_NUMBER_ID:
        raise IntegrationNotConfigured("whatsapp")

    payload: Dict[str, Any] = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": phone_number,
    }
    if template_name:
        components = []
        if template_params:
            components.append({
                "type": "body",
                "parameters": [{"type": "text", "text": p} for p in template_params],
            })
        payload["type"] = "template"
        payload["template"] = {
            "name": template_name,
            "language": {"code": WHATSAPP_TEMPLATE_LANGUAGE},
            "components": components,
        }
    else:
        payload["type"] = "text"
        payload["text"] = {"body": message or ""}

    body = await _graph_request("POST", f"{config.WHATSAPP_PHONE_NUMBER_ID}/messages", json_body=payload)
    messages = body.get("messages") or [{}]
    return {"success": True, "message_id": messages[0].get("id")}


async def get_graph_object(object_id: str, fields: Optional[str] = None) -> Dict[str, Any]:
    """Read a Graph node; used to verify that credentials reach an account."""
    params = {"fields": fields} if fields else None
    return await _graph_request("GET", object_id, params=params)
